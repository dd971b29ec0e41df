"""Search and chunking constants.

Re-exports all constants for convenient importing:
    from qmd.constants import DEFAULT_RRF_K, ABBREVIATIONS
"""

from qmd.constants.chunking import *  # noqa: F403
from qmd.constants.search import *  # noqa: F403
