"""QMD: hybrid lexical and semantic document search."""

__version__ = "0.1.0"
