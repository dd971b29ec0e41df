"""Database layer for QMD."""

from qmd.db.connection import Database
from qmd.db.migrations import run_migrations

__all__ = ["Database", "run_migrations"]
