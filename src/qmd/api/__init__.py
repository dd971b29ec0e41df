"""HTTP API for QMD search."""
