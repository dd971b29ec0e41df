"""Document collections."""

from qmd.collections.manager import Collection, CollectionError, CollectionManager

__all__ = ["Collection", "CollectionError", "CollectionManager"]
