"""Semantic indexing of directories and search of their files through text embeddings."""

__version__ = "0.1.0"
__all__ = ["__version__"]