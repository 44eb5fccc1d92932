"""In-memory session/project index rebuilt from disk on every pass."""

from .indexer import CorpusIndex, CorpusIndexer

__all__ = [
    "CorpusIndex",
    "CorpusIndexer",
]
