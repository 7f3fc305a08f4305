"""Error types raised by the retrieval core."""
from __future__ import annotations


class RagError(Exception):
    """Base class for every error the core raises on purpose."""


class InvalidChunk(RagError, ValueError):
    """A chunk was handed to the store without a usable embedding."""


class DimensionMismatch(RagError, ValueError):
    """Vector lengths disagree between a query/chunk and the stored embeddings."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Embedding dimension {actual} does not match stored dimension {expected}. "
            "Clear and re-index documents with the current embedding model."
        )
        self.expected = expected
        self.actual = actual


class ProviderError(RagError):
    """Embedding or chat provider failed or returned an unusable response."""


class PersistenceError(RagError):
    """Reading or writing the on-disk snapshot failed."""


class Canceled(RagError):
    """The operation was canceled before it could finish."""

    def __init__(self, message: str = "Operation canceled.") -> None:
        super().__init__(message)
