"""Local sentence-transformer embedding model wrapper."""
from __future__ import annotations

from typing import List, Optional, Sequence

from sentence_transformers import SentenceTransformer

from .cancellation import CancellationToken, ensure_token
from .errors import ProviderError


class LocalEmbeddingModel:
    """Encodes text locally using sentence-transformers."""

    def __init__(self, model_name: str) -> None:
        self.model = SentenceTransformer(model_name)

    def _encode(self, texts: List[str]) -> List[List[float]]:
        try:
            embeddings = self.model.encode(
                texts,
                convert_to_numpy=True,
                normalize_embeddings=True,
                show_progress_bar=False,
            )
        except Exception as exc:
            raise ProviderError(f"Local embedding failed: {exc}") from exc
        return embeddings.tolist()

    def embed_batch(
        self, texts: Sequence[str], cancel_token: Optional[CancellationToken] = None
    ) -> List[List[float]]:
        """Embed a list of chunk texts."""
        if not texts:
            return []
        token = ensure_token(cancel_token)
        token.raise_if_cancelled()
        embeddings = self._encode(list(texts))
        token.raise_if_cancelled()
        return embeddings

    def embed(self, text: str, cancel_token: Optional[CancellationToken] = None) -> List[float]:
        """Embed a query string."""
        embeddings = self.embed_batch([text], cancel_token=cancel_token)
        if not embeddings:
            raise ProviderError("Local embedding model returned no vector")
        return embeddings[0]
