"""End-to-end RAG pipeline orchestration."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from .agent import AgentOrchestrator, AgentOutcome
from .cancellation import CancellationToken, ensure_token
from .config import Settings
from .errors import ProviderError
from .ingestion import chunk_document, extract_text
from .prompts import SystemPromptState, format_context
from .types import ChatModel, EmbeddingProvider, SearchResult
from .vector_store import VectorStore

logger = logging.getLogger(__name__)


class RAGPipeline:
    """Coordinates indexing, retrieval, and agentic answer generation."""

    def __init__(
        self,
        settings: Settings,
        embedding_model: EmbeddingProvider,
        vector_store: VectorStore,
        chat_model: Optional[ChatModel] = None,
        prompt_state: Optional[SystemPromptState] = None,
    ) -> None:
        self.settings = settings
        self.embedding_model = embedding_model
        self.vector_store = vector_store
        self.chat_model = chat_model
        self.prompt_state = prompt_state or SystemPromptState(settings.system_prompt or None)

    def index_document(
        self,
        document_id: str,
        content: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> int:
        """Chunk, embed, and store a document, replacing any earlier version of it.

        Returns the number of chunks stored; 0 means the content produced no
        chunks and the store was left untouched.
        """
        token = ensure_token(cancel_token)
        if not document_id.strip():
            raise ValueError("document_id must not be empty")

        chunks = chunk_document(
            content,
            document_id,
            chunk_size=self.settings.chunk_size,
            chunk_overlap=self.settings.chunk_overlap,
        )
        if not chunks:
            return 0

        token.raise_if_cancelled()
        embeddings = self.embedding_model.embed_batch([chunk.text for chunk in chunks], cancel_token=token)
        if len(embeddings) != len(chunks):
            raise ProviderError(f"Expected {len(chunks)} embeddings, provider returned {len(embeddings)}")
        for chunk, embedding in zip(chunks, embeddings):
            chunk.embedding = list(embedding)

        # Last point at which a cancel leaves the store untouched.
        token.raise_if_cancelled()
        self.vector_store.replace_document(document_id, chunks)
        self.vector_store.save_snapshot()
        logger.info("Indexed document %s with %d chunks", document_id, len(chunks))
        return len(chunks)

    def ingest_file(
        self,
        file_path: Path,
        document_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> int:
        """Read a .txt/.md/.pdf file and index its text under ``document_id`` (default: file name)."""
        raw_text = extract_text(file_path)
        return self.index_document(document_id or file_path.name, raw_text, cancel_token=cancel_token)

    def search(
        self,
        query: str,
        top_k: int = 5,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[SearchResult]:
        """Embed a query and fetch the top-k similar chunks."""
        token = ensure_token(cancel_token)
        if top_k <= 0:
            return []
        token.raise_if_cancelled()
        query_embedding = self.embedding_model.embed(query, cancel_token=token)
        token.raise_if_cancelled()
        return self.vector_store.search(query_embedding, top_k)

    def retrieve_context(
        self,
        query: str,
        top_k: int = 5,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        return format_context(self.search(query, top_k, cancel_token=cancel_token))

    def remove_document(self, document_id: str, cancel_token: Optional[CancellationToken] = None) -> int:
        ensure_token(cancel_token).raise_if_cancelled()
        removed = self.vector_store.remove_document(document_id)
        self.vector_store.save_snapshot()
        logger.info("Removed document %s (%d chunks)", document_id, removed)
        return removed

    def clear_index(self, cancel_token: Optional[CancellationToken] = None) -> None:
        ensure_token(cancel_token).raise_if_cancelled()
        self.vector_store.clear()
        self.vector_store.save_snapshot()
        logger.info("Cleared index")

    def count(self) -> int:
        return self.vector_store.count()

    def list_documents(self) -> List[str]:
        return self.vector_store.list_documents()

    def ask(
        self,
        query: str,
        top_k: int = 5,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AgentOutcome:
        """Answer a question with the tool-calling agent; never raises for provider faults.

        Nothing is retrieved up front: ``top_k`` is the default for tool calls that
        omit ``topK``, and the model decides when to search.
        """
        if self.chat_model is None:
            return AgentOutcome(status="failed", answer="Chat model is not configured.")
        orchestrator = AgentOrchestrator(
            retriever=self,
            chat_model=self.chat_model,
            prompt_state=self.prompt_state,
            max_iterations=self.settings.max_agent_iterations,
        )
        return orchestrator.run(query, top_k=top_k, cancel_token=cancel_token)
