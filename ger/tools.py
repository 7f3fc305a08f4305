"""String-returning operations exposed to tool callers and the CLI.

Every method here catches failures and turns them into a short diagnostic
string naming the operation, so a transport layer can pass results straight
through.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .cancellation import CancellationToken
from .errors import Canceled
from .prompts import format_search_results
from .rag_pipeline import RAGPipeline

logger = logging.getLogger(__name__)

CANCELED_MESSAGE = "Operation canceled."


class RagTools:
    """Facade over :class:`RAGPipeline` that reports every outcome as text."""

    def __init__(self, pipeline: RAGPipeline) -> None:
        self.pipeline = pipeline

    def index_document(
        self,
        document_id: str,
        content: Optional[str] = None,
        file_path: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        """Index inline content or a file. ``file_path`` wins when both are given."""
        if not content and not file_path:
            return "Error: Either 'content' or 'filePath' must be provided."
        try:
            if file_path:
                path = Path(file_path).expanduser()
                if not path.is_file():
                    return f"Error: File not found at path: {file_path}"
                chunk_count = self.pipeline.ingest_file(path, document_id=document_id, cancel_token=cancel_token)
            else:
                chunk_count = self.pipeline.index_document(document_id, content or "", cancel_token=cancel_token)
        except Canceled:
            return CANCELED_MESSAGE
        except Exception as exc:
            logger.exception("Indexing %s failed", document_id)
            return f"Error indexing document: {exc}"

        if chunk_count == 0:
            return f"No chunks created for document {document_id}"
        return f"Indexed document {document_id} with {chunk_count} chunks"

    def search(self, query: str, top_k: int = 5, cancel_token: Optional[CancellationToken] = None) -> str:
        try:
            results = self.pipeline.search(query, top_k, cancel_token=cancel_token)
        except Canceled:
            return CANCELED_MESSAGE
        except Exception as exc:
            return f"Error searching: {exc}"
        return format_search_results(results)

    def retrieve_context(self, query: str, top_k: int = 5, cancel_token: Optional[CancellationToken] = None) -> str:
        try:
            return self.pipeline.retrieve_context(query, top_k, cancel_token=cancel_token)
        except Canceled:
            return CANCELED_MESSAGE
        except Exception as exc:
            return f"Error retrieving context: {exc}"

    def remove_document(self, document_id: str, cancel_token: Optional[CancellationToken] = None) -> str:
        try:
            self.pipeline.remove_document(document_id, cancel_token=cancel_token)
        except Canceled:
            return CANCELED_MESSAGE
        except Exception as exc:
            return f"Error removing document: {exc}"
        return f"Removed document: {document_id}"

    def clear_index(self, cancel_token: Optional[CancellationToken] = None) -> str:
        try:
            self.pipeline.clear_index(cancel_token=cancel_token)
        except Canceled:
            return CANCELED_MESSAGE
        except Exception as exc:
            return f"Error clearing index: {exc}"
        return "Index cleared successfully."

    def get_stats(self) -> str:
        try:
            count = self.pipeline.count()
            documents = self.pipeline.list_documents()
        except Exception as exc:
            return f"Error getting stats: {exc}"
        return f"Total chunks in index: {count}\nDocuments: {len(documents)}"

    def ask_agent(self, query: str, top_k: int = 5, cancel_token: Optional[CancellationToken] = None) -> str:
        try:
            outcome = self.pipeline.ask(query, top_k, cancel_token=cancel_token)
        except Exception as exc:
            logger.exception("Ask failed")
            return f"Error asking agent: {exc}"

        if outcome.status == "failed":
            detail = outcome.error if outcome.error is not None else outcome.answer
            return f"Error asking agent: {detail}"
        if outcome.status == "canceled":
            return CANCELED_MESSAGE
        return outcome.answer

    def get_system_prompt(self) -> str:
        return self.pipeline.prompt_state.get()

    def set_system_prompt(self, new_prompt: Optional[str] = None) -> str:
        if self.pipeline.prompt_state.set(new_prompt):
            return "System prompt reset to default."
        return f"System prompt updated successfully. New prompt length: {len(new_prompt or '')} characters."
