"""System prompt state and the text formats shown to the model and to callers."""
from __future__ import annotations

import threading
from typing import List, Optional, Sequence

from .types import SearchResult


DEFAULT_SYSTEM_PROMPT = """You are a helpful AI assistant with access to a knowledge base.
Your task is to answer the user's question based on the provided context from the knowledge base.

Instructions:
- Use the search and retrieve_context tools to find relevant information before answering
- Use ONLY the information provided in the search results to answer the question
- If the search results don't contain enough information, acknowledge this
- Be concise but thorough
- If you're making inferences, clearly state them as such
- Do NOT add citations or sources - they will be automatically appended
- If no results were found, tell the user the knowledge base doesn't have information on this topic"""

ITERATION_LIMIT_MESSAGE = "I could not produce a final answer within the iteration limit. Please try rephrasing the question."
EMPTY_ANSWER_MESSAGE = "I could not generate a response from the model output."
NO_CONTEXT_MESSAGE = "No relevant context found."
NO_RESULTS_MESSAGE = "No results found."
SOURCES_HEADING = "Sources:"


class SystemPromptState:
    """Process-wide system prompt shared by every ask operation.

    The value is an immutable string swapped under a lock, so readers always see
    either the old or the new prompt in full.
    """

    def __init__(self, initial: Optional[str] = None) -> None:
        self._lock = threading.Lock()
        self._value = DEFAULT_SYSTEM_PROMPT
        if initial is not None:
            self.set(initial)

    def get(self) -> str:
        with self._lock:
            return self._value

    def set(self, new_value: Optional[str]) -> bool:
        """Replace the prompt. Blank input resets to the default; returns True in that case."""
        if new_value is None or not new_value.strip():
            self.reset_to_default()
            return True
        with self._lock:
            self._value = new_value
        return False

    def reset_to_default(self) -> None:
        with self._lock:
            self._value = DEFAULT_SYSTEM_PROMPT

    @property
    def is_default(self) -> bool:
        return self.get() == DEFAULT_SYSTEM_PROMPT


def format_search_results(results: Sequence[SearchResult]) -> str:
    """Ranked, human-readable listing used by the ``search`` tool."""
    if not results:
        return NO_RESULTS_MESSAGE

    lines: List[str] = [f"Found {len(results)} result(s):"]
    for rank, result in enumerate(results, start=1):
        chunk = result.chunk
        lines.append("")
        lines.append(f"[{rank}] Document: {chunk.document_id} (chunk {chunk.index}, score: {result.score:.4f})")
        lines.append(chunk.text)
    return "\n".join(lines)


def format_context(results: Sequence[SearchResult]) -> str:
    """Context block for prompts, as returned by ``retrieve_context``."""
    if not results:
        return NO_CONTEXT_MESSAGE

    parts = [
        f"[{rank}] (score: {result.score:.4f}, doc: {result.chunk.document_id})\n{result.chunk.text}"
        for rank, result in enumerate(results, start=1)
    ]
    return "\n\n---\n\n".join(parts)


def format_citations(document_ids: Sequence[str]) -> str:
    """Numbered source list appended to a final answer; empty when nothing was referenced."""
    if not document_ids:
        return ""
    entries = [f"{number}. Document: {document_id}" for number, document_id in enumerate(document_ids, start=1)]
    return "\n\n---\n" + SOURCES_HEADING + "\n" + "\n".join(entries)
