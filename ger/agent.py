"""Bounded tool-calling loop that answers a question from the knowledge base.

Each call to :meth:`AgentOrchestrator.run` walks the same state machine::

    Init -> AwaitingModel -> (ToolsRequested -> ExecutingTools -> AwaitingModel)* -> Finalizing -> Done

with ``failed``, ``canceled`` and ``iteration_limit`` as the other terminal
outcomes. Tool calls run one at a time in the order the model listed them,
and every tool result is appended to the transcript before the next call
starts, so a run is fully determined by the model's replies and the store.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Protocol, Sequence, Union

from .cancellation import CancellationToken, ensure_token
from .errors import Canceled, DimensionMismatch, InvalidChunk, RagError
from .prompts import (
    EMPTY_ANSWER_MESSAGE,
    ITERATION_LIMIT_MESSAGE,
    SystemPromptState,
    format_citations,
    format_context,
    format_search_results,
)
from .types import ChatMessage, ChatModel, SearchResult, ToolCall, ToolSchema

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5
DEFAULT_MAX_ITERATIONS = 5

SEARCH_TOOL = "search"
RETRIEVE_CONTEXT_TOOL = "retrieve_context"

TOOL_SCHEMAS: List[ToolSchema] = [
    {
        "type": "function",
        "function": {
            "name": SEARCH_TOOL,
            "description": "Search for relevant document chunks based on a query.",
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "Search query to find relevant document chunks",
                    },
                    "topK": {
                        "type": "integer",
                        "description": "Number of top results to return (default: 5)",
                    },
                },
                "required": ["query"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": RETRIEVE_CONTEXT_TOOL,
            "description": (
                "Retrieve formatted context for a query. Returns the most relevant document "
                "chunks formatted for use in prompts."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "Query to retrieve relevant context for",
                    },
                    "topK": {
                        "type": "integer",
                        "description": "Number of top results to include in context (default: 5)",
                    },
                },
                "required": ["query"],
            },
        },
    },
]


class Retriever(Protocol):
    def search(
        self, query: str, top_k: int = DEFAULT_TOP_K, cancel_token: Optional[CancellationToken] = None
    ) -> List[SearchResult]:
        ...


def _coerce_int(value: Any, default: int) -> int:
    # bool is an int subclass; "true" is not a count.
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else default
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            try:
                as_float = float(value.strip())
            except ValueError:
                return default
            return int(as_float) if as_float.is_integer() else default
    return default


@dataclass(frozen=True)
class ToolArguments:
    """Typed view of the loosely-typed arguments a model sends with a tool call.

    Coercion rules:

    * ``arguments`` may be a mapping or a JSON object encoded as a string;
      anything else (or unparsable JSON) is treated as no arguments.
    * ``query``: strings are kept as-is, ``None``/missing becomes ``""``, other
      scalars are converted with ``str()``.
    * ``topK``: ints, integral floats and numeric strings are accepted;
      booleans, fractions, missing or unparsable values fall back to the default.
    """

    query: str
    top_k: int

    @classmethod
    def parse(cls, raw: Union[Mapping[str, Any], str, None], default_top_k: int = DEFAULT_TOP_K) -> "ToolArguments":
        arguments: Mapping[str, Any] = {}
        if isinstance(raw, str):
            try:
                decoded = json.loads(raw) if raw.strip() else {}
            except ValueError:
                decoded = {}
            if isinstance(decoded, Mapping):
                arguments = decoded
        elif isinstance(raw, Mapping):
            arguments = raw

        query = arguments.get("query")
        if query is None:
            query = ""
        elif not isinstance(query, str):
            query = str(query)
        return cls(query=query, top_k=_coerce_int(arguments.get("topK"), default_top_k))


@dataclass
class ConversationState:
    """Transcript and referenced documents of a single ask operation."""

    messages: List[ChatMessage] = field(default_factory=list)
    document_ids: List[str] = field(default_factory=list)

    @classmethod
    def start(cls, system_prompt: str, query: str) -> "ConversationState":
        return cls(
            messages=[
                ChatMessage(role="system", content=system_prompt),
                ChatMessage(role="user", content=query),
            ]
        )

    def reference(self, results: Sequence[SearchResult]) -> None:
        for result in results:
            document_id = result.chunk.document_id
            if document_id not in self.document_ids:
                self.document_ids.append(document_id)


OutcomeStatus = Literal["done", "iteration_limit", "failed", "canceled"]


@dataclass
class AgentOutcome:
    """How an ask operation ended, and the answer text to show for it."""

    status: OutcomeStatus
    answer: str
    document_ids: List[str] = field(default_factory=list)
    iterations: int = 0
    error: Optional[BaseException] = None


class AgentOrchestrator:
    """Runs the retrieve -> augment -> generate loop for one question at a time.

    The orchestrator itself holds no per-question state, so one instance can
    serve concurrent callers. The system prompt is read once, when a run starts.
    """

    def __init__(
        self,
        retriever: Retriever,
        chat_model: ChatModel,
        prompt_state: SystemPromptState,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        if max_iterations <= 0:
            raise ValueError("max_iterations must be greater than 0")
        self.retriever = retriever
        self.chat_model = chat_model
        self.prompt_state = prompt_state
        self.max_iterations = max_iterations
        self._formatters: Dict[str, Callable[[Sequence[SearchResult]], str]] = {
            SEARCH_TOOL: format_search_results,
            RETRIEVE_CONTEXT_TOOL: format_context,
        }

    def run(
        self,
        query: str,
        top_k: int = DEFAULT_TOP_K,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AgentOutcome:
        token = ensure_token(cancel_token)
        state = ConversationState.start(self.prompt_state.get(), query)
        iterations = 0

        try:
            while iterations < self.max_iterations:
                token.raise_if_cancelled()
                iterations += 1
                reply = self.chat_model.generate(state.messages, TOOL_SCHEMAS, cancel_token=token)
                token.raise_if_cancelled()

                if not reply.tool_calls:
                    return AgentOutcome(
                        status="done",
                        answer=self._finalize(reply.content, state),
                        document_ids=list(state.document_ids),
                        iterations=iterations,
                    )

                state.messages.append(
                    ChatMessage(role="assistant", content=reply.content or "", tool_calls=list(reply.tool_calls))
                )
                for call in reply.tool_calls:
                    token.raise_if_cancelled()
                    output = self._execute_tool(call, state, top_k, token)
                    state.messages.append(ChatMessage(role="tool", content=output, tool_name=call.name))
        except Canceled as exc:
            logger.info("Ask canceled after %d model call(s)", iterations)
            return AgentOutcome(
                status="canceled", answer=str(exc), document_ids=list(state.document_ids),
                iterations=iterations, error=exc,
            )
        except RagError as exc:
            logger.warning("Ask failed after %d model call(s): %s", iterations, exc)
            return AgentOutcome(
                status="failed", answer=f"Error: {exc}", document_ids=list(state.document_ids),
                iterations=iterations, error=exc,
            )

        logger.warning("Ask hit the iteration limit (%d) without a final answer", self.max_iterations)
        return AgentOutcome(
            status="iteration_limit",
            answer=ITERATION_LIMIT_MESSAGE,
            document_ids=list(state.document_ids),
            iterations=iterations,
        )

    def _execute_tool(
        self, call: ToolCall, state: ConversationState, default_top_k: int, token: CancellationToken
    ) -> str:
        formatter = self._formatters.get(call.name)
        if formatter is None:
            logger.warning("Model requested unknown tool %r", call.name)
            return f"Error: Unknown tool '{call.name}'. Available tools: {', '.join(self._formatters)}."

        arguments = ToolArguments.parse(call.arguments, default_top_k)
        logger.debug("Running tool %s (query=%r, topK=%d)", call.name, arguments.query, arguments.top_k)
        try:
            results = self.retriever.search(arguments.query, arguments.top_k, cancel_token=token)
        except (Canceled, DimensionMismatch, InvalidChunk):
            # A store that does not match the embedder fails the whole ask.
            raise
        except Exception as exc:
            # The model sees the failure as tool output and may retry.
            logger.warning("Tool %s failed: %s", call.name, exc)
            return f"Error executing tool '{call.name}': {exc}"

        state.reference(results)
        return formatter(results)

    @staticmethod
    def _finalize(content: Optional[str], state: ConversationState) -> str:
        answer = (content or "").strip() or EMPTY_ANSWER_MESSAGE
        return answer + format_citations(state.document_ids)
