"""Shared type declarations for chunks, search results and chat transcripts."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional, Protocol, Sequence, TypedDict, Union

from .cancellation import CancellationToken

Role = Literal["system", "user", "assistant", "tool"]


class ChunkPayload(TypedDict):
    """On-disk JSON shape of a single chunk."""

    id: str
    documentId: str
    text: str
    index: int
    embedding: List[float]


def make_chunk_id(document_id: str, index: int) -> str:
    return f"{document_id}_chunk_{index}"


@dataclass
class Chunk:
    """A retrievable span of a document, with its embedding once computed."""

    id: str
    document_id: str
    text: str
    index: int
    embedding: Optional[List[float]] = None

    def to_payload(self) -> ChunkPayload:
        return ChunkPayload(
            id=self.id,
            documentId=self.document_id,
            text=self.text,
            index=self.index,
            embedding=list(self.embedding or []),
        )

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any]) -> "Chunk":
        """Build a chunk from its JSON form; raises ValueError/KeyError/TypeError on bad input."""
        embedding = raw["embedding"]
        if not isinstance(embedding, list):
            raise TypeError("embedding must be a list of numbers")
        index = raw["index"]
        if isinstance(index, bool) or not isinstance(index, int):
            raise TypeError("index must be an integer")
        text = str(raw["text"])
        if not text.strip():
            raise ValueError("chunk text must not be blank")
        return cls(
            id=str(raw["id"]),
            document_id=str(raw["documentId"]),
            text=text,
            index=index,
            embedding=[float(x) for x in embedding],
        )


@dataclass(frozen=True)
class SearchResult:
    """A chunk paired with its cosine similarity to the query."""

    chunk: Chunk
    score: float


@dataclass
class ToolCall:
    """A tool invocation requested by the chat model.

    ``arguments`` is whatever the provider produced: usually a mapping, but some
    providers send a JSON-encoded string.
    """

    name: str
    arguments: Union[Mapping[str, Any], str, None] = None


@dataclass
class ChatMessage:
    """Single entry of a conversation transcript."""

    role: Role
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    # Set on role="tool" messages: which tool produced the content.
    tool_name: Optional[str] = None


@dataclass
class ModelReply:
    """Assistant turn returned by a chat provider."""

    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)


ToolSchema = Dict[str, Any]


class EmbeddingProvider(Protocol):
    def embed(self, text: str, cancel_token: Optional[CancellationToken] = None) -> List[float]:
        ...

    def embed_batch(
        self, texts: Sequence[str], cancel_token: Optional[CancellationToken] = None
    ) -> List[List[float]]:
        ...


class ChatModel(Protocol):
    def generate(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolSchema],
        cancel_token: Optional[CancellationToken] = None,
    ) -> ModelReply:
        ...
