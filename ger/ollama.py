"""Ollama HTTP client for embeddings and tool-calling chat."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import httpx

from .cancellation import CancellationToken, ensure_token
from .errors import ProviderError
from .types import ChatMessage, ModelReply, ToolCall, ToolSchema

logger = logging.getLogger(__name__)


def _message_to_wire(message: ChatMessage) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"role": message.role, "content": message.content}
    if message.tool_calls:
        payload["tool_calls"] = [
            {"function": {"name": call.name, "arguments": _arguments_to_wire(call.arguments)}}
            for call in message.tool_calls
        ]
    if message.role == "tool" and message.tool_name:
        payload["tool_name"] = message.tool_name
    return payload


def _arguments_to_wire(arguments: Any) -> Dict[str, Any]:
    # Ollama wants an object here; anything that is not one is sent as no arguments.
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except ValueError:
            return {}
    return dict(arguments) if isinstance(arguments, Mapping) else {}


def _reply_from_wire(data: Any) -> ModelReply:
    message = data.get("message") if isinstance(data, dict) else None
    if not isinstance(message, dict):
        raise ProviderError("No response message returned from Ollama")

    raw_calls = message.get("tool_calls") or []
    if not isinstance(raw_calls, list):
        raise ProviderError("Malformed tool_calls returned from Ollama")

    tool_calls: List[ToolCall] = []
    for raw_call in raw_calls:
        function = raw_call.get("function") if isinstance(raw_call, dict) else None
        if not isinstance(function, dict) or not function.get("name"):
            continue
        arguments = function.get("arguments")
        if not isinstance(arguments, (Mapping, str)):
            arguments = None
        tool_calls.append(ToolCall(name=str(function["name"]), arguments=arguments))
    return ModelReply(content=str(message.get("content") or ""), tool_calls=tool_calls)


class OllamaClient:
    """Talks to a local Ollama server over its JSON API."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        embedding_model: str = "mxbai-embed-large",
        chat_model: str = "qwen3:1.7b",
        timeout: float = 120.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.embedding_model = embedding_model
        self.chat_model = chat_model
        self.client = http_client or httpx.Client(base_url=base_url, timeout=timeout)

    def close(self) -> None:
        self.client.close()

    def _post(self, path: str, payload: Dict[str, Any]) -> Any:
        try:
            response = self.client.post(path, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"Ollama {path} returned HTTP {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"Ollama request to {path} failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError(f"Ollama {path} returned invalid JSON: {exc}") from exc

    def _embed(self, model_input: Union[str, List[str]], token: CancellationToken) -> List[List[float]]:
        token.raise_if_cancelled()
        data = self._post("/api/embed", {"model": self.embedding_model, "input": model_input})
        token.raise_if_cancelled()
        embeddings = data.get("embeddings") if isinstance(data, dict) else None
        if not isinstance(embeddings, list):
            raise ProviderError("No embeddings returned from Ollama")
        try:
            return [[float(x) for x in vector] for vector in embeddings]
        except (TypeError, ValueError) as exc:
            raise ProviderError(f"Malformed embeddings returned from Ollama: {exc}") from exc

    def embed(self, text: str, cancel_token: Optional[CancellationToken] = None) -> List[float]:
        embeddings = self._embed(text, ensure_token(cancel_token))
        if not embeddings or not embeddings[0]:
            raise ProviderError("No embeddings returned from Ollama")
        return embeddings[0]

    def embed_batch(
        self, texts: Sequence[str], cancel_token: Optional[CancellationToken] = None
    ) -> List[List[float]]:
        if not texts:
            return []
        embeddings = self._embed(list(texts), ensure_token(cancel_token))
        if len(embeddings) != len(texts) or any(not vector for vector in embeddings):
            raise ProviderError(f"Ollama returned {len(embeddings)} embeddings for {len(texts)} texts")
        return embeddings

    def generate(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolSchema],
        cancel_token: Optional[CancellationToken] = None,
    ) -> ModelReply:
        token = ensure_token(cancel_token)
        token.raise_if_cancelled()
        payload: Dict[str, Any] = {
            "model": self.chat_model,
            "messages": [_message_to_wire(message) for message in messages],
            "stream": False,
        }
        if tools:
            payload["tools"] = list(tools)
        data = self._post("/api/chat", payload)
        token.raise_if_cancelled()
        reply = _reply_from_wire(data)
        logger.debug("Ollama replied with %d tool call(s)", len(reply.tool_calls))
        return reply
