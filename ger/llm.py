"""Gemini API wrapper for tool-calling chat."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from google import genai
from google.genai import errors
from google.genai import types as genai_types

from .cancellation import CancellationToken, ensure_token
from .errors import Canceled, ProviderError
from .types import ChatMessage, ModelReply, ToolCall, ToolSchema

logger = logging.getLogger(__name__)


def _arguments_as_dict(arguments: Any) -> Dict[str, Any]:
    if isinstance(arguments, str):
        try:
            decoded = json.loads(arguments)
        except ValueError:
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return dict(arguments) if isinstance(arguments, Mapping) else {}


def to_gemini_schema(spec: Mapping[str, Any]) -> genai_types.Schema:
    """Convert a JSON-schema fragment into Gemini's Schema type."""
    kwargs: Dict[str, Any] = {"type": str(spec.get("type", "string")).upper()}
    if spec.get("description"):
        kwargs["description"] = spec["description"]
    if spec.get("properties"):
        kwargs["properties"] = {name: to_gemini_schema(sub) for name, sub in spec["properties"].items()}
    if spec.get("required"):
        kwargs["required"] = list(spec["required"])
    return genai_types.Schema(**kwargs)


def to_gemini_tools(tools: Sequence[ToolSchema]) -> List[genai_types.Tool]:
    declarations = []
    for tool in tools:
        function = tool.get("function", tool)
        declarations.append(
            genai_types.FunctionDeclaration(
                name=function["name"],
                description=function.get("description", ""),
                parameters=to_gemini_schema(function.get("parameters", {"type": "object"})),
            )
        )
    return [genai_types.Tool(function_declarations=declarations)] if declarations else []


def to_gemini_contents(messages: Sequence[ChatMessage]) -> Tuple[Optional[str], List[genai_types.Content]]:
    """Split a transcript into Gemini's system instruction and content turns.

    Consecutive tool results are merged into one user turn, which is how Gemini
    expects the responses to a batch of function calls.
    """
    system_parts: List[str] = []
    contents: List[genai_types.Content] = []
    last_was_tool = False

    for message in messages:
        if message.role == "system":
            system_parts.append(message.content)
            last_was_tool = False
            continue

        if message.role == "tool":
            part = genai_types.Part.from_function_response(
                name=message.tool_name or "tool",
                response={"result": message.content},
            )
            if last_was_tool and contents:
                contents[-1].parts.append(part)
            else:
                contents.append(genai_types.Content(role="user", parts=[part]))
            last_was_tool = True
            continue

        last_was_tool = False
        if message.role == "assistant":
            parts: List[genai_types.Part] = []
            if message.content:
                parts.append(genai_types.Part.from_text(text=message.content))
            for call in message.tool_calls:
                parts.append(
                    genai_types.Part.from_function_call(name=call.name, args=_arguments_as_dict(call.arguments))
                )
            if not parts:
                parts.append(genai_types.Part.from_text(text=""))
            contents.append(genai_types.Content(role="model", parts=parts))
        else:
            contents.append(genai_types.Content(role="user", parts=[genai_types.Part.from_text(text=message.content)]))

    system_instruction = "\n\n".join(part for part in system_parts if part) or None
    return system_instruction, contents


class GeminiChatModel:
    """Generates tool-calling replies with Gemini."""

    def __init__(
        self,
        api_key: str,
        model_name: str,
        max_retries: int = 3,
        retry_wait_seconds: int = 60,
        temperature: float = 0.1,
        client: Optional[Any] = None,
    ) -> None:
        if client is None:
            if not api_key:
                raise ValueError("Gemini API key is required")
            client = genai.Client(api_key=api_key)
        self.client = client
        self.model_name = model_name
        self.max_retries = max(1, max_retries)
        self.retry_wait_seconds = retry_wait_seconds
        self.temperature = temperature

    def _generation_config(
        self, system_instruction: Optional[str], tools: Sequence[ToolSchema], max_tokens: int = 2048
    ) -> genai_types.GenerateContentConfig:
        """Low temperature for factual answers; function calls are returned, never auto-executed."""
        return genai_types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=self.temperature,
            top_p=0.9,
            max_output_tokens=max_tokens,
            tools=to_gemini_tools(tools) or None,
            automatic_function_calling=genai_types.AutomaticFunctionCallingConfig(disable=True),
        )

    @staticmethod
    def _status_code(error: Exception) -> Optional[int]:
        """Extract HTTP-like status code from Gemini SDK errors."""
        status_code = getattr(error, "status_code", None)
        if isinstance(status_code, int):
            return status_code
        code = getattr(error, "code", None)
        if isinstance(code, int):
            return code
        return None

    @staticmethod
    def _reply_from_response(response: Any) -> ModelReply:
        function_calls = getattr(response, "function_calls", None) or []
        tool_calls = [
            ToolCall(name=str(call.name), arguments=dict(call.args or {}))
            for call in function_calls
            if getattr(call, "name", None)
        ]
        if tool_calls:
            return ModelReply(content="", tool_calls=tool_calls)
        text = getattr(response, "text", None)
        return ModelReply(content=text.strip() if text else "")

    def generate(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolSchema],
        cancel_token: Optional[CancellationToken] = None,
    ) -> ModelReply:
        """Send the transcript to Gemini, retrying on 429 with a cancelable wait."""
        token = ensure_token(cancel_token)
        system_instruction, contents = to_gemini_contents(messages)
        config = self._generation_config(system_instruction, tools)

        for attempt in range(self.max_retries):
            token.raise_if_cancelled()
            try:
                response = self.client.models.generate_content(
                    model=self.model_name,
                    contents=contents,
                    config=config,
                )
            except Exception as exc:
                status_code = self._status_code(exc)
                is_last_attempt = attempt == (self.max_retries - 1)

                if status_code == 429:
                    logger.warning("Gemini rate limit hit (attempt %d of %d)", attempt + 1, self.max_retries)
                    if is_last_attempt:
                        raise ProviderError("Max retries reached due to Gemini rate limits. Please retry later.") from exc
                    logger.info("Waiting %s seconds before retrying Gemini request", self.retry_wait_seconds)
                    if token.wait(self.retry_wait_seconds):
                        raise Canceled() from exc
                    continue

                if isinstance(exc, errors.APIError):
                    raise ProviderError(f"Gemini API error ({status_code or 'unknown'}): {exc}") from exc
                raise ProviderError(f"Unexpected Gemini client error: {exc}") from exc

            token.raise_if_cancelled()
            return self._reply_from_response(response)

        raise ProviderError("Gemini request failed after retries.")
