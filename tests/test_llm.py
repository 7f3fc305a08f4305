from __future__ import annotations

from types import SimpleNamespace
from typing import Any, List

import pytest

from ger.agent import TOOL_SCHEMAS
from ger.cancellation import CancellationToken
from ger.errors import Canceled, ProviderError
from ger.llm import GeminiChatModel, to_gemini_contents, to_gemini_tools
from ger.types import ChatMessage, ToolCall


class RateLimited(Exception):
    status_code = 429


class ServerFailure(Exception):
    code = 500


class FakeModels:
    def __init__(self, outcomes: List[Any]) -> None:
        self.outcomes = list(outcomes)
        self.calls: List[dict] = []

    def generate_content(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _model(*outcomes: Any, max_retries: int = 3) -> GeminiChatModel:
    client = SimpleNamespace(models=FakeModels(list(outcomes)))
    return GeminiChatModel(api_key="", model_name="gemini-test", max_retries=max_retries, retry_wait_seconds=0, client=client)


def _text_response(text: str) -> SimpleNamespace:
    return SimpleNamespace(function_calls=None, text=text)


def test_contents_group_tool_results_and_lift_system_prompt() -> None:
    messages = [
        ChatMessage(role="system", content="Be factual."),
        ChatMessage(role="user", content="question"),
        ChatMessage(
            role="assistant",
            tool_calls=[ToolCall("search", {"query": "a"}), ToolCall("retrieve_context", '{"query": "b"}')],
        ),
        ChatMessage(role="tool", content="results a", tool_name="search"),
        ChatMessage(role="tool", content="context b", tool_name="retrieve_context"),
    ]

    system_instruction, contents = to_gemini_contents(messages)

    assert system_instruction == "Be factual."
    assert [content.role for content in contents] == ["user", "model", "user"]
    assert contents[0].parts[0].text == "question"
    calls = [part.function_call for part in contents[1].parts]
    assert [(call.name, call.args) for call in calls] == [("search", {"query": "a"}), ("retrieve_context", {"query": "b"})]
    responses = [part.function_response for part in contents[2].parts]
    assert [(r.name, r.response) for r in responses] == [
        ("search", {"result": "results a"}),
        ("retrieve_context", {"result": "context b"}),
    ]


def test_tool_schemas_convert_to_function_declarations() -> None:
    tools = to_gemini_tools(TOOL_SCHEMAS)

    assert len(tools) == 1
    declarations = tools[0].function_declarations
    assert [d.name for d in declarations] == ["search", "retrieve_context"]
    assert declarations[0].parameters.required == ["query"]
    assert set(declarations[0].parameters.properties) == {"query", "topK"}
    assert to_gemini_tools([]) == []


def test_function_calls_become_tool_calls() -> None:
    response = SimpleNamespace(
        function_calls=[SimpleNamespace(name="search", args={"query": "apples", "topK": 2})],
        text=None,
    )
    model = _model(response)

    reply = model.generate([ChatMessage(role="system", content="sys"), ChatMessage(role="user", content="q")], TOOL_SCHEMAS)

    assert reply.tool_calls == [ToolCall("search", {"query": "apples", "topK": 2})]
    assert reply.content == ""
    config = model.client.models.calls[0]["config"]
    assert config.system_instruction == "sys"
    assert config.automatic_function_calling.disable is True


def test_text_reply_is_stripped() -> None:
    reply = _model(_text_response("  The answer.  ")).generate([ChatMessage(role="user", content="q")], [])
    assert reply.content == "The answer."
    assert reply.tool_calls == []


def test_rate_limit_is_retried() -> None:
    model = _model(RateLimited("slow down"), _text_response("ok"))

    assert model.generate([ChatMessage(role="user", content="q")], []).content == "ok"
    assert len(model.client.models.calls) == 2


def test_rate_limit_exhausts_retries() -> None:
    model = _model(RateLimited("1"), RateLimited("2"), max_retries=2)

    with pytest.raises(ProviderError, match="Max retries"):
        model.generate([ChatMessage(role="user", content="q")], [])


def test_other_failures_are_not_retried() -> None:
    model = _model(ServerFailure("boom"), _text_response("unused"))

    with pytest.raises(ProviderError, match="boom"):
        model.generate([ChatMessage(role="user", content="q")], [])
    assert len(model.client.models.calls) == 1


def test_cancel_during_rate_limit_wait() -> None:
    token = CancellationToken()

    class CancelingModels(FakeModels):
        def generate_content(self, **kwargs: Any) -> Any:
            self.calls.append(kwargs)
            token.cancel()
            raise RateLimited("slow down")

    model = _model()
    model.client.models = CancelingModels([])
    model.retry_wait_seconds = 30

    with pytest.raises(Canceled):
        model.generate([ChatMessage(role="user", content="q")], [], cancel_token=token)
    assert len(model.client.models.calls) == 1


def test_api_key_required_without_client() -> None:
    with pytest.raises(ValueError):
        GeminiChatModel(api_key="", model_name="gemini-test")
