from __future__ import annotations

import pytest
from langchain_core.messages import AIMessage


def test_missing_api_key_is_not_configured(monkeypatch) -> None:
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("LLM_MOCK", raising=False)
    monkeypatch.delenv("LLM_PROVIDER", raising=False)
    from pmagent.llm.client import LLMNotConfigured, build_model

    with pytest.raises(LLMNotConfigured) as ei:
        build_model([])
    assert ei.value.code == "missing_api_key"


def test_unknown_provider_is_not_configured(monkeypatch) -> None:
    monkeypatch.delenv("LLM_MOCK", raising=False)
    monkeypatch.setenv("LLM_PROVIDER", "vertexai")
    from pmagent.llm.client import LLMNotConfigured, build_model

    with pytest.raises(LLMNotConfigured) as ei:
        build_model([])
    assert ei.value.code == "provider_not_configured"


def test_mock_mode_makes_no_call(monkeypatch) -> None:
    monkeypatch.setenv("LLM_MOCK", "1")
    from pmagent.llm.client import build_model, invoke_model

    model = build_model([])
    assert model is None
    turn = invoke_model(model=model, system="sys", messages=[])
    assert turn.wants_tools is False
    assert turn.tool_calls == []
    assert turn.texts and "LLM_MOCK" in turn.texts[0]


def test_to_model_turn_reads_blocks_and_tool_calls() -> None:
    from pmagent.llm.client import to_model_turn

    msg = AIMessage(
        content=[
            {"type": "text", "text": "Checking."},
            {"type": "tool_use", "id": "toolu_1", "name": "get_tasks", "input": {"status": "todo"}},
        ],
        tool_calls=[{"id": "toolu_1", "name": "get_tasks", "args": {"status": "todo"}, "type": "tool_call"}],
        response_metadata={"stop_reason": "tool_use"},
    )
    turn = to_model_turn(msg)
    assert turn.texts == ["Checking."]
    assert turn.wants_tools is True
    assert [(c.id, c.name, c.args) for c in turn.tool_calls] == [("toolu_1", "get_tasks", {"status": "todo"})]
    assert turn.message is msg


def test_to_model_turn_end_turn() -> None:
    from pmagent.llm.client import to_model_turn

    turn = to_model_turn(AIMessage(content="Done", response_metadata={"stop_reason": "end_turn"}))
    assert turn.texts == ["Done"]
    assert turn.wants_tools is False


@pytest.mark.parametrize(
    "message,code",
    [
        ("Error code: 401 - invalid x-api-key", "unauthenticated"),
        ("Error code: 403 - forbidden", "permission_denied"),
        ("Request timed out", "timeout"),
        ("Error code: 429 - rate_limit_error", "rate_limited"),
        ("Error code: 404 - model missing", "model_not_found:m"),
        ("something odd", "llm_error:RuntimeError"),
    ],
)
def test_classify_error(message, code) -> None:
    from pmagent.llm.client import _classify_error

    assert _classify_error(RuntimeError(message), model="m") == code


def test_invoke_maps_auth_failures(monkeypatch) -> None:
    monkeypatch.delenv("LLM_MOCK", raising=False)
    from pmagent.llm.client import LLMAuthenticationError, invoke_model

    class Rejecting:
        def invoke(self, messages):  # type: ignore[no-untyped-def]
            raise RuntimeError("Error code: 401 - authentication_error")

    with pytest.raises(LLMAuthenticationError):
        invoke_model(model=Rejecting(), system="sys", messages=[])


def test_invoke_sends_system_prompt_first(monkeypatch) -> None:
    from langchain_core.messages import HumanMessage, SystemMessage

    from pmagent.llm.client import invoke_model

    seen = []

    class Echo:
        def invoke(self, messages):  # type: ignore[no-untyped-def]
            seen.extend(messages)
            return AIMessage(content="ok", response_metadata={"stop_reason": "end_turn"})

    invoke_model(model=Echo(), system="be brief", messages=[HumanMessage(content="hi")])
    assert isinstance(seen[0], SystemMessage)
    assert seen[0].content == "be brief"
    assert isinstance(seen[1], HumanMessage)
