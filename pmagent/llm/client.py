"""
LLM client for the tool-using project assistant.

Goals:
- One uniform call per loop iteration: system prompt + history + tool registry in,
  normalized `ModelTurn` (text blocks, tool calls, stop reason) out.
- Stable error classification. Unlike a best-effort JSON helper this client RAISES:
  the chat endpoint maps `LLMAuthenticationError` to 401 and everything else to 500.

Env (core):
- LLM_PROVIDER: which provider to use (default: "anthropic")
  - anthropic: Claude via Anthropic API using `langchain_anthropic`
- LLM_MOCK=1: return a deterministic text-only stub (no external calls)
- LLM_MODEL, LLM_TEMPERATURE, LLM_MAX_OUTPUT_TOKENS
- LLM_TIMEOUT_SECONDS: HTTP timeout for LLM requests (default: 120, range: 5-300)

Anthropic requirements:
- ANTHROPIC_API_KEY (required)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

TOOL_USE_STOP_REASON = "tool_use"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _provider() -> str:
    return (os.getenv("LLM_PROVIDER") or "").strip().lower() or "anthropic"


class LLMError(RuntimeError):
    """Model call failed; `code` is a stable, non-sensitive classification."""

    def __init__(self, code: str, message: Optional[str] = None) -> None:
        super().__init__(message or code)
        self.code = code


class LLMNotConfigured(LLMError):
    pass


class LLMAuthenticationError(LLMError):
    pass


@dataclass(frozen=True)
class LLMConfig:
    model: str
    temperature: float
    max_output_tokens: int
    timeout: int = 120


def _load_config() -> LLMConfig:
    model = (os.getenv("LLM_MODEL") or "").strip() or "claude-sonnet-4-20250514"
    try:
        temperature = float((os.getenv("LLM_TEMPERATURE") or "").strip() or "0.2")
    except Exception:
        temperature = 0.2
    try:
        max_output_tokens = int((os.getenv("LLM_MAX_OUTPUT_TOKENS") or "").strip() or "4096")
    except Exception:
        max_output_tokens = 4096
    try:
        timeout = int((os.getenv("LLM_TIMEOUT_SECONDS") or "").strip() or "120")
    except Exception:
        timeout = 120

    # Keep bounds sane
    temperature = max(0.0, min(temperature, 1.0))
    max_output_tokens = max(64, min(max_output_tokens, 8192))
    timeout = max(5, min(timeout, 300))

    return LLMConfig(
        model=model,
        temperature=temperature,
        max_output_tokens=max_output_tokens,
        timeout=timeout,
    )


def _classify_error(e: Exception, *, model: str) -> str:
    msg = str(e or "").replace("\n", " ").strip()
    up = msg.upper()

    try:
        import anthropic  # type: ignore[import-not-found]

        if isinstance(e, anthropic.AuthenticationError):
            return "unauthenticated"
        if isinstance(e, anthropic.PermissionDeniedError):
            return "permission_denied"
        if isinstance(e, anthropic.APITimeoutError):
            return "timeout"
        if isinstance(e, anthropic.RateLimitError):
            return "rate_limited"
    except ImportError:
        pass

    # Timeout patterns first so they are not mistaken for other status codes.
    if isinstance(e, TimeoutError):
        return "timeout"
    if "408" in msg:
        return "timeout"
    if "504" in msg:
        return "gateway_timeout"
    if "TIMEOUT" in up or "TIMED OUT" in up:
        return "timeout"

    if "PERMISSION_DENIED" in up or "403" in msg:
        return "permission_denied"
    if "UNAUTHENTICATED" in up or "401" in msg or "AUTHENTICATION_ERROR" in up:
        return "unauthenticated"
    if "API_KEY" in up and ("INVALID" in up or "MISSING" in up):
        return "unauthenticated"
    if "404" in msg or "NOT FOUND" in up:
        return f"model_not_found:{model}"
    if "429" in msg or "OVERLOADED" in up or ("RATE" in up and "LIMIT" in up):
        return "rate_limited"
    if "MAX_TOKENS" in up or "CONTEXT LENGTH" in up:
        return "max_tokens_truncated"

    return f"llm_error:{type(e).__name__}"


def _get_llm_instance(provider: str, cfg: LLMConfig) -> Any:
    """Return the LangChain chat model for `provider` or raise `LLMNotConfigured`."""
    if provider != "anthropic":
        raise LLMNotConfigured("provider_not_configured", f"Unsupported LLM_PROVIDER: {provider}")

    api_key = os.getenv("ANTHROPIC_API_KEY", "").strip()
    if not api_key:
        raise LLMNotConfigured("missing_api_key", "ANTHROPIC_API_KEY not configured")

    from langchain_anthropic import ChatAnthropic  # type: ignore[import-not-found]

    # Extended thinking stays off: thinking blocks would have to be replayed verbatim on every tool round.
    return ChatAnthropic(
        model=cfg.model,
        temperature=cfg.temperature,
        max_tokens=cfg.max_output_tokens,
        anthropic_api_key=api_key,
        timeout=cfg.timeout,
        max_retries=0,
    )


@dataclass(frozen=True)
class ToolCallRequest:
    id: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ModelTurn:
    message: Any  # raw AIMessage, appended to history verbatim
    texts: List[str]
    tool_calls: List[ToolCallRequest]
    stop_reason: Optional[str]

    @property
    def wants_tools(self) -> bool:
        return self.stop_reason == TOOL_USE_STOP_REASON


def _text_blocks(content: Any) -> List[str]:
    if isinstance(content, str):
        return [content] if content else []
    out: List[str] = []
    for block in content or []:
        if isinstance(block, str):
            out.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            out.append(str(block.get("text") or ""))
    return out


def _stop_reason(msg: Any) -> Optional[str]:
    meta = getattr(msg, "response_metadata", None) or {}
    reason = meta.get("stop_reason") or meta.get("finish_reason")
    return str(reason) if reason else None


def to_model_turn(msg: Any) -> ModelTurn:
    calls: List[ToolCallRequest] = []
    for tc in getattr(msg, "tool_calls", None) or []:
        if not isinstance(tc, dict) or not tc.get("name"):
            continue
        args = tc.get("args")
        calls.append(
            ToolCallRequest(
                id=str(tc.get("id") or ""),
                name=str(tc.get("name")),
                args=args if isinstance(args, dict) else {},
            )
        )
    return ModelTurn(message=msg, texts=_text_blocks(getattr(msg, "content", "")), tool_calls=calls, stop_reason=_stop_reason(msg))


def _mock_turn() -> ModelTurn:
    from langchain_core.messages import AIMessage  # type: ignore[import-not-found]

    msg = AIMessage(
        content="LLM_MOCK enabled: no external call was made.",
        response_metadata={"stop_reason": "end_turn"},
    )
    return to_model_turn(msg)


def build_model(tools: Sequence[Dict[str, Any]]) -> Any:
    """Chat model bound to the static tool registry (None in LLM_MOCK mode)."""
    if _env_bool("LLM_MOCK", False):
        return None
    cfg = _load_config()
    llm = _get_llm_instance(_provider(), cfg)
    return llm.bind_tools(list(tools))


def invoke_model(*, model: Any, system: str, messages: Sequence[Any]) -> ModelTurn:
    """
    One model call: system prompt as the out-of-band instruction channel, then the
    accumulated history. Raises `LLMError` (no retries; timeouts are hard failures).
    """
    if model is None and _env_bool("LLM_MOCK", False):
        return _mock_turn()
    if model is None:
        raise LLMNotConfigured("provider_not_configured", "No chat model configured")

    from langchain_core.messages import SystemMessage  # type: ignore[import-not-found]

    try:
        msg = model.invoke([SystemMessage(content=system), *messages])
    except LLMError:
        raise
    except Exception as e:
        code = _classify_error(e, model=_load_config().model)
        if code == "unauthenticated":
            raise LLMAuthenticationError(code, str(e)) from e
        raise LLMError(code, str(e)) from e
    return to_model_turn(msg)
