from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def tracing_enabled() -> bool:
    """
    Return True when LangSmith tracing should be enabled.

    Env-gated so production runs without traces unless explicitly enabled.
    """
    want = _env_bool("LANGSMITH_TRACING", False) or _env_bool("LANGCHAIN_TRACING_V2", False)
    if not want:
        return False
    key = (os.getenv("LANGSMITH_API_KEY") or "").strip() or (os.getenv("LANGCHAIN_API_KEY") or "").strip()
    if not key:
        logger.warning(
            "LangSmith tracing requested but no API key found (LANGSMITH_API_KEY/LANGCHAIN_API_KEY). Tracing disabled."
        )
        return False
    return True


def _project_name() -> str:
    return (os.getenv("LANGSMITH_PROJECT") or "").strip() or (os.getenv("LANGCHAIN_PROJECT") or "").strip() or "pmagent"


def _tags() -> Optional[List[str]]:
    raw = (os.getenv("LANGSMITH_TAGS") or "").strip()
    if not raw:
        return None
    return [x.strip() for x in raw.split(",") if x.strip()]


def build_invoke_config(*, kind: str, run_name: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Build a RunnableConfig dict for LangGraph/LangChain invocation.

    Returns {} when tracing is disabled.
    """
    if not tracing_enabled():
        return {}

    md = dict(metadata or {})
    md["kind"] = str(kind or "unknown")
    cfg: Dict[str, Any] = {"metadata": md, "run_name": run_name}

    try:
        from langchain_core.tracers.langchain import LangChainTracer  # type: ignore[import-not-found]
        from langsmith import Client  # type: ignore[import-not-found]
    except ImportError as e:
        logger.warning("LangSmith tracing enabled but dependencies unavailable: %s", type(e).__name__)
        return cfg

    key = (os.getenv("LANGSMITH_API_KEY") or "").strip() or (os.getenv("LANGCHAIN_API_KEY") or "").strip() or None
    tags = _tags()
    cfg["callbacks"] = [LangChainTracer(project_name=_project_name(), client=Client(api_key=key), tags=tags)]
    if tags:
        cfg["tags"] = tags
    return cfg


def trace_tool_call(*, tool: str, args: Dict[str, Any], fn) -> Any:
    """
    Create a tool-level span in LangSmith (when tracing enabled) and execute `fn()` exactly once.

    `fn` must be a zero-arg callable.
    """
    if not tracing_enabled():
        return fn()

    try:
        from langsmith.run_helpers import traceable  # type: ignore[import-not-found]
    except ImportError:
        return fn()

    done: Dict[str, Any] = {}

    @traceable(name=f"tool:{tool}", run_type="tool")
    def _wrapped(_tool: str, _args: Dict[str, Any]):
        done["started"] = True
        done["result"] = fn()
        return done["result"]

    try:
        return _wrapped(str(tool), dict(args or {}))
    except Exception:
        # fn() runs at most once: reuse its result, or re-raise its own failure.
        if "result" in done:
            return done["result"]
        if done.get("started"):
            raise
        logger.warning("LangSmith tool span failed for %s; running untraced", tool)
        return fn()
