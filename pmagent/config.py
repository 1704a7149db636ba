from __future__ import annotations

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


@dataclass(frozen=True)
class ChatConfig:
    # Hard bound on model calls per chat request (cost/latency knob).
    max_tool_iterations: int = 10
    # Memories included in the system prompt.
    memory_limit: int = 50

    # Fixed-window rate limits
    chat_rate_limit_max: int = 20
    chat_rate_limit_window_seconds: int = 60
    api_rate_limit_max: int = 100
    api_rate_limit_window_seconds: int = 60
    rate_limit_sweep_seconds: int = 60


def load_chat_config() -> ChatConfig:
    """
    Load chat/loop settings from env (ConfigMap/Secret friendly).

    Recommended vars:
    - CHAT_MAX_TOOL_ITERATIONS=10
    - CHAT_MEMORY_LIMIT=50
    - CHAT_RATE_LIMIT_MAX=20
    - CHAT_RATE_LIMIT_WINDOW_SECONDS=60
    - API_RATE_LIMIT_MAX=100
    - API_RATE_LIMIT_WINDOW_SECONDS=60
    - RATE_LIMIT_SWEEP_SECONDS=60
    """
    return ChatConfig(
        max_tool_iterations=max(1, min(_env_int("CHAT_MAX_TOOL_ITERATIONS", 10), 50)),
        memory_limit=max(0, min(_env_int("CHAT_MEMORY_LIMIT", 50), 50)),
        chat_rate_limit_max=max(1, _env_int("CHAT_RATE_LIMIT_MAX", 20)),
        chat_rate_limit_window_seconds=max(1, _env_int("CHAT_RATE_LIMIT_WINDOW_SECONDS", 60)),
        api_rate_limit_max=max(1, _env_int("API_RATE_LIMIT_MAX", 100)),
        api_rate_limit_window_seconds=max(1, _env_int("API_RATE_LIMIT_WINDOW_SECONDS", 60)),
        rate_limit_sweep_seconds=max(1, _env_int("RATE_LIMIT_SWEEP_SECONDS", 60)),
    )
