from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


@dataclass(frozen=True)
class AuthConfig:
    session_secret: Optional[str]  # Required for session signing
    session_ttl_seconds: int


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load admin session configuration from environment variables.

    Without ADMIN_SESSION_SECRET no session validates (fail closed).
    """
    try:
        ttl = int(float((os.getenv("ADMIN_SESSION_TTL_SECONDS", "") or "43200").strip() or "43200"))  # 12h default
    except ValueError:
        ttl = 43200
    if ttl <= 60:
        ttl = 60

    return AuthConfig(
        session_secret=(os.getenv("ADMIN_SESSION_SECRET", "") or "").strip() or None,
        session_ttl_seconds=ttl,
    )
