from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Optional

from itsdangerous import BadSignature, BadTimeSignature, URLSafeTimedSerializer

from pmagent.auth.config import AuthConfig

SESSION_COOKIE_NAME = "admin_session"
SESSION_SALT = "pmagent-admin-session-v1"


@dataclass(frozen=True)
class AdminUser:
    name: str


def _serializer(cfg: AuthConfig) -> Optional[URLSafeTimedSerializer]:
    if not cfg.session_secret:
        return None
    return URLSafeTimedSerializer(secret_key=cfg.session_secret, salt=SESSION_SALT)


def encode_session(cfg: AuthConfig, user: AdminUser) -> Optional[str]:
    s = _serializer(cfg)
    if s is None:
        return None
    return s.dumps(json.dumps(asdict(user), separators=(",", ":"), sort_keys=True))


def decode_session(cfg: AuthConfig, value: Optional[str]) -> Optional[AdminUser]:
    if not value:
        return None
    s = _serializer(cfg)
    if s is None:
        return None
    try:
        data = json.loads(s.loads(value, max_age=cfg.session_ttl_seconds))
    except (BadSignature, BadTimeSignature, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    name = str(data.get("name") or "").strip()
    return AdminUser(name=name or "admin")
