from __future__ import annotations

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

import pmagent.api.server as srv
from pmagent.auth.config import load_auth_config
from pmagent.auth.session import SESSION_COOKIE_NAME, AdminUser, encode_session
from pmagent.config import load_chat_config

SECRET = "test-secret-key-for-testing-purposes-only"


@pytest.fixture
def client(monkeypatch, store):
    monkeypatch.setenv("ADMIN_SESSION_SECRET", SECRET)
    load_auth_config.cache_clear()
    # Fresh limiters per test so counts don't leak between tests.
    monkeypatch.setattr(srv.app.state, "rate_limiters", srv.build_rate_limiters(load_chat_config()))
    srv.app.dependency_overrides[srv.get_store] = lambda: store
    token = encode_session(load_auth_config(), AdminUser(name="ops"))
    c = TestClient(srv.app, cookies={SESSION_COOKIE_NAME: token})
    try:
        yield c
    finally:
        srv.app.dependency_overrides.clear()
        load_auth_config.cache_clear()


def _body(**kw):
    return {"messages": [{"role": "user", "content": "What's blocked?"}], "projectId": "p1", **kw}


def _reply(text: str = "Nothing is blocked."):
    from pmagent.chat.runtime import ChatRunResult

    return ChatRunResult(reply=text, iterations=1, stop_reason="done")


def test_healthz_is_public() -> None:
    c = TestClient(srv.app)
    assert c.get("/healthz").status_code == 200


def test_admin_routes_require_session(client) -> None:
    client.cookies.clear()
    r = client.post("/api/admin/ai/chat", json=_body())
    assert r.status_code == 401
    assert r.json() == {"success": False, "error": "Unauthorized"}


def test_no_secret_configured_rejects_everything(client, monkeypatch) -> None:
    monkeypatch.delenv("ADMIN_SESSION_SECRET", raising=False)
    load_auth_config.cache_clear()
    r = client.get("/api/admin/projects")
    assert r.status_code == 401


def test_chat_success(client, store) -> None:
    with patch("pmagent.chat.runtime.run_chat", return_value=_reply()) as run:
        r = client.post("/api/admin/ai/chat", json=_body())
    assert r.status_code == 200
    assert r.json() == {"success": True, "message": "Nothing is blocked."}
    assert r.headers["X-RateLimit-Remaining"] == "19"
    assert "X-RateLimit-Reset" in r.headers

    kwargs = run.call_args.kwargs
    assert kwargs["project"].id == "p1"
    assert kwargs["store"] is store
    assert kwargs["max_iterations"] == 10
    assert [t.content for t in kwargs["messages"]] == ["What's blocked?"]


def test_memories_are_scoped_to_project_and_global(client, store) -> None:
    store.add_memory("global rule")
    store.add_memory("apollo rule", project_id="p1")
    store.add_memory("gemini rule", project_id="p2")
    with patch("pmagent.chat.runtime.run_chat", return_value=_reply()) as run:
        client.post("/api/admin/ai/chat", json=_body())
    contents = sorted(m.content for m in run.call_args.kwargs["memories"])
    assert contents == ["apollo rule", "global rule"]


@pytest.mark.parametrize(
    "body,error",
    [
        ({"projectId": "p1"}, "Messages array is required"),
        ({"messages": "hi", "projectId": "p1"}, "Messages array is required"),
        ({"messages": [{"role": "user", "content": "hi"}]}, "projectId is required"),
        ({"messages": [], "projectId": "p1"}, "Invalid chat request"),
        ({"messages": [{"role": "system", "content": "hi"}], "projectId": "p1"}, "Invalid chat request"),
    ],
)
def test_chat_bad_requests(client, body, error) -> None:
    r = client.post("/api/admin/ai/chat", json=body)
    assert r.status_code == 400
    assert r.json() == {"success": False, "error": error}


def test_chat_invalid_json(client) -> None:
    r = client.post("/api/admin/ai/chat", content=b"{nope", headers={"content-type": "application/json"})
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid JSON body"


def test_chat_unknown_project(client) -> None:
    r = client.post("/api/admin/ai/chat", json=_body(projectId="missing"))
    assert r.status_code == 404
    assert r.json() == {"success": False, "error": "Project not found"}


def test_chat_bad_api_key_is_401(client) -> None:
    from pmagent.llm.client import LLMAuthenticationError

    with patch("pmagent.chat.runtime.run_chat", side_effect=LLMAuthenticationError("unauthenticated")):
        r = client.post("/api/admin/ai/chat", json=_body())
    assert r.status_code == 401
    assert r.json()["error"] == "Invalid API key. Please check your ANTHROPIC_API_KEY."


def test_chat_missing_api_key_is_500(client, monkeypatch) -> None:
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("LLM_MOCK", raising=False)
    monkeypatch.delenv("LLM_PROVIDER", raising=False)
    r = client.post("/api/admin/ai/chat", json=_body())
    assert r.status_code == 500
    assert r.json() == {"success": False, "error": "ANTHROPIC_API_KEY not configured"}


def test_chat_unexpected_failure_is_generic_500(client) -> None:
    with patch("pmagent.chat.runtime.run_chat", side_effect=RuntimeError("db exploded")):
        r = client.post("/api/admin/ai/chat", json=_body())
    assert r.status_code == 500
    assert r.json() == {"success": False, "error": "An error occurred"}


def test_chat_in_mock_mode_runs_end_to_end(client, monkeypatch) -> None:
    monkeypatch.setenv("LLM_MOCK", "1")
    r = client.post("/api/admin/ai/chat", json=_body())
    assert r.status_code == 200
    assert r.json()["message"].startswith("LLM_MOCK enabled")


def test_chat_rate_limited_after_twenty(client) -> None:
    headers = {"x-forwarded-for": "203.0.113.7"}
    with patch("pmagent.chat.runtime.run_chat", return_value=_reply()):
        for _ in range(20):
            assert client.post("/api/admin/ai/chat", json=_body(), headers=headers).status_code == 200
        r = client.post("/api/admin/ai/chat", json=_body(), headers=headers)
    assert r.status_code == 429
    assert r.json() == {"success": False, "error": "Too many requests. Please try again later."}
    assert r.headers["X-RateLimit-Remaining"] == "0"

    # Other clients are unaffected.
    with patch("pmagent.chat.runtime.run_chat", return_value=_reply()):
        other = client.post("/api/admin/ai/chat", json=_body(), headers={"x-forwarded-for": "198.51.100.1"})
    assert other.status_code == 200


def test_list_and_get_projects(client) -> None:
    r = client.get("/api/admin/projects")
    assert r.status_code == 200
    assert [p["name"] for p in r.json()["projects"]] == ["Apollo", "Gemini"]

    r = client.get("/api/admin/projects/p2")
    assert r.status_code == 200
    assert r.json()["project"]["name"] == "Gemini"

    assert client.get("/api/admin/projects/nope").status_code == 404
