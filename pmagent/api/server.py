"""
Admin dashboard API server.

Hosts the project assistant chat endpoint (tool-using LLM loop) plus the small
read-only project endpoints the dashboard needs. Every `/api/admin/*` route
requires a signed admin session cookie and is rate limited per client.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from pmagent.auth.rate_limit import FixedWindowRateLimiter, rate_limit_headers, request_identifier
from pmagent.chat.types import ChatRequest, ChatResponse
from pmagent.config import ChatConfig, load_chat_config
from pmagent.llm.client import LLMAuthenticationError, LLMNotConfigured
from pmagent.store.gateway import PostgresStore, StateGateway

logger = logging.getLogger(__name__)


@dataclass
class RateLimiters:
    chat: FixedWindowRateLimiter
    api: FixedWindowRateLimiter
    sweep_seconds: float = 60.0

    def start(self) -> None:
        self.chat.start_sweeper(self.sweep_seconds)
        self.api.start_sweeper(self.sweep_seconds)

    def stop(self) -> None:
        self.chat.stop_sweeper()
        self.api.stop_sweeper()


def build_rate_limiters(cfg: ChatConfig) -> RateLimiters:
    return RateLimiters(
        chat=FixedWindowRateLimiter(cfg.chat_rate_limit_max, cfg.chat_rate_limit_window_seconds),
        api=FixedWindowRateLimiter(cfg.api_rate_limit_max, cfg.api_rate_limit_window_seconds),
        sweep_seconds=float(cfg.rate_limit_sweep_seconds),
    )


app = FastAPI(title="Project admin dashboard API")
app.state.rate_limiters = build_rate_limiters(load_chat_config())

_store: Optional[PostgresStore] = None


def get_store() -> StateGateway:
    """Process-wide Postgres gateway; override via `app.dependency_overrides` in tests."""
    global _store
    if _store is None:
        _store = PostgresStore()
    return _store


def _error(status_code: int, message: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message}, headers=headers)


def _check_rate_limit(request: Request, limiter: FixedWindowRateLimiter):
    result = limiter.check(request_identifier(request.headers))
    headers = rate_limit_headers(result)
    if not result.success:
        logger.info("Rate limited %s %s (client=%s)", request.method, request.url.path, request_identifier(request.headers))
        return headers, _error(429, "Too many requests. Please try again later.", headers=headers)
    return headers, None


@app.on_event("startup")
def _startup_rate_limit_sweepers() -> None:
    app.state.rate_limiters.start()


@app.on_event("shutdown")
def _shutdown_rate_limit_sweepers() -> None:
    app.state.rate_limiters.stop()


@app.on_event("startup")
def _startup_log_config() -> None:
    from pmagent.store.config import load_store_config

    cfg = load_chat_config()
    store_cfg = load_store_config()
    # Avoid logging secrets; host/db/user are fine.
    logger.info(
        "Chat config: max_tool_iterations=%d chat_rate=%d/%ds api_rate=%d/%ds postgres_host=%s postgres_db=%s",
        cfg.max_tool_iterations,
        cfg.chat_rate_limit_max,
        cfg.chat_rate_limit_window_seconds,
        cfg.api_rate_limit_max,
        cfg.api_rate_limit_window_seconds,
        store_cfg.postgres_host,
        store_cfg.postgres_db,
    )


def _requires_admin(path: str) -> bool:
    return path.startswith("/api/admin")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log requests and enforce the admin session on /api/admin/*."""
    start_time = time.time()
    path = request.url.path or ""
    try:
        if request.method != "OPTIONS" and _requires_admin(path):
            from pmagent.auth.config import load_auth_config
            from pmagent.auth.session import SESSION_COOKIE_NAME, decode_session

            user = decode_session(load_auth_config(), request.cookies.get(SESSION_COOKIE_NAME))
            if user is None:
                logger.debug("%s %s - 401 (no valid admin session)", request.method, path)
                return _error(401, "Unauthorized")
            request.state.user = user

        response = await call_next(request)
        logger.debug("%s %s - %d (%.3fs)", request.method, path, response.status_code, time.time() - start_time)
        return response
    except Exception as e:
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, path, time.time() - start_time, str(e))
        raise


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@app.get("/api/admin/projects")
async def list_projects(request: Request, store: StateGateway = Depends(get_store)):
    headers, limited = _check_rate_limit(request, app.state.rate_limiters.api)
    if limited is not None:
        return limited
    try:
        projects = await asyncio.to_thread(store.list_projects)
    except Exception:
        logger.exception("Error listing projects")
        return _error(500, "Failed to fetch projects", headers=headers)
    return JSONResponse(content={"projects": [p.to_dict() for p in projects]}, headers=headers)


@app.get("/api/admin/projects/{slug}")
async def get_project(slug: str, request: Request, store: StateGateway = Depends(get_store)):
    headers, limited = _check_rate_limit(request, app.state.rate_limiters.api)
    if limited is not None:
        return limited
    try:
        project = await asyncio.to_thread(store.get_project_by_slug, slug)
    except Exception:
        logger.exception("Error fetching project %s", slug)
        return _error(500, "Failed to fetch project", headers=headers)
    if project is None:
        return _error(404, "Project not found", headers=headers)
    return JSONResponse(content={"project": project.to_dict()}, headers=headers)


@app.post("/api/admin/ai/chat")
async def ai_chat(request: Request, store: StateGateway = Depends(get_store)):
    """
    Tool-using project assistant.

    Request body:
      { messages: [{role, content}], projectId: string }
    Response:
      { success: true, message: string } | { success: false, error: string }
    """
    from pmagent.chat.runtime import run_chat

    headers, limited = _check_rate_limit(request, app.state.rate_limiters.chat)
    if limited is not None:
        return limited

    try:
        body = await request.json()
    except Exception:
        return _error(400, "Invalid JSON body", headers=headers)
    if not isinstance(body, dict) or not isinstance(body.get("messages"), list):
        return _error(400, "Messages array is required", headers=headers)
    if not body.get("projectId"):
        return _error(400, "projectId is required", headers=headers)
    try:
        creq = ChatRequest.model_validate(body)
    except ValidationError:
        return _error(400, "Invalid chat request", headers=headers)

    cfg = load_chat_config()
    try:
        project = await asyncio.to_thread(store.get_project, creq.project_id)
        if project is None:
            return _error(404, "Project not found", headers=headers)

        memories = []
        if cfg.memory_limit > 0:
            memories = await asyncio.to_thread(
                store.list_active_memories, project.id, now=datetime.now(timezone.utc), limit=cfg.memory_limit
            )

        # The loop is blocking (model HTTP calls + DB); keep it off the event loop.
        res = await asyncio.to_thread(
            run_chat,
            project=project,
            memories=memories,
            messages=creq.messages,
            store=store,
            max_iterations=cfg.max_tool_iterations,
        )
        logger.info(
            "Chat completed project=%s iterations=%d stop=%s tool_calls=%d",
            project.id,
            res.iterations,
            res.stop_reason,
            len(res.tool_events),
        )
        out = ChatResponse(success=True, message=res.reply)
        return JSONResponse(content=out.model_dump(mode="json"), headers=headers)
    except LLMAuthenticationError:
        logger.warning("Chat failed: LLM provider rejected credentials")
        return _error(401, "Invalid API key. Please check your ANTHROPIC_API_KEY.", headers=headers)
    except LLMNotConfigured as e:
        logger.error("Chat failed: LLM not configured (%s)", e.code)
        return _error(500, str(e), headers=headers)
    except Exception:
        logger.exception("Chat API error")
        return _error(500, "An error occurred", headers=headers)


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting admin API server on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
