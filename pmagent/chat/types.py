from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ChatRole = Literal["user", "assistant"]
ToolErrorKind = Literal["validation", "not_found", "conflict", "internal"]
ChatStopReason = Literal["done", "empty_tool_use", "max_iterations"]


class ChatTurn(BaseModel):
    role: ChatRole
    content: str


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: List[ChatTurn] = Field(min_length=1)
    project_id: str = Field(alias="projectId", min_length=1)


class ChatResponse(BaseModel):
    success: bool = True
    message: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: str


class ToolResultEnvelope(BaseModel):
    """Exactly one per tool call, correlated by `tool_call_id`."""

    tool_call_id: str
    content: Any = None
    is_error: bool = False


class ChatToolEvent(BaseModel):
    """What happened for one tool call (for logging and the CLI)."""

    tool_call_id: str
    tool: str
    args: dict = Field(default_factory=dict)
    ok: bool
    error: Optional[str] = None
    error_kind: Optional[ToolErrorKind] = None
    iteration: int = 0
