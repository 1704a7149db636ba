from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, TypedDict

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage
from langgraph.graph import END, StateGraph

from pmagent.chat.prompt import build_system_prompt
from pmagent.chat.registry import tool_specs
from pmagent.chat.tools import ToolContext, ToolResult, run_tool
from pmagent.chat.types import ChatStopReason, ChatToolEvent, ChatTurn, ToolResultEnvelope
from pmagent.config import load_chat_config
from pmagent.graphs.tracing import build_invoke_config, trace_tool_call
from pmagent.llm.client import ModelTurn, ToolCallRequest, build_model, invoke_model
from pmagent.store.gateway import StateGateway
from pmagent.store.models import Memory, Project

logger = logging.getLogger(__name__)

NO_RESPONSE_TEXT = "No response generated."


@dataclass(frozen=True)
class ChatRunResult:
    reply: str
    iterations: int
    stop_reason: ChatStopReason
    tool_events: List[ChatToolEvent] = field(default_factory=list)


class _State(TypedDict, total=False):
    history: List[BaseMessage]
    texts: List[str]
    iterations: int
    turn: Optional[ModelTurn]
    stop_reason: Optional[str]
    tool_events: List[ChatToolEvent]


def to_langchain_messages(turns: Sequence[ChatTurn]) -> List[BaseMessage]:
    out: List[BaseMessage] = []
    for t in turns:
        if t.role == "assistant":
            out.append(AIMessage(content=t.content))
        else:
            out.append(HumanMessage(content=t.content))
    return out


def _dispatch(call: ToolCallRequest, ctx: ToolContext) -> ToolResult:
    try:
        return trace_tool_call(
            tool=call.name,
            args=call.args,
            fn=lambda: run_tool(tool=call.name, args=call.args, ctx=ctx),
        )
    except Exception as e:
        # run_tool never raises; this only guards the tracing wrapper.
        logger.exception("Tool %s dispatch failed", call.name)
        return ToolResult(ok=False, error=str(e) or type(e).__name__, error_kind="internal")


def _tool_message(env: ToolResultEnvelope) -> ToolMessage:
    return ToolMessage(
        content=json.dumps(env.content, ensure_ascii=False, default=str),
        tool_call_id=env.tool_call_id,
        status="error" if env.is_error else "success",
    )


def run_chat(
    *,
    project: Project,
    memories: Sequence[Memory],
    messages: Sequence[ChatTurn],
    store: StateGateway,
    max_iterations: Optional[int] = None,
    model: Any = None,
) -> ChatRunResult:
    """
    Bounded tool-use loop for one chat request.

    The model is called at most `max_iterations` times (default CHAT_MAX_TOOL_ITERATIONS).
    Text from every model turn is accumulated in order. The loop ends when the model
    stops asking for tools, when it asks for tools but sends none (soft stop), or when
    the ceiling is reached. Tool failures never end the loop; model failures propagate
    as `LLMError`.
    """
    ceiling = int(max_iterations or load_chat_config().max_tool_iterations)
    system = build_system_prompt(project, memories)
    llm = model if model is not None else build_model(tool_specs())
    ctx = ToolContext(project_id=project.id, store=store)

    # NOTE: node functions are left unannotated; LangGraph may resolve type hints
    # via `typing.get_type_hints` and local names would not be resolvable.
    def llm_step(state):
        iterations = int(state.get("iterations") or 0) + 1
        turn = invoke_model(model=llm, system=system, messages=state.get("history") or [])
        texts = list(state.get("texts") or []) + list(turn.texts)

        stop: Optional[str] = None
        if not turn.wants_tools:
            stop = "done"
        elif not turn.tool_calls:
            logger.info("Model signalled tool use without tool calls; stopping (iteration=%d)", iterations)
            stop = "empty_tool_use"
        return {**state, "iterations": iterations, "texts": texts, "turn": turn, "stop_reason": stop}

    def tool_step(state):
        turn: ModelTurn = state["turn"]
        iterations = int(state.get("iterations") or 0)
        events = list(state.get("tool_events") or [])
        results: List[ToolMessage] = []

        # Sequential, in call order: exactly one result per tool call id.
        for call in turn.tool_calls:
            res = _dispatch(call, ctx)
            results.append(_tool_message(res.to_envelope(call.id)))
            events.append(
                ChatToolEvent(
                    tool_call_id=call.id,
                    tool=call.name,
                    args=call.args,
                    ok=res.ok,
                    error=res.error,
                    error_kind=res.error_kind,
                    iteration=iterations,
                )
            )

        history = list(state.get("history") or []) + [turn.message] + results
        stop: Optional[str] = None
        if iterations >= ceiling:
            logger.warning("Chat reached max tool iterations (%d) for project %s", ceiling, project.id)
            stop = "max_iterations"
        return {**state, "history": history, "tool_events": events, "turn": None, "stop_reason": stop}

    def route_after_llm(state) -> str:
        return "end" if state.get("stop_reason") else "tools"

    def route_after_tools(state) -> str:
        return "end" if state.get("stop_reason") else "llm"

    g = StateGraph(_State)
    g.add_node("llm", llm_step)
    g.add_node("tools", tool_step)
    g.set_entry_point("llm")
    g.add_conditional_edges("llm", route_after_llm, {"tools": "tools", "end": END})
    g.add_conditional_edges("tools", route_after_tools, {"llm": "llm", "end": END})
    app = g.compile()

    init: Dict[str, Any] = {
        "history": to_langchain_messages(messages),
        "texts": [],
        "iterations": 0,
        "turn": None,
        "stop_reason": None,
        "tool_events": [],
    }
    cfg = build_invoke_config(
        kind="project_chat",
        run_name=f"project_chat:{project.id}",
        metadata={"project_id": project.id, "max_iterations": ceiling},
    )
    # Two graph steps per iteration, plus headroom.
    cfg["recursion_limit"] = 2 * ceiling + 5
    out = app.invoke(init, config=cfg)

    reply = "".join(out.get("texts") or [])
    return ChatRunResult(
        reply=reply or NO_RESPONSE_TEXT,
        iterations=int(out.get("iterations") or 0),
        stop_reason=out.get("stop_reason") or "done",
        tool_events=list(out.get("tool_events") or []),
    )
