#!/usr/bin/env python3
"""
Project admin dashboard - assistant backend.
Serves the admin API, or runs a one-shot assistant conversation from the terminal.
"""

import argparse
import logging
import sys
from typing import Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep pmagent imports lazy (inside functions) so `--mint-session` does not
# pull in FastAPI/LangGraph.
#


def _resolve_project(store, ref: str):
    project = store.get_project(ref)
    if project is None:
        project = store.get_project_by_slug(ref)
    return project


def chat_once(project_ref: str, message: str, *, max_iterations: Optional[int] = None) -> int:
    """Run one assistant turn against the configured database and model; print the reply."""
    from datetime import datetime, timezone

    from pmagent.chat.runtime import run_chat
    from pmagent.chat.types import ChatTurn
    from pmagent.config import load_chat_config
    from pmagent.store.gateway import PostgresStore

    store = PostgresStore()
    if not store.configured:
        print("Postgres not configured (set POSTGRES_DSN or POSTGRES_HOST/DB/USER/PASSWORD)", file=sys.stderr)
        return 2

    project = _resolve_project(store, project_ref)
    if project is None:
        print(f"Project not found: {project_ref}", file=sys.stderr)
        return 1

    cfg = load_chat_config()
    memories = store.list_active_memories(project.id, now=datetime.now(timezone.utc), limit=cfg.memory_limit)
    res = run_chat(
        project=project,
        memories=memories,
        messages=[ChatTurn(role="user", content=message)],
        store=store,
        max_iterations=max_iterations or cfg.max_tool_iterations,
    )

    print(res.reply)
    print(f"\n-- {res.iterations} model call(s), stop={res.stop_reason}", file=sys.stderr)
    for ev in res.tool_events:
        status = "ok" if ev.ok else f"error[{ev.error_kind}]: {ev.error}"
        print(f"   [{ev.iteration}] {ev.tool} -> {status}", file=sys.stderr)
    return 0


def mint_session(name: str) -> int:
    """Print a signed admin session cookie value."""
    from pmagent.auth.config import load_auth_config
    from pmagent.auth.session import SESSION_COOKIE_NAME, AdminUser, encode_session

    token = encode_session(load_auth_config(), AdminUser(name=name))
    if token is None:
        print("ADMIN_SESSION_SECRET is not set", file=sys.stderr)
        return 2
    print(f"{SESSION_COOKIE_NAME}={token}")
    return 0


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Project admin dashboard assistant backend",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the admin API server
  python main.py --serve --port 8080

  # Ask the assistant about a project (by id or slug)
  python main.py --project my-app --chat "What is blocking phase 2?"

  # Mint an admin session cookie for API access
  python main.py --mint-session ops
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the admin API server")
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Server listen port (default: 8080)")
    parser.add_argument("--project", metavar="ID_OR_SLUG", help="Project for --chat")
    parser.add_argument("--chat", metavar="MESSAGE", help="Send one message to the project assistant")
    parser.add_argument(
        "--max-iterations", type=int, help="Override CHAT_MAX_TOOL_ITERATIONS for this --chat run"
    )
    parser.add_argument("--mint-session", metavar="NAME", help="Print a signed admin session cookie")

    args = parser.parse_args()

    if args.serve:
        from pmagent.api.server import run as run_server

        run_server(host=args.host, port=args.port)
        return

    if args.mint_session:
        sys.exit(mint_session(args.mint_session))

    if args.chat:
        if not args.project:
            parser.error("--chat requires --project")
        sys.exit(chat_once(args.project, args.chat, max_iterations=args.max_iterations))

    parser.print_help()


if __name__ == "__main__":
    main()
