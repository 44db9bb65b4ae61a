"""Interactive CLI for the n8n draft agent.

Runs the draft conversation directly in the terminal: describe a workflow,
review the preview, then confirm, refine or cancel it.

Usage:
    n8n-draft-agent chat --user alice
    n8n-draft-agent chat --user alice "Send me Stripe summaries via Gmail every Monday"
    n8n-draft-agent serve --port 8000
"""

from __future__ import annotations

import asyncio
import logging
import sys
from argparse import ArgumentParser

from dotenv import load_dotenv

_EXIT_WORDS = {"exit", "quit", ":q"}


# ---------------------------------------------------------------------------
# Core interactive session runner
# ---------------------------------------------------------------------------


async def _run_chat(user_id: str, first_message: str | None = None) -> None:
    """Loop over user turns until EOF or an exit word."""
    from n8n_draft_agent.agent import create_agent
    from n8n_draft_agent.client import Settings
    from n8n_draft_agent.reasoning import ReasoningSettings

    agent = create_agent(Settings.from_env(), ReasoningSettings.from_env())

    print(f"\nUser    : {user_id}")
    print("Describe the workflow you want. Type 'exit' to quit.")
    print("-" * 60)

    try:
        message = first_message
        while True:
            if message is None:
                message = _prompt("\nyou> ")
            if message.lower() in _EXIT_WORDS:
                break

            result = await agent.lifecycle.handle_message(user_id, message)
            print()
            print(result.text)
            message = None

    except KeyboardInterrupt:
        print("\n\nInterrupted.")
    finally:
        await agent.close()


def _prompt(label: str) -> str:
    """Read a line from stdin, stripping whitespace. Exits on EOF."""
    try:
        return input(label).strip()
    except EOFError:
        print("\n(EOF received, exiting)")
        sys.exit(0)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main() -> None:
    load_dotenv()

    from n8n_draft_agent.client import Settings

    logging.basicConfig(level=Settings.from_env().log_level, format="%(levelname)s: %(message)s")

    parser = ArgumentParser(
        prog="n8n-draft-agent",
        description="n8n draft agent: build n8n workflows from plain language",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    chat_p = sub.add_parser("chat", help="Start an interactive draft conversation")
    chat_p.add_argument("--user", required=True, help="User ID that owns drafts and workflows")
    chat_p.add_argument("message", nargs="?", help="Optional first message")

    serve_p = sub.add_parser("serve", help="Run the HTTP API")
    serve_p.add_argument("--host", default="0.0.0.0")
    serve_p.add_argument("--port", type=int, default=8000)
    serve_p.add_argument("--reload", action="store_true")

    args = parser.parse_args()

    if args.command == "chat":
        asyncio.run(_run_chat(args.user, args.message))
    elif args.command == "serve":
        from n8n_draft_agent.api import serve

        serve(args.host, args.port, args.reload)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
