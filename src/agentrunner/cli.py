"""Terminal driver: start a task, stream its log, chat with it, answer approvals."""

from __future__ import annotations

import argparse
import queue
import sys
import threading
from collections.abc import Sequence
from typing import TextIO

from .logs import setup_logging
from .models import SessionSnapshot
from .protocol.commands import StartParams
from .session import AgentSession
from .settings import get_settings

HELP_TEXT = (
    "Type a message to chat with the task. Commands: /stdin TEXT, /interrupt [MESSAGE], "
    "/approve [ID] [MESSAGE], /deny [ID] [MESSAGE], /stop, /quit"
)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentrunner",
        description="Start an autonomous agent task and follow it live",
    )
    parser.add_argument("--version", action="version", version="%(prog)s 0.1.0")
    parser.add_argument("--url", help="Runner base URL (default: RUNNER_BASE_URL or http://localhost:5001)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Start a task and watch it")
    run_parser.add_argument("task", help="Task description")
    run_parser.add_argument("--mode", default="generate")
    run_parser.add_argument("--model", default="")
    run_parser.add_argument("--source", default="cli")
    run_parser.add_argument("--publisher")
    run_parser.add_argument("--project-path", default=".")
    run_parser.add_argument("--write-mode", default="diff")
    run_parser.add_argument("--project-id")
    run_parser.add_argument("--region")
    run_parser.add_argument("--server-url")
    run_parser.add_argument("--debug-prompt", action="store_true")
    run_parser.add_argument("--no-approval", action="store_true", help="Let the task run without approval pauses")
    run_parser.add_argument("--frontend", action="store_true")
    return parser


def params_from_args(args: argparse.Namespace) -> StartParams:
    return StartParams(
        task=args.task,
        mode=args.mode,
        model=args.model,
        source=args.source,
        publisher=args.publisher,
        project_path=args.project_path,
        write_mode=args.write_mode,
        project_id=args.project_id,
        region=args.region,
        server_url=args.server_url,
        debug_prompt=args.debug_prompt,
        no_approval=args.no_approval,
        frontend=args.frontend,
    )


class ConsolePrinter:
    """Session listener that prints output lines and new approval prompts once."""

    def __init__(self, stream: TextIO = sys.stdout) -> None:
        self._stream = stream
        self._printed = 0
        self._announced: set[str] = set()
        self._lock = threading.Lock()

    def __call__(self, snapshot: SessionSnapshot) -> None:
        with self._lock:
            # start() clears the output
            if len(snapshot.output) < self._printed:
                self._printed = 0
            for line in snapshot.output[self._printed:]:
                print(line, file=self._stream)
            self._printed = len(snapshot.output)

            for request in snapshot.pending_approvals:
                if request.approval_id in self._announced:
                    continue
                self._announced.add(request.approval_id)
                print(
                    f">>> Approval needed ({request.approval_id}): {request.action_description}. "
                    "Answer with /approve or /deny",
                    file=self._stream,
                )
            self._stream.flush()


def handle_line(session: AgentSession, line: str) -> bool:
    """Dispatch one typed line; returns False when the user asked to quit."""
    text = line.strip()
    if not text:
        return True
    if not text.startswith("/"):
        session.send_chat_message(text)
        return True

    command, _, rest = text.partition(" ")
    rest = rest.strip()
    if command == "/quit":
        return False
    if command == "/stop":
        session.stop()
    elif command == "/stdin":
        session.send_stdin(rest)
    elif command == "/interrupt":
        session.send_interrupt(rest or None)
    elif command in ("/approve", "/deny"):
        approval_id, _, message = rest.partition(" ")
        if not approval_id:
            pending = session.pending_approvals
            if not pending:
                print("No approval is outstanding")
                return True
            if len(pending) > 1:
                print("Several approvals are outstanding; give the id explicitly")
                return True
            approval_id = pending[0].approval_id
        session.send_approval_response(approval_id, command == "/approve", message.strip() or None)
    else:
        print(HELP_TEXT)
    return True


def _read_lines(lines: queue.Queue) -> None:
    for line in sys.stdin:
        lines.put(line)
    lines.put(None)


def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    if args.url:
        settings = settings.model_copy(update={"runner_base_url": args.url})
    logger = setup_logging("agentrunner.client", "client.log")

    session = AgentSession(settings=settings)
    printer = ConsolePrinter()
    session.subscribe(printer)
    print(HELP_TEXT)

    session.start(params_from_args(args))
    logger.info("Session %s started", session.session_id)

    lines: queue.Queue = queue.Queue()
    threading.Thread(target=_read_lines, args=(lines,), name="agentrunner-stdin", daemon=True).start()

    try:
        while session.is_running:
            try:
                line = lines.get(timeout=0.5)
            except queue.Empty:
                continue
            if line is None or not handle_line(session, line):
                break
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        session.close()

    return 1 if session.error else 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)
    if args.command == "run":
        return run(args)
    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
