"""Stand-in for the runner backend, for local development and tests.

Speaks the same protocol as the real server: a token endpoint, an ``auth``
handshake, then a scripted run that streams domain events, pauses once for
approval (unless ``noApproval``), and echoes chat messages as streamed chunks.

Run with ``uvicorn agentrunner.mock_backend:app`` or ``python -m agentrunner.mock_backend``.
"""

import asyncio
import json
import secrets
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Set

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .logs import setup_logging
from .settings import get_settings

LOGGER = setup_logging("agentrunner.mock_backend", "mock_backend.log")
settings = get_settings()

AUTH_TIMEOUT_SECONDS = 10.0
POLICY_VIOLATION = 1008

_issued_tokens: Set[str] = set()


def issue_token() -> str:
    token = secrets.token_hex(16)
    _issued_tokens.add(token)
    return token


def redeem_token(token: Any) -> bool:
    """Tokens are single use."""
    if not isinstance(token, str) or token not in _issued_tokens:
        return False
    _issued_tokens.discard(token)
    return True


def scripted_events(task: str) -> List[Dict[str, Any]]:
    """Frames emitted before the approval pause."""
    return [
        {"type": "process_start", "payload": {"processId": "proc-1", "taskDescription": task}},
        {"type": "phase_change", "payload": {"phaseId": "plan", "phaseName": "Planning", "details": "Reading the project"}},
        {"type": "llm_request_start", "payload": {"requestId": "req-1", "model": "mock-model", "promptSummary": task[:80]}},
        {
            "type": "llm_request_success",
            "payload": {
                "requestId": "req-1",
                "model": "mock-model",
                "responseSummary": "Plan ready",
                "actions": [{"actionType": "CREATE", "explanation": "GOAL: Write the file\nREASON: Task asks for it"}],
            },
        },
        {"type": "file_operation_start", "payload": {"operationId": "op-1", "operationType": "CREATE", "filePath": "hello.py"}},
        {
            "type": "file_operation_complete",
            "payload": {"operationId": "op-1", "operationType": "CREATE", "filePath": "hello.py", "success": True, "details": "File written"},
        },
    ]


class MockRunnerConnection:
    """Protocol state for one authenticated socket."""

    def __init__(self, websocket: WebSocket, delay: float) -> None:
        self.websocket = websocket
        self.delay = delay
        self.run_task: asyncio.Task | None = None
        self.approvals: Dict[str, asyncio.Future] = {}
        self._send_lock = asyncio.Lock()

    async def send(self, frame_type: str, payload: Dict[str, Any] | None = None) -> None:
        async with self._send_lock:
            await self.websocket.send_json({"type": frame_type, "payload": payload or {}})
        if self.delay:
            await asyncio.sleep(self.delay)

    async def handle(self, command: Dict[str, Any]) -> None:
        kind = command.get("type")
        payload = command.get("payload") or {}
        if kind == "run":
            await self.start_run(payload)
        elif kind == "stop":
            await self.stop_run()
        elif kind == "stdin":
            await self.send("stdout", {"data": f"received: {str(payload.get('data', '')).rstrip()}"})
        elif kind == "chat_message":
            await self.reply(payload)
        elif kind == "user_interrupt":
            await self.send("system_log", {"level": "info", "message": f"Interrupt received: {payload.get('message', '')}"})
        elif kind == "approval_response":
            self.resolve_approval(payload)
        else:
            await self.send("error", {"message": f"Unknown command type: {kind}"})

    async def start_run(self, params: Dict[str, Any]) -> None:
        if self.run_task is not None and not self.run_task.done():
            await self.send("warning", {"message": "A run is already in progress"})
            return
        LOGGER.info("Mock run start task=%s", params.get("task"))
        self.run_task = asyncio.create_task(self.run_script(params))

    async def stop_run(self) -> None:
        if self.run_task is None or self.run_task.done():
            await self.send("status", {"message": "No run in progress"})
            return
        self.run_task.cancel()
        try:
            await self.run_task
        except asyncio.CancelledError:
            pass
        await self.send("process_end", {"processId": "proc-1", "status": "cancelled", "message": "Stopped by user"})
        await self.send("end", {"exitCode": 130})

    async def run_script(self, params: Dict[str, Any]) -> None:
        task = str(params.get("task", ""))
        for frame in scripted_events(task):
            await self.send(frame["type"], frame["payload"])

        approved = True
        if not params.get("noApproval"):
            approved = await self.wait_for_approval(
                {
                    "approvalId": "approval-1",
                    "actionType": "RUN",
                    "actionDescription": "Run the generated script",
                    "proposedCommand": "python hello.py",
                }
            )

        if approved:
            await self.send("tool_execution_start", {"toolExecutionId": "tool-1", "toolName": "execute_command", "explanation": "GOAL: Verify the script runs"})
            await self.send("stdout", {"data": "Hello, world!"})
            await self.send("tool_execution_result", {"toolExecutionId": "tool-1", "toolName": "execute_command", "status": "success", "resultSummary": "Exit code 0"})
        else:
            await self.send("system_log", {"level": "warning", "message": "Command skipped by user"})

        await self.send("process_end", {"processId": "proc-1", "status": "success", "message": "Task complete"})
        await self.send("end", {"exitCode": 0})

    async def wait_for_approval(self, request: Dict[str, Any]) -> bool:
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self.approvals[request["approvalId"]] = future
        await self.send("waiting_for_approval", request)
        response = await future
        await self.send(
            "approval_response_received",
            {"approvalId": request["approvalId"], "approved": response["approved"], "message": response.get("message")},
        )
        return bool(response["approved"])

    def resolve_approval(self, payload: Dict[str, Any]) -> None:
        future = self.approvals.pop(str(payload.get("approvalId")), None)
        if future is None or future.done():
            LOGGER.warning("Approval response for unknown id %s", payload.get("approvalId"))
            return
        future.set_result({"approved": bool(payload.get("approved")), "message": payload.get("message")})

    async def reply(self, payload: Dict[str, Any]) -> None:
        message = str(payload.get("message", ""))
        message_id = f"reply-{payload.get('messageId', secrets.token_hex(4))}"
        await self.send(
            "chat_response",
            {"messageId": message_id, "message": "", "parentMessageId": payload.get("messageId"), "streaming": True, "sessionId": payload.get("sessionId")},
        )
        words = f"You said: {message}".split(" ")
        for i, word in enumerate(words):
            chunk = word if i == 0 else f" {word}"
            await self.send("chat_response_chunk", {"messageId": message_id, "chunk": chunk, "done": i == len(words) - 1})

    async def shutdown(self) -> None:
        if self.run_task is not None and not self.run_task.done():
            self.run_task.cancel()


@asynccontextmanager
async def lifespan(app: FastAPI):
    LOGGER.info("Mock runner backend starting")
    yield
    LOGGER.info("Shutting down...")
    _issued_tokens.clear()


app = FastAPI(title="Agent Runner Mock Backend", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health() -> Dict[str, Any]:
    return {"status": "ok"}


@app.post(settings.runner_token_path)
async def ws_token() -> Dict[str, str]:
    """Issue a single-use WebSocket token."""
    return {"token": issue_token()}


@app.websocket(settings.runner_ws_path)
async def runner_ws(websocket: WebSocket) -> None:
    """Runner socket: ``auth`` first, then run/stop/stdin/chat/interrupt/approval commands."""
    await websocket.accept()
    connection: MockRunnerConnection | None = None
    try:
        raw = await asyncio.wait_for(websocket.receive_text(), AUTH_TIMEOUT_SECONDS)
        try:
            hello = json.loads(raw)
        except json.JSONDecodeError:
            hello = {}
        if not isinstance(hello, dict) or hello.get("type") != "auth" or not redeem_token(hello.get("token")):
            LOGGER.warning("WS authentication failed")
            await websocket.send_json({"type": "error", "payload": {"message": "Authentication failed"}})
            await websocket.close(code=POLICY_VIOLATION)
            return

        await websocket.send_json({"type": "auth_success", "payload": {"message": "Authenticated successfully"}})
        connection = MockRunnerConnection(websocket, settings.mock_event_delay_seconds)
        LOGGER.info("WS authenticated")

        while True:
            raw = await websocket.receive_text()
            try:
                command = json.loads(raw)
            except json.JSONDecodeError as e:
                LOGGER.error("Invalid WS payload (not JSON): %s", e)
                await connection.send("error", {"message": "Invalid JSON payload"})
                continue
            if not isinstance(command, dict):
                await connection.send("error", {"message": "Invalid command"})
                continue
            await connection.handle(command)

    except WebSocketDisconnect:
        LOGGER.info("WS disconnect")
    except asyncio.TimeoutError:
        LOGGER.info("WS closed: no auth frame received")
        await websocket.close(code=POLICY_VIOLATION)
    finally:
        if connection is not None:
            await connection.shutdown()


def main() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.mock_host, port=settings.mock_port)


if __name__ == "__main__":
    main()
