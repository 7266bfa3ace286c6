import contextlib
import importlib.util
import json
import threading
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from agentrunner import mock_backend
from agentrunner.services.credentials import TokenProvider
from agentrunner.services.transport import Transport
from agentrunner.session import AgentSession
from agentrunner.settings import Settings

WS_PATH = "/api/devlm/ws"
TOKEN_PATH = "/api/devlm/ws-token"


@pytest.fixture
def client(monkeypatch) -> TestClient:
    """Mock backend with no delay between events."""
    monkeypatch.setattr(mock_backend, "settings", Settings(mock_event_delay_seconds=0))
    with TestClient(mock_backend.app) as c:
        yield c


def _receive_until(ws, frame_type: str) -> List[Dict[str, Any]]:
    frames = []
    while True:
        frame = ws.receive_json()
        frames.append(frame)
        if frame["type"] == frame_type:
            return frames


def _authenticated(client: TestClient, ws) -> None:
    token = client.post(TOKEN_PATH).json()["token"]
    ws.send_json({"type": "auth", "token": token})
    assert ws.receive_json() == {"type": "auth_success", "payload": {"message": "Authenticated successfully"}}


def test_health(client: TestClient) -> None:
    """Health endpoint answers ok."""
    assert client.get("/health").json() == {"status": "ok"}


def test_server_has_websocket_support() -> None:
    """uvicorn can serve the runner socket: a WebSocket protocol library is installed."""
    assert importlib.util.find_spec("websockets") or importlib.util.find_spec("wsproto")


def test_bad_token_closes_socket(client: TestClient) -> None:
    """An unknown token gets an error frame and a policy-violation close."""
    with client.websocket_connect(WS_PATH) as ws:
        ws.send_json({"type": "auth", "token": "forged"})
        assert ws.receive_json() == {"type": "error", "payload": {"message": "Authentication failed"}}
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()
        assert exc_info.value.code == mock_backend.POLICY_VIOLATION


def test_tokens_are_single_use(client: TestClient) -> None:
    """A token redeemed once cannot authenticate a second socket."""
    token = client.post(TOKEN_PATH).json()["token"]
    with client.websocket_connect(WS_PATH) as ws:
        ws.send_json({"type": "auth", "token": token})
        assert ws.receive_json()["type"] == "auth_success"
    with client.websocket_connect(WS_PATH) as ws:
        ws.send_json({"type": "auth", "token": token})
        assert ws.receive_json()["type"] == "error"


def test_run_with_approval(client: TestClient) -> None:
    """A run pauses for approval and finishes once approved."""
    with client.websocket_connect(WS_PATH) as ws:
        _authenticated(client, ws)
        ws.send_json({"type": "run", "payload": {"task": "hello"}})
        before = _receive_until(ws, "waiting_for_approval")
        assert before[0] == {"type": "process_start", "payload": {"processId": "proc-1", "taskDescription": "hello"}}
        assert before[-1]["payload"]["approvalId"] == "approval-1"

        ws.send_json({"type": "approval_response", "payload": {"approvalId": "approval-1", "approved": True}})
        after = _receive_until(ws, "end")
        assert [f["type"] for f in after] == [
            "approval_response_received",
            "tool_execution_start",
            "stdout",
            "tool_execution_result",
            "process_end",
            "end",
        ]
        assert after[-1]["payload"] == {"exitCode": 0}


def test_run_without_approval(client: TestClient) -> None:
    """noApproval skips the pause."""
    with client.websocket_connect(WS_PATH) as ws:
        _authenticated(client, ws)
        ws.send_json({"type": "run", "payload": {"task": "hello", "noApproval": True}})
        frames = _receive_until(ws, "end")
        assert "waiting_for_approval" not in [f["type"] for f in frames]


def test_stop_during_approval(client: TestClient) -> None:
    """stop cancels the run and reports exit code 130."""
    with client.websocket_connect(WS_PATH) as ws:
        _authenticated(client, ws)
        ws.send_json({"type": "run", "payload": {"task": "hello"}})
        _receive_until(ws, "waiting_for_approval")
        ws.send_json({"type": "stop"})
        assert ws.receive_json()["payload"]["status"] == "cancelled"
        assert ws.receive_json() == {"type": "end", "payload": {"exitCode": 130}}


def test_chat_echo_is_streamed(client: TestClient) -> None:
    """Chat messages are answered with a streaming response and chunks."""
    with client.websocket_connect(WS_PATH) as ws:
        _authenticated(client, ws)
        ws.send_json({"type": "chat_message", "payload": {"sessionId": "s", "message": "hi there", "messageId": "m1"}})
        head = ws.receive_json()
        assert head["type"] == "chat_response"
        assert head["payload"]["messageId"] == "reply-m1"
        assert head["payload"]["streaming"] is True

        chunks = []
        while True:
            frame = ws.receive_json()
            chunks.append(frame["payload"]["chunk"])
            if frame["payload"]["done"]:
                break
        assert "".join(chunks) == "You said: hi there"


def test_unknown_command(client: TestClient) -> None:
    """Unknown command types are answered with an error frame."""
    with client.websocket_connect(WS_PATH) as ws:
        _authenticated(client, ws)
        ws.send_json({"type": "dance"})
        assert ws.receive_json() == {"type": "error", "payload": {"message": "Unknown command type: dance"}}


class InProcessTransport(Transport):
    """Transport over the TestClient websocket session, read on a thread."""

    def __init__(self, client: TestClient, url: str, **callbacks: Any) -> None:
        super().__init__(url, **callbacks)
        self._client = client
        self._stack = contextlib.ExitStack()
        self._ws = None

    def open(self) -> None:
        threading.Thread(target=self._run, daemon=True).start()

    def _run(self) -> None:
        self._ws = self._stack.enter_context(self._client.websocket_connect(self.url))
        self._on_open()
        while True:
            try:
                raw = self._ws.receive_text()
            except WebSocketDisconnect as e:
                self._on_close(True, e.code, None)
                return
            self._on_message(raw)
            # nothing more is sent after the run ends
            if json.loads(raw).get("type") == "end":
                return

    def send(self, data: str) -> None:
        self._ws.send_text(data)

    def close(self) -> None:
        self._stack.close()

    @property
    def is_open(self) -> bool:
        return self._ws is not None


def test_session_against_mock_backend(client: TestClient) -> None:
    """End to end: token, handshake, deferred run, approval, finish."""
    session = AgentSession(
        token_provider=TokenProvider(f"http://testserver{TOKEN_PATH}", client=client),
        transport_factory=lambda url, **callbacks: InProcessTransport(client, url, **callbacks),
        ws_url=WS_PATH,
        settings=Settings(),
    )
    try:
        session.start({"task": "say hello"})
        assert session.wait_until(lambda s: len(s.pending_approvals) == 1, timeout=5)
        assert session.send_approval_response("approval-1", True)
        assert session.wait_until(lambda s: bool(s.output) and s.output[-1].startswith("[INFO] Script finished"), timeout=5)

        output = session.output
        assert "[INFO] Running script..." in output
        assert "[PROCESS] Started: say hello" in output
        assert "[APPROVAL REQUIRED] Run the generated script" in output
        assert "Hello, world!" in output
        assert output[-1] == "[INFO] Script finished (Code: 0)."
        assert session.error is None
    finally:
        session.close()
