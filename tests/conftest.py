import json
import sys
from pathlib import Path
from typing import Any, Dict, List
from unittest.mock import MagicMock

import pytest


_root = Path(__file__).resolve().parents[1]
_src = _root / "src"
if _src.exists() and str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from agentrunner.errors import TransportError  # noqa: E402
from agentrunner.services.credentials import TokenProvider  # noqa: E402
from agentrunner.services.transport import Transport  # noqa: E402
from agentrunner.session import AgentSession  # noqa: E402
from agentrunner.settings import Settings  # noqa: E402

WS_URL = "ws://runner.test/api/devlm/ws"
RUN_PARAMS = {
    "task": "create a simple hello world python script",
    "mode": "generate",
    "model": "mock-model",
    "source": "tests",
    "projectPath": "/tmp/project",
    "writeMode": "diff",
    "debugPrompt": False,
    "noApproval": False,
    "frontend": False,
}


class FakeTransport(Transport):
    """In-memory transport: records sent frames, lets tests fire callbacks."""

    def __init__(self, url: str, **callbacks: Any) -> None:
        super().__init__(url, **callbacks)
        self.sent: List[Dict[str, Any]] = []
        self.opened = False
        self.closed = False
        self.fail_sends = False

    def open(self) -> None:
        self.opened = True

    def send(self, data: str) -> None:
        if self.closed or self.fail_sends:
            raise TransportError("socket is already closed")
        self.sent.append(json.loads(data))

    def close(self) -> None:
        self.closed = True

    @property
    def is_open(self) -> bool:
        return self.opened and not self.closed

    def sent_types(self) -> List[str]:
        return [frame["type"] for frame in self.sent]

    def fire_open(self) -> None:
        self._on_open()

    def fire_message(self, frame: Any) -> None:
        self._on_message(frame if isinstance(frame, str) else json.dumps(frame))

    def fire_error(self, error: Exception | None = None) -> None:
        self._on_error(error or ConnectionResetError("connection reset by peer"))

    def fire_close(self, clean: bool = False, code: int | None = None, reason: str | None = None) -> None:
        self._on_close(clean, code, reason)


class TransportRecorder:
    """Transport factory that keeps every FakeTransport it creates."""

    def __init__(self) -> None:
        self.instances: List[FakeTransport] = []

    def __call__(self, url: str, **callbacks: Any) -> FakeTransport:
        transport = FakeTransport(url, **callbacks)
        self.instances.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.instances[-1]


@pytest.fixture
def token_provider() -> MagicMock:
    """Token provider mock returning a fixed token."""
    m = MagicMock(spec=TokenProvider)
    m.fetch_token.return_value = "tok-123"
    return m


@pytest.fixture
def transports() -> TransportRecorder:
    return TransportRecorder()


@pytest.fixture
def session(token_provider: MagicMock, transports: TransportRecorder) -> AgentSession:
    """Disconnected session wired to the fake transport."""
    return AgentSession(
        token_provider=token_provider,
        transport_factory=transports,
        ws_url=WS_URL,
        settings=Settings(),
    )


def authenticate(session: AgentSession, transports: TransportRecorder) -> FakeTransport:
    """Connect, open and complete the handshake; returns the live transport."""
    session.connect()
    transport = transports.last
    transport.fire_open()
    transport.fire_message({"type": "auth_success", "payload": {"message": "Authenticated successfully"}})
    return transport


@pytest.fixture
def live(session: AgentSession, transports: TransportRecorder) -> FakeTransport:
    """Authenticated session with a run in progress."""
    transport = authenticate(session, transports)
    session.start(RUN_PARAMS)
    return transport
