from unittest.mock import MagicMock

import pytest

from agentrunner.errors import AuthSetupError, TransportError
from agentrunner.session import AgentSession, ConnectionState

from conftest import RUN_PARAMS, WS_URL, TransportRecorder, authenticate


def test_connect_handshake(session: AgentSession, transports: TransportRecorder) -> None:
    """connect() fetches a token, opens the transport and sends auth on open."""
    session.connect()
    assert session.connection_state is ConnectionState.CONNECTING
    transport = transports.last
    assert transport.url == WS_URL
    assert transport.opened
    assert transport.sent == []

    transport.fire_open()
    assert session.connection_state is ConnectionState.AWAITING_AUTH
    assert session.is_connected
    assert transport.sent == [{"type": "auth", "token": "tok-123"}]

    transport.fire_message({"type": "auth_success", "payload": {"message": "Authenticated successfully"}})
    assert session.connection_state is ConnectionState.AUTHENTICATED
    assert session.output == [
        "[INFO] Connecting to runner...",
        "[INFO] Authentication token obtained.",
        "[INFO] WebSocket connection established. Authenticating...",
        "[INFO] Authenticated successfully",
    ]


@pytest.mark.parametrize("steps", [0, 1, 2])
def test_connect_is_idempotent_while_live(
    session: AgentSession, token_provider: MagicMock, transports: TransportRecorder, steps: int
) -> None:
    """A second connect() in Connecting, AwaitingAuth or Authenticated does nothing."""
    session.connect()
    transport = transports.last
    if steps >= 1:
        transport.fire_open()
    if steps >= 2:
        transport.fire_message({"type": "auth_success", "payload": {}})
    state = session.connection_state
    sent = list(transport.sent)
    output = session.output

    session.connect()

    assert len(transports.instances) == 1
    assert token_provider.fetch_token.call_count == 1
    assert session.connection_state is state
    assert transport.sent == sent
    assert not transport.closed
    assert session.output == output


def test_auth_setup_failure_opens_nothing(
    session: AgentSession, token_provider: MagicMock, transports: TransportRecorder
) -> None:
    """A failed credential fetch raises, records the error and opens no transport."""
    token_provider.fetch_token.side_effect = AuthSetupError("Failed to get auth token: Unauthorized")
    with pytest.raises(AuthSetupError):
        session.connect()
    assert transports.instances == []
    assert session.connection_state is ConnectionState.DISCONNECTED
    assert session.error == "Authentication setup failed: Failed to get auth token: Unauthorized"
    assert session.output[-1] == "[ERROR] Authentication setup failed: Failed to get auth token: Unauthorized"


def test_start_with_auth_failure_discards_run(
    session: AgentSession, token_provider: MagicMock, transports: TransportRecorder
) -> None:
    """start() swallows the auth failure, clears running and drops the pending run."""
    token_provider.fetch_token.side_effect = AuthSetupError("boom")
    session_id = session.start(RUN_PARAMS)
    assert session_id.startswith("session-")
    assert not session.is_running
    assert session.error == "Authentication setup failed: boom"
    assert session.dispatcher.pending is None
    assert transports.instances == []


def test_transport_open_failure(session: AgentSession, transports: TransportRecorder) -> None:
    """A transport that cannot start leaves the session disconnected with an error."""

    def failing_factory(url, **callbacks):
        transport = transports(url, **callbacks)
        transport.open = MagicMock(side_effect=TransportError("refused"))
        return transport

    session.connection._transport_factory = failing_factory
    with pytest.raises(TransportError):
        session.connect()
    assert session.connection_state is ConnectionState.DISCONNECTED
    assert session.error == "Failed to establish WebSocket connection."


def test_transport_error_stops_run(session: AgentSession, live) -> None:
    """An error on the channel clears running and records the error."""
    assert session.is_running
    live.fire_error()
    assert not session.is_running
    assert not session.is_connected
    assert session.connection_state is ConnectionState.DISCONNECTED
    assert session.error == "WebSocket connection error."
    assert session.output[-1] == "[ERROR] WebSocket connection error."


def test_unclean_close_while_running(session: AgentSession, live) -> None:
    """An unclean close during a run is reported as an error."""
    live.fire_close(clean=False)
    assert not session.is_running
    assert session.error == "WebSocket connection closed unexpectedly."


def test_clean_close_while_running(session: AgentSession, live) -> None:
    """A clean server close during a run clears running without an error."""
    live.fire_close(clean=True, code=1000, reason="bye")
    assert not session.is_running
    assert session.error is None
    assert session.output[-1] == "[INFO] Connection closed by server."


def test_close_while_idle_is_quiet(session: AgentSession, transports: TransportRecorder) -> None:
    """Closing an idle connection adds no error."""
    transport = authenticate(session, transports)
    transport.fire_close(clean=False, code=None)
    assert session.error is None
    assert session.connection_state is ConnectionState.DISCONNECTED


def test_stale_transport_callbacks_are_ignored(session: AgentSession, transports: TransportRecorder) -> None:
    """Callbacks from a superseded transport never touch the session."""
    first = authenticate(session, transports)
    first.fire_error()
    second = authenticate(session, transports)
    output = session.output

    first.fire_message({"type": "stdout", "payload": {"data": "late"}})
    first.fire_close(clean=False)

    assert session.output == output
    assert session.connection_state is ConnectionState.AUTHENTICATED
    assert second is not first


def test_explicit_close(session: AgentSession, live) -> None:
    """close() shuts the transport, clears running and ignores later callbacks."""
    session.close()
    assert live.closed
    assert session.connection_state is ConnectionState.CLOSED
    assert not session.is_running
    assert session.output[-1] == "[INFO] Connection closed."

    live.fire_message({"type": "stdout", "payload": {"data": "late"}})
    assert session.output[-1] == "[INFO] Connection closed."


def test_reconnect_after_close(session: AgentSession, transports: TransportRecorder) -> None:
    """A closed session opens a fresh transport on the next connect()."""
    authenticate(session, transports)
    session.close()
    authenticate(session, transports)
    assert len(transports.instances) == 2
    assert session.connection_state is ConnectionState.AUTHENTICATED


def test_auth_success_outside_handshake_is_ignored(session: AgentSession, transports: TransportRecorder) -> None:
    """auth_success before the socket opened does not authenticate."""
    session.connect()
    transports.last.fire_message({"type": "auth_success", "payload": {}})
    assert session.connection_state is ConnectionState.CONNECTING
