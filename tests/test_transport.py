from unittest.mock import MagicMock, patch

import pytest
import websocket

from agentrunner.errors import TransportError
from agentrunner.services.transport import WebSocketTransport

URL = "ws://runner.test/api/devlm/ws"


@pytest.fixture
def callbacks() -> dict:
    """One MagicMock per transport callback."""
    return {
        "on_open": MagicMock(),
        "on_message": MagicMock(),
        "on_error": MagicMock(),
        "on_close": MagicMock(),
    }


@pytest.fixture
def app_class():
    """WebSocketApp replaced by a MagicMock class."""
    with patch("agentrunner.services.transport.websocket.WebSocketApp") as m:
        yield m


@pytest.fixture
def transport(callbacks: dict, app_class: MagicMock) -> WebSocketTransport:
    """Opened transport whose reader thread has already returned."""
    t = WebSocketTransport(URL, headers={"Cookie": "sid=1"}, **callbacks)
    t.open()
    t._thread.join(timeout=1)
    return t


def _app_callback(app_class: MagicMock, name: str):
    return app_class.call_args.kwargs[name]


def test_open_starts_app_on_thread(transport: WebSocketTransport, app_class: MagicMock) -> None:
    """open() builds the app with url and headers and runs it on a daemon thread."""
    app_class.assert_called_once()
    assert app_class.call_args.args == (URL,)
    assert app_class.call_args.kwargs["header"] == {"Cookie": "sid=1"}
    app_class.return_value.run_forever.assert_called_once_with(ping_interval=0)
    assert transport._thread.daemon
    assert transport._thread.name == "agentrunner-ws"


def test_open_twice_is_noop(transport: WebSocketTransport, app_class: MagicMock) -> None:
    """A second open() does not create another app."""
    transport.open()
    app_class.assert_called_once()


def test_open_and_message_callbacks(transport: WebSocketTransport, app_class: MagicMock, callbacks: dict) -> None:
    """App callbacks are forwarded without the ws argument."""
    ws = app_class.return_value
    _app_callback(app_class, "on_open")(ws)
    _app_callback(app_class, "on_message")(ws, '{"type": "status"}')
    callbacks["on_open"].assert_called_once_with()
    callbacks["on_message"].assert_called_once_with('{"type": "status"}')


def test_error_callback(transport: WebSocketTransport, app_class: MagicMock, callbacks: dict) -> None:
    """Errors reach on_error as the exception object."""
    error = ConnectionResetError("reset")
    _app_callback(app_class, "on_error")(app_class.return_value, error)
    callbacks["on_error"].assert_called_once_with(error)


@pytest.mark.parametrize(
    "code,reason,clean",
    [
        (1000, "bye", True),
        (1011, "server error", True),
        (None, None, False),
    ],
)
def test_close_callback_cleanliness(
    transport: WebSocketTransport, app_class: MagicMock, callbacks: dict, code, reason, clean: bool
) -> None:
    """A close with a status code is clean; one without is not."""
    _app_callback(app_class, "on_close")(app_class.return_value, code, reason)
    callbacks["on_close"].assert_called_once_with(clean, code, reason)


def test_send_before_open(callbacks: dict) -> None:
    """Sending on an unopened transport is a TransportError."""
    t = WebSocketTransport(URL, **callbacks)
    with pytest.raises(TransportError):
        t.send("{}")


def test_send_writes_to_app(transport: WebSocketTransport, app_class: MagicMock) -> None:
    """send() writes the text frame through the app."""
    transport.send('{"type": "stop"}')
    app_class.return_value.send.assert_called_once_with('{"type": "stop"}')


@pytest.mark.parametrize(
    "error",
    [websocket.WebSocketConnectionClosedException("closed"), BrokenPipeError("pipe")],
)
def test_send_failure_is_transport_error(transport: WebSocketTransport, app_class: MagicMock, error) -> None:
    """websocket-client and socket errors on send become TransportError."""
    app_class.return_value.send.side_effect = error
    with pytest.raises(TransportError, match="WebSocket send failed"):
        transport.send("{}")


def test_close(transport: WebSocketTransport, app_class: MagicMock) -> None:
    """close() closes the app and tolerates errors from it."""
    app_class.return_value.close.side_effect = OSError("already gone")
    transport.close()
    app_class.return_value.close.assert_called_once_with()


def test_close_before_open_is_noop(callbacks: dict) -> None:
    """Closing an unopened transport does nothing."""
    WebSocketTransport(URL, **callbacks).close()


def test_is_open_follows_socket(transport: WebSocketTransport, app_class: MagicMock) -> None:
    """is_open reflects the underlying socket's connected flag."""
    app_class.return_value.sock.connected = True
    assert transport.is_open
    app_class.return_value.sock.connected = False
    assert not transport.is_open
    app_class.return_value.sock = None
    assert not transport.is_open
