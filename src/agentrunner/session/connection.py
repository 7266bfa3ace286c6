import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict

from ..errors import AuthSetupError, TransportError
from ..models import SessionState
from ..protocol.commands import auth_frame, encode
from ..services.credentials import TokenProvider
from ..services.transport import Transport, TransportFactory

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_AUTH = "awaiting_auth"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


# A connection in any of these states is live; connect() leaves it alone.
_LIVE_STATES = (
    ConnectionState.CONNECTING,
    ConnectionState.AWAITING_AUTH,
    ConnectionState.AUTHENTICATED,
)


class ConnectionManager:
    """Owns token acquisition, the ``auth`` handshake and the connection state.

    Transitions are driven only by explicit calls (``connect``, ``close``,
    ``mark_authenticated``) and by terminal transport events. There is no
    automatic reconnection: each ``connect()`` call makes at most one attempt.

    Callbacks from a superseded transport are ignored: every attempt gets a
    number and only the current attempt may touch the session.
    """

    def __init__(
        self,
        session: SessionState,
        lock: threading.RLock,
        token_provider: TokenProvider,
        transport_factory: TransportFactory,
        ws_url: str,
        *,
        on_frame: Callable[[str], None],
        on_lost: Callable[[], None],
        notify: Callable[[], None],
    ) -> None:
        self.state = ConnectionState.DISCONNECTED
        self._session = session
        self._lock = lock
        self._token_provider = token_provider
        self._transport_factory = transport_factory
        self._ws_url = ws_url
        self._on_frame = on_frame
        self._on_lost = on_lost
        self._notify = notify
        self._transport: Transport | None = None
        self._token: str | None = None
        self._attempt = 0

    @property
    def is_authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED and self._transport is not None

    @property
    def is_open(self) -> bool:
        return self.state in (ConnectionState.AWAITING_AUTH, ConnectionState.AUTHENTICATED)

    def connect(self) -> None:
        """Open and authenticate a connection unless one is already live.

        Blocks only for the credential request.

        Raises:
            AuthSetupError: the credential could not be fetched; no
                transport was opened.
            TransportError: the transport could not be started.
        """
        with self._lock:
            if self.state in _LIVE_STATES:
                logger.debug("connect() ignored: connection is %s", self.state.value)
                return
            self._discard_transport()
            self._attempt += 1
            attempt = self._attempt
            self.state = ConnectionState.CONNECTING
            self._session.is_connected = False
            self._session.error = None
            self._session.add_output("[INFO] Connecting to runner...")
        self._notify()

        try:
            token = self._token_provider.fetch_token()
        except AuthSetupError as e:
            with self._lock:
                if attempt == self._attempt:
                    logger.error("Error fetching auth token: %s", e)
                    self.state = ConnectionState.DISCONNECTED
                    self._session.is_running = False
                    self._session.record_error(f"Authentication setup failed: {e}")
                    self._on_lost()
            self._notify()
            raise

        try:
            with self._lock:
                if attempt != self._attempt:
                    logger.info("Connection attempt superseded before opening")
                    return
                self._token = token
                self._session.add_output("[INFO] Authentication token obtained.")
                self._open_transport(attempt)
        finally:
            self._notify()

    def _open_transport(self, attempt: int) -> None:
        def stale() -> bool:
            return attempt != self._attempt

        def on_open() -> None:
            with self._lock:
                if stale():
                    return
                self._handle_open()
            self._notify()

        def on_message(raw: str) -> None:
            with self._lock:
                if stale():
                    return
                self._on_frame(raw)
            self._notify()

        def on_error(error: Exception) -> None:
            with self._lock:
                if stale():
                    return
                self._handle_error(error)
            self._notify()

        def on_close(clean: bool, code: int | None, reason: str | None) -> None:
            with self._lock:
                if stale():
                    return
                self._handle_close(clean, code, reason)
            self._notify()

        transport = self._transport_factory(
            self._ws_url,
            on_open=on_open,
            on_message=on_message,
            on_error=on_error,
            on_close=on_close,
        )
        self._transport = transport
        try:
            transport.open()
        except TransportError as e:
            logger.error("WebSocket open failed: %s", e)
            self._drop()
            self._session.is_running = False
            self._session.record_error("Failed to establish WebSocket connection.")
            raise

    def _handle_open(self) -> None:
        logger.info("WebSocket connection opened")
        self.state = ConnectionState.AWAITING_AUTH
        self._session.is_connected = True
        self._session.add_output("[INFO] WebSocket connection established. Authenticating...")
        try:
            self.send(auth_frame(self._token or ""))
        except TransportError as e:
            logger.error("Sending auth frame failed: %s", e)
            transport = self._transport
            self._drop()
            self._session.is_running = False
            self._session.record_error(f"Authentication failed: {e}")
            if transport is not None:
                transport.close()

    def _handle_error(self, error: Exception) -> None:
        logger.error("WebSocket error: %s", error)
        self._drop()
        self._session.is_running = False
        self._session.record_error("WebSocket connection error.")

    def _handle_close(self, clean: bool, code: int | None, reason: str | None) -> None:
        logger.info("WebSocket connection closed. Code: %s, Reason: %s", code, reason)
        was_running = self._session.is_running
        self._drop()
        if not was_running:
            return
        self._session.is_running = False
        if clean:
            self._session.add_output("[INFO] Connection closed by server.")
        else:
            self._session.record_error("WebSocket connection closed unexpectedly.")

    def mark_authenticated(self) -> bool:
        """Handle ``auth_success``; returns False if no handshake was pending."""
        if self.state is not ConnectionState.AWAITING_AUTH:
            logger.warning("auth_success received in state %s; ignored", self.state.value)
            return False
        logger.info("WebSocket authenticated")
        self.state = ConnectionState.AUTHENTICATED
        return True

    def send(self, frame: Dict[str, Any]) -> None:
        """Write one frame on the current transport.

        Raises:
            TransportError: there is no transport or the write failed.
        """
        if self._transport is None:
            raise TransportError("WebSocket not open.")
        logger.debug("Sending frame type=%s", frame.get("type"))
        self._transport.send(encode(frame))

    def close(self) -> None:
        """Explicitly shut the connection; a later connect() opens a fresh one."""
        with self._lock:
            self._attempt += 1
            transport = self._transport
            self._drop()
            self.state = ConnectionState.CLOSED
            if self._session.is_running:
                self._session.is_running = False
                self._session.add_output("[INFO] Connection closed.")
        if transport is not None:
            logger.info("Closing WebSocket connection")
            transport.close()
        self._notify()

    def _drop(self) -> None:
        """Fall back to Disconnected and forget the transport and token."""
        self._attempt += 1
        self.state = ConnectionState.DISCONNECTED
        self._transport = None
        self._token = None
        self._session.is_connected = False
        self._on_lost()

    def _discard_transport(self) -> None:
        if self._transport is not None:
            transport, self._transport = self._transport, None
            transport.close()
