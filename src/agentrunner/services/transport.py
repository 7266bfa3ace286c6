"""Persistent bidirectional channel to the runner backend.

One :class:`Transport` instance serves exactly one connection attempt. The
owner supplies four callbacks; the transport invokes them from its own
reader thread, strictly one inbound frame at a time and in arrival order.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict

import websocket

from ..errors import TransportError

logger = logging.getLogger(__name__)

OnOpen = Callable[[], None]
OnMessage = Callable[[str], None]
OnError = Callable[[Exception], None]
OnClose = Callable[[bool, int | None, str | None], None]


class Transport(ABC):
    """Abstract persistent channel: open / send / close plus inbound callbacks."""

    def __init__(
        self,
        url: str,
        *,
        on_open: OnOpen,
        on_message: OnMessage,
        on_error: OnError,
        on_close: OnClose,
    ) -> None:
        self.url = url
        self._on_open = on_open
        self._on_message = on_message
        self._on_error = on_error
        self._on_close = on_close

    @abstractmethod
    def open(self) -> None:
        """Start connecting; ``on_open`` fires once the channel is usable.

        Raises:
            TransportError: the connection attempt could not be started.
        """

    @abstractmethod
    def send(self, data: str) -> None:
        """Write one text frame.

        Raises:
            TransportError: the channel is not open or the write failed.
        """

    @abstractmethod
    def close(self) -> None:
        """Close the channel. Idempotent."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while frames can be written."""


TransportFactory = Callable[..., Transport]


class WebSocketTransport(Transport):
    """Transport over websocket-client's ``WebSocketApp`` on a daemon thread."""

    def __init__(
        self,
        url: str,
        *,
        on_open: OnOpen,
        on_message: OnMessage,
        on_error: OnError,
        on_close: OnClose,
        headers: Dict[str, str] | None = None,
        ping_interval: float = 0,
    ) -> None:
        super().__init__(
            url,
            on_open=on_open,
            on_message=on_message,
            on_error=on_error,
            on_close=on_close,
        )
        self._headers = headers or {}
        self._ping_interval = ping_interval
        self._app: websocket.WebSocketApp | None = None
        self._thread: threading.Thread | None = None

    def open(self) -> None:
        if self._app is not None:
            return
        self._app = websocket.WebSocketApp(
            self.url,
            header=self._headers,
            on_open=lambda ws: self._on_open(),
            on_message=lambda ws, message: self._on_message(message),
            on_error=lambda ws, error: self._on_error(error),
            on_close=lambda ws, code, reason: self._on_close(code is not None, code, reason),
        )
        self._thread = threading.Thread(
            target=self._app.run_forever,
            kwargs={"ping_interval": self._ping_interval},
            name="agentrunner-ws",
            daemon=True,
        )
        try:
            self._thread.start()
        except RuntimeError as e:
            self._app = None
            raise TransportError(f"Failed to start WebSocket thread: {e}") from e
        logger.info("Connecting to WebSocket: %s", self.url)

    def send(self, data: str) -> None:
        if self._app is None:
            raise TransportError("WebSocket not open.")
        try:
            self._app.send(data)
        except (websocket.WebSocketException, OSError) as e:
            raise TransportError(f"WebSocket send failed: {e}") from e

    def close(self) -> None:
        if self._app is None:
            return
        try:
            self._app.close()
        except (websocket.WebSocketException, OSError) as e:
            logger.debug("WebSocket close raised: %s", e)

    @property
    def is_open(self) -> bool:
        sock = self._app.sock if self._app is not None else None
        return bool(sock is not None and sock.connected)
