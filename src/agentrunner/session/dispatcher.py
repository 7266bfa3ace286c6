import logging
from typing import Any, Dict

from ..errors import CommandRejected, TransportError
from ..models import SessionState
from ..protocol.commands import StartParams, run_command
from .connection import ConnectionManager

logger = logging.getLogger(__name__)


class CommandDispatcher:
    """Gates outbound commands on authentication and holds the deferred run.

    At most one run is pending; a second ``defer_run`` before the flush
    replaces the first.
    """

    def __init__(self, session: SessionState, connection: ConnectionManager) -> None:
        self._session = session
        self._connection = connection
        self.pending: StartParams | None = None

    def defer_run(self, params: StartParams) -> None:
        if self.pending is not None:
            logger.info("Replacing pending run before it was sent")
        self.pending = params

    def discard_pending(self) -> None:
        if self.pending is not None:
            logger.info("Pending run discarded")
        self.pending = None

    def flush_pending(self) -> bool:
        """Send the deferred run, if any, exactly once. Returns True if sent."""
        params, self.pending = self.pending, None
        if params is None:
            return False
        logger.info("Sending run command post-auth")
        return self.send_run(params)

    def send_run(self, params: StartParams) -> bool:
        try:
            self.send(run_command(params), "Connection issue")
        except CommandRejected as e:
            self._session.is_running = False
            self._session.error = str(e)
            return False
        except TransportError as e:
            self._session.is_running = False
            self._session.record_error(f"Failed to send run command: {e}")
            return False
        logger.info("Run command sent: %s", params.task)
        self._session.add_output("[INFO] Running script...")
        self._session.is_running = True
        self._session.error = None
        return True

    def check(self, rejection: str) -> None:
        """Raise CommandRejected (message prefixed with ``rejection``) unless authenticated."""
        if self._connection.is_authenticated:
            return
        reason = (
            "WebSocket not authenticated."
            if self._connection.is_open
            else "WebSocket not open or authenticated."
        )
        logger.warning("%s: %s", rejection, reason)
        raise CommandRejected(f"{rejection}: {reason}")

    def permits(self, rejection: str) -> bool:
        """Like check(), but records the rejection as the session error."""
        try:
            self.check(rejection)
        except CommandRejected as e:
            self._session.error = str(e)
            return False
        return True

    def send(self, frame: Dict[str, Any], rejection: str) -> None:
        """Write a command if authenticated.

        Raises:
            CommandRejected: not authenticated; nothing was written.
            TransportError: the write itself failed.
        """
        self.check(rejection)
        self._connection.send(frame)

    def try_send(self, frame: Dict[str, Any], rejection: str) -> bool:
        """Send a gated command, recording any failure as the session error."""
        try:
            self.send(frame, rejection)
        except CommandRejected as e:
            self._session.error = str(e)
            return False
        except TransportError as e:
            logger.error("Sending %s failed: %s", frame.get("type"), e)
            self._session.record_error(f"{rejection}: {e}")
            return False
        return True
