import logging
import threading
from typing import Any, Callable, List, Mapping

from ..errors import AgentRunnerError
from ..models import ChatMessage, SessionSnapshot, SessionState, make_id
from ..protocol.commands import (
    StartParams,
    approval_response_command,
    chat_message_command,
    stdin_command,
    stop_command,
    user_interrupt_command,
)
from ..protocol.events import Event
from ..services.credentials import TokenProvider, get_token_provider
from ..services.transport import TransportFactory, WebSocketTransport
from ..settings import Settings, get_settings
from .approvals import ApprovalGate, ApprovalRequest
from .chat import ChatTranscript
from .connection import ConnectionManager, ConnectionState
from .dispatcher import CommandDispatcher
from .router import EventRouter

logger = logging.getLogger(__name__)

Listener = Callable[[SessionSnapshot], None]


class AgentSession:
    """One observable agent session: connection, commands, events, chat, approvals.

    Public operations return immediately after updating state or queuing a
    write; only ``connect()`` (and ``start()`` when it has to connect) waits,
    for the credential request. Inbound frames are handled on the transport
    thread one at a time; all state is guarded by a single re-entrant lock.
    Observers registered with ``subscribe`` get a snapshot after every change.
    """

    def __init__(
        self,
        token_provider: TokenProvider | None = None,
        transport_factory: TransportFactory = WebSocketTransport,
        ws_url: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._lock = threading.RLock()
        self._state = SessionState()
        self._listeners: List[Listener] = []
        self._interrupt_message = settings.interrupt_message

        self.chat = ChatTranscript()
        self.approvals = ApprovalGate()
        self.connection = ConnectionManager(
            self._state,
            self._lock,
            token_provider or get_token_provider(settings),
            transport_factory,
            ws_url or settings.ws_url,
            on_frame=self._route,
            on_lost=self._on_connection_lost,
            notify=self._notify,
        )
        self.dispatcher = CommandDispatcher(self._state, self.connection)
        self.router = EventRouter(
            self._state, self.connection, self.dispatcher, self.chat, self.approvals
        )

    # -- observation ---------------------------------------------------------

    @property
    def session_id(self) -> str | None:
        return self._state.session_id

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    @property
    def is_connected(self) -> bool:
        return self._state.is_connected

    @property
    def error(self) -> str | None:
        return self._state.error

    @property
    def output(self) -> List[str]:
        with self._lock:
            return list(self._state.output)

    @property
    def events(self) -> List[Event]:
        with self._lock:
            return list(self._state.events)

    @property
    def chat_messages(self) -> List[ChatMessage]:
        with self._lock:
            return list(self.chat.messages)

    @property
    def is_typing(self) -> bool:
        return self.chat.is_typing

    @property
    def connection_state(self) -> ConnectionState:
        return self.connection.state

    @property
    def pending_approvals(self) -> List[ApprovalRequest]:
        with self._lock:
            return self.approvals.pending

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot.capture(
                self._state,
                self.connection.state.value,
                self.chat.messages,
                self.chat.is_typing,
                self.approvals.pending,
            )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register an observer; returns a callable that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
            if not listeners:
                return
            snapshot = self.snapshot()
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Session listener %r failed", listener)

    # -- internal hooks ------------------------------------------------------

    def _route(self, raw: str) -> None:
        self.router.route(raw)

    def _on_connection_lost(self) -> None:
        self.dispatcher.discard_pending()

    # -- operations ----------------------------------------------------------

    def connect(self) -> None:
        """Open and authenticate the connection (no-op if one is live).

        Raises:
            AuthSetupError: credential fetch failed; nothing was opened.
            TransportError: the transport could not be started.
        """
        self.connection.connect()

    def start(self, params: StartParams | Mapping[str, Any]) -> str:
        """Begin a new run and return its session id.

        The run command is sent right away when authenticated, otherwise it
        is held until ``auth_success`` and a connection is opened.
        """
        if not isinstance(params, StartParams):
            params = StartParams.model_validate(params)

        with self._lock:
            state = self._state
            state.output.clear()
            state.error = None
            state.is_running = True
            state.session_id = make_id("session")
            session_id = state.session_id
            logger.info("Starting run session_id=%s task=%s", session_id, params.task)

            needs_connect = not self.connection.is_authenticated
            if needs_connect:
                self.dispatcher.defer_run(params)
                if self.connection.is_open:
                    state.add_output(
                        "[INFO] WebSocket connected but not authenticated. Re-authenticating..."
                    )
                else:
                    state.add_output("[INFO] WebSocket not connected. Establishing connection...")
            else:
                self.dispatcher.send_run(params)
        self._notify()

        if needs_connect:
            try:
                self.connection.connect()
            except AgentRunnerError as e:
                logger.warning("Run %s could not connect: %s", session_id, e)
        return session_id

    def stop(self) -> bool:
        """Ask the backend to stop; running state changes only on ``end``."""
        with self._lock:
            sent = self.dispatcher.try_send(stop_command(), "Cannot stop")
            if sent:
                self._state.add_output("[INFO] Stop request sent...")
        self._notify()
        return sent

    def send_stdin(self, text: str) -> bool:
        with self._lock:
            if not self.dispatcher.permits("Cannot send input"):
                sent = False
            elif not text:
                return False
            else:
                sent = self.dispatcher.try_send(stdin_command(text + "\n"), "Cannot send input")
                if sent:
                    self._state.add_output(f"[SENT STDIN] {text}")
        self._notify()
        return sent

    def send_chat_message(self, text: str) -> ChatMessage | None:
        """Send a chat message; returns the optimistic local copy, or None."""
        with self._lock:
            if not self.dispatcher.permits("Cannot send chat message"):
                message = None
            elif not text.strip():
                return None
            else:
                message = self.chat.add_user_message(text)
                frame = chat_message_command(self._state.session_id, text, message.id)
                if not self.dispatcher.try_send(frame, "Cannot send chat message"):
                    self.chat.is_typing = False
        self._notify()
        return message

    def send_interrupt(self, message: str | None = None) -> bool:
        with self._lock:
            frame = user_interrupt_command(message or self._interrupt_message)
            sent = self.dispatcher.try_send(frame, "Cannot send interrupt")
            if sent:
                self._state.add_output("[INFO] Interrupt request sent...")
        self._notify()
        return sent

    def send_approval_response(
        self, approval_id: str, approved: bool, message: str | None = None
    ) -> bool:
        """Answer an approval request; resuming the work is up to the backend."""
        with self._lock:
            frame = approval_response_command(approval_id, approved, message)
            sent = self.dispatcher.try_send(frame, "Cannot send approval response")
            if sent:
                self.approvals.mark_answered(approval_id)
                verdict = "APPROVED" if approved else "REJECTED"
                self._state.add_output(f"[INFO] Approval response sent: {verdict}")
        self._notify()
        return sent

    def clear_chat(self) -> None:
        """Empty the chat transcript and the event list; output is kept."""
        with self._lock:
            self.chat.clear()
            self._state.events.clear()
        self._notify()

    def close(self) -> None:
        self.connection.close()

    def wait_until(self, predicate: Callable[[SessionSnapshot], bool], timeout: float | None = None) -> bool:
        """Block until ``predicate(snapshot)`` holds; returns False on timeout."""
        condition = threading.Event()

        def check(snapshot: SessionSnapshot) -> None:
            if predicate(snapshot):
                condition.set()

        unsubscribe = self.subscribe(check)
        try:
            check(self.snapshot())
            return condition.wait(timeout)
        finally:
            unsubscribe()

