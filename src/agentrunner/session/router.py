"""Event classifier and router.

Each inbound frame is handled in three independent steps, always in this
order: the domain event (if any) is appended to the session's event list,
the frame is projected to log lines, then aggregate state is updated.
A malformed frame produces a single generic error line and nothing else.
"""

import logging
from typing import Any, Callable, Dict

from ..errors import DomainError, ProtocolError
from ..models import SessionState
from ..protocol.events import (
    AuxiliaryType,
    ControlType,
    Event,
    EventType,
    Frame,
    parse_frame,
)
from ..protocol.projection import extract_goal_and_reason, project
from .approvals import ApprovalGate
from .chat import ChatTranscript
from .connection import ConnectionManager
from .dispatcher import CommandDispatcher

logger = logging.getLogger(__name__)

MALFORMED_FRAME_LINE = "[ERROR] Received malformed data from server."


class EventRouter:
    """Routes parsed frames to the session, chat transcript and approval gate."""

    def __init__(
        self,
        session: SessionState,
        connection: ConnectionManager,
        dispatcher: CommandDispatcher,
        chat: ChatTranscript,
        approvals: ApprovalGate,
    ) -> None:
        self._session = session
        self._connection = connection
        self._dispatcher = dispatcher
        self._chat = chat
        self._approvals = approvals
        self._handlers: Dict[str, Callable[[Any], None]] = {
            ControlType.AUTH_SUCCESS.value: self._on_auth_success,
            ControlType.ERROR.value: self._on_control_error,
            ControlType.END.value: self._on_end,
            EventType.PROCESS_END.value: self._on_end,
            EventType.LLM_REQUEST_SUCCESS.value: self._on_llm_success,
            EventType.LLM_REQUEST_ERROR.value: self._on_llm_error,
            EventType.TOOL_EXECUTION_RESULT.value: self._on_tool_result,
            EventType.FILE_OPERATION_COMPLETE.value: self._on_file_complete,
            EventType.SYSTEM_LOG.value: self._on_system_log,
            EventType.WAITING_FOR_APPROVAL.value: self._approvals.on_request,
            EventType.APPROVAL_RESPONSE_RECEIVED.value: self._approvals.on_resolved,
            EventType.CHAT_RESPONSE.value: self._chat.on_response,
            EventType.CHAT_RESPONSE_CHUNK.value: self._chat.on_chunk,
            EventType.CHAT_ERROR.value: self._on_chat_error,
            EventType.LLM_ACTION_FAILED.value: self._on_action_failed,
            AuxiliaryType.CHAT_REQUEST.value: self._chat.on_request,
        }

    def route(self, raw: str | bytes) -> Frame | None:
        """Process one raw frame. Never raises; returns None if it was dropped."""
        try:
            frame = parse_frame(raw)
            lines = project(frame.type, frame.payload)
        except ProtocolError as e:
            logger.error("Failed to parse message data: %s", e)
            self._session.add_output(MALFORMED_FRAME_LINE)
            return None

        logger.debug("Frame received type=%s", frame.type)
        if frame.is_event:
            self._session.events.append(Event.from_frame(frame))
        self._session.add_lines(lines)

        handler = self._handlers.get(frame.type)
        if handler is not None:
            handler(frame.payload)
        elif frame.type not in _KNOWN_TYPES:
            logger.warning("Received unknown message type: %s", frame.type)
        return frame

    def _record(self, error: DomainError) -> None:
        logger.warning("Backend reported %s", error)
        self._session.error = str(error)

    def _on_auth_success(self, payload: Any) -> None:
        if self._connection.mark_authenticated():
            self._dispatcher.flush_pending()

    def _on_control_error(self, payload: Any) -> None:
        self._record(DomainError("", payload.message))

    def _on_end(self, payload: Any) -> None:
        logger.info("Run finished")
        self._session.is_running = False

    def _on_llm_success(self, payload: Any) -> None:
        for action in payload.actions:
            goal, reason = extract_goal_and_reason(action.explanation)
            logger.debug("LLM action type=%s goal=%s reason=%s", action.action_type, goal, reason)

    def _on_llm_error(self, payload: Any) -> None:
        self._record(DomainError("LLM Error", payload.error_message))

    def _on_tool_result(self, payload: Any) -> None:
        if payload.status == "failure" and payload.error_message:
            self._record(DomainError("Tool Error", payload.error_message))

    def _on_file_complete(self, payload: Any) -> None:
        if not payload.success and payload.error:
            self._record(DomainError("File Error", payload.error))

    def _on_system_log(self, payload: Any) -> None:
        if payload.level == "error":
            self._record(DomainError("", payload.message))

    def _on_chat_error(self, payload: Any) -> None:
        self._chat.on_error()
        self._record(DomainError("Chat error", payload.error))

    def _on_action_failed(self, payload: Any) -> None:
        self._record(DomainError("Action failed", payload.error))


_KNOWN_TYPES = (
    {t.value for t in EventType}
    | {t.value for t in ControlType}
    | {t.value for t in AuxiliaryType}
)
