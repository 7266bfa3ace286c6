"""Inbound frame taxonomy and classifier.

Frames arrive as JSON objects ``{"type": ..., "payload": {...}, "id"?: ...}``.
Three families are recognised:

* domain events (:class:`EventType`), which are recorded as :class:`Event`
  entries on the session and projected to log lines;
* control frames (:class:`ControlType`) driving the handshake and the run
  lifecycle;
* auxiliary frames (:class:`AuxiliaryType`) that are handled but not recorded.

Anything else is an unknown frame: it is projected verbatim and otherwise
ignored. Payloads of known types are validated into frozen pydantic models;
a payload that fails validation makes the whole frame malformed.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import ProtocolError
from ..models import make_id, utc_now


class EventType(str, Enum):
    """Closed taxonomy of domain events emitted by the execution engine."""

    PROCESS_START = "process_start"
    PROCESS_END = "process_end"
    PHASE_CHANGE = "phase_change"
    LLM_REQUEST_START = "llm_request_start"
    LLM_REQUEST_SUCCESS = "llm_request_success"
    LLM_REQUEST_ERROR = "llm_request_error"
    TOOL_EXECUTION_START = "tool_execution_start"
    TOOL_EXECUTION_RESULT = "tool_execution_result"
    FILE_OPERATION_START = "file_operation_start"
    FILE_OPERATION_COMPLETE = "file_operation_complete"
    SYSTEM_LOG = "system_log"
    WAITING_FOR_APPROVAL = "waiting_for_approval"
    APPROVAL_RESPONSE_RECEIVED = "approval_response_received"
    CHAT_RESPONSE = "chat_response"
    CHAT_RESPONSE_CHUNK = "chat_response_chunk"
    CHAT_ERROR = "chat_error"
    LLM_ACTIONS_AVAILABLE = "llm_actions_available"
    LLM_ACTION_STARTED = "llm_action_started"
    LLM_ACTION_PROGRESS = "llm_action_progress"
    LLM_ACTION_COMPLETED = "llm_action_completed"
    LLM_ACTION_FAILED = "llm_action_failed"


class ControlType(str, Enum):
    """Handshake and run-lifecycle frames."""

    AUTH_SUCCESS = "auth_success"
    STATUS = "status"
    WARNING = "warning"
    ERROR = "error"
    STDOUT = "stdout"
    STDERR = "stderr"
    END = "end"


class AuxiliaryType(str, Enum):
    """Frames that are handled but never stored in the event list."""

    CHAT_REQUEST = "chat_request"
    LLM_RESPONSE = "llm_response"


class Payload(BaseModel):
    """Base model for frame payloads: camelCase on the wire, immutable."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="allow",
        frozen=True,
        coerce_numbers_to_str=True,
    )


# -- control payloads ---------------------------------------------------------


class MessagePayload(Payload):
    message: str = ""


class StreamPayload(Payload):
    data: str = ""


class EndPayload(Payload):
    exit_code: Any = Field(default=None, alias="exitCode")


# -- domain payloads ----------------------------------------------------------


class ProcessStartPayload(Payload):
    process_id: str | None = Field(default=None, alias="processId")
    task_description: str = Field(default="", alias="taskDescription")
    mode: str | None = None
    model: str | None = None


class ProcessEndPayload(Payload):
    process_id: str | None = Field(default=None, alias="processId")
    status: str | None = None
    message: str | None = None
    exit_code: Any = Field(default=None, alias="exitCode")


class PhaseChangePayload(Payload):
    phase_id: str | None = Field(default=None, alias="phaseId")
    phase_name: str = Field(default="", alias="phaseName")
    details: str | None = None
    previous_phase: str | None = Field(default=None, alias="previousPhase")


class LLMRequestStartPayload(Payload):
    request_id: str | None = Field(default=None, alias="requestId")
    model: str = ""
    prompt_summary: str = Field(default="", alias="promptSummary")
    token_count: int | None = Field(default=None, alias="tokenCount")


class LLMActionSummary(Payload):
    action_type: str | None = Field(default=None, alias="actionType")
    goal: str | None = None
    reason: str | None = None
    explanation: str | None = None
    parameters: dict[str, Any] | None = None


class LLMRequestSuccessPayload(Payload):
    request_id: str | None = Field(default=None, alias="requestId")
    model: str | None = None
    response_summary: str | None = Field(default=None, alias="responseSummary")
    token_count: int | None = Field(default=None, alias="tokenCount")
    actions: list[LLMActionSummary] = Field(default_factory=list)


class LLMRequestErrorPayload(Payload):
    request_id: str | None = Field(default=None, alias="requestId")
    model: str | None = None
    error_message: str = Field(default="", alias="errorMessage")
    error_type: str | None = Field(default=None, alias="errorType")


class ToolExecutionStartPayload(Payload):
    tool_execution_id: str | None = Field(default=None, alias="toolExecutionId")
    tool_name: str = Field(alias="toolName")
    tool_args: dict[str, Any] = Field(default_factory=dict, alias="toolArgs")
    explanation: str | None = None


class ToolExecutionResultPayload(Payload):
    tool_execution_id: str | None = Field(default=None, alias="toolExecutionId")
    tool_name: str = Field(alias="toolName")
    status: str
    result_summary: str | None = Field(default=None, alias="resultSummary")
    output: Any = None
    error_message: str | None = Field(default=None, alias="errorMessage")


class FileOperationStartPayload(Payload):
    operation_type: str = Field(alias="operationType")
    file_path: str | None = Field(default=None, alias="filePath")
    directory_path: str | None = Field(default=None, alias="directoryPath")
    operation_id: str | None = Field(default=None, alias="operationId")


class FileOperationCompletePayload(Payload):
    operation_type: str = Field(alias="operationType")
    file_path: str | None = Field(default=None, alias="filePath")
    directory_path: str | None = Field(default=None, alias="directoryPath")
    operation_id: str | None = Field(default=None, alias="operationId")
    success: bool
    details: str | None = None
    error: str | None = None
    diff: str | None = None


class SystemLogPayload(Payload):
    level: str
    message: str
    source: str | None = None
    details: Any = None


class ProposedChange(Payload):
    file: str
    operation: str
    diff: str | None = None


class WaitingForApprovalPayload(Payload):
    approval_id: str = Field(alias="approvalId")
    action_type: str | None = Field(default=None, alias="actionType")
    action_description: str = Field(default="", alias="actionDescription")
    proposed_command: str | None = Field(default=None, alias="proposedCommand")
    proposed_changes: list[ProposedChange] = Field(
        default_factory=list, alias="proposedChanges"
    )


class ApprovalResponseReceivedPayload(Payload):
    approval_id: str | None = Field(default=None, alias="approvalId")
    approved: bool
    message: str | None = None
    user_input: str | None = Field(default=None, alias="userInput")


class ChatResponsePayload(Payload):
    message_id: str = Field(alias="messageId")
    message: str = ""
    parent_message_id: str | None = Field(default=None, alias="parentMessageId")
    streaming: bool = False
    session_id: str | None = Field(default=None, alias="sessionId")


class ChatResponseChunkPayload(Payload):
    message_id: str = Field(alias="messageId")
    chunk: str = ""
    done: bool = False
    session_id: str | None = Field(default=None, alias="sessionId")


class ChatErrorPayload(Payload):
    error: str = ""
    message_id: str | None = Field(default=None, alias="messageId")
    session_id: str | None = Field(default=None, alias="sessionId")


class AvailableAction(Payload):
    action_id: str | None = Field(default=None, alias="actionId")
    action_type: str | None = Field(default=None, alias="actionType")
    description: str | None = None
    parameters: dict[str, Any] | None = None


class LLMActionsAvailablePayload(Payload):
    session_id: str | None = Field(default=None, alias="sessionId")
    actions: list[AvailableAction] = Field(default_factory=list)


class LLMActionStartedPayload(Payload):
    action_id: str = Field(default="", alias="actionId")
    action_type: str | None = Field(default=None, alias="actionType")
    description: str | None = None
    session_id: str | None = Field(default=None, alias="sessionId")


class LLMActionProgressPayload(Payload):
    action_id: str = Field(default="", alias="actionId")
    progress: int | float = 0
    message: str | None = None
    session_id: str | None = Field(default=None, alias="sessionId")


class LLMActionCompletedPayload(Payload):
    action_id: str = Field(default="", alias="actionId")
    summary: str | None = None
    result: Any = None
    session_id: str | None = Field(default=None, alias="sessionId")


class LLMActionFailedPayload(Payload):
    action_id: str = Field(default="", alias="actionId")
    error: str = ""
    session_id: str | None = Field(default=None, alias="sessionId")


# -- auxiliary payloads -------------------------------------------------------


class ChatRequestPayload(Payload):
    chat_id: str = Field(alias="chatId")
    question: str = ""
    iteration: int | None = None


class LLMResponsePayload(Payload):
    content: str | None = None


PAYLOAD_MODELS: dict[str, type[Payload]] = {
    ControlType.AUTH_SUCCESS.value: MessagePayload,
    ControlType.STATUS.value: MessagePayload,
    ControlType.WARNING.value: MessagePayload,
    ControlType.ERROR.value: MessagePayload,
    ControlType.STDOUT.value: StreamPayload,
    ControlType.STDERR.value: StreamPayload,
    ControlType.END.value: EndPayload,
    EventType.PROCESS_START.value: ProcessStartPayload,
    EventType.PROCESS_END.value: ProcessEndPayload,
    EventType.PHASE_CHANGE.value: PhaseChangePayload,
    EventType.LLM_REQUEST_START.value: LLMRequestStartPayload,
    EventType.LLM_REQUEST_SUCCESS.value: LLMRequestSuccessPayload,
    EventType.LLM_REQUEST_ERROR.value: LLMRequestErrorPayload,
    EventType.TOOL_EXECUTION_START.value: ToolExecutionStartPayload,
    EventType.TOOL_EXECUTION_RESULT.value: ToolExecutionResultPayload,
    EventType.FILE_OPERATION_START.value: FileOperationStartPayload,
    EventType.FILE_OPERATION_COMPLETE.value: FileOperationCompletePayload,
    EventType.SYSTEM_LOG.value: SystemLogPayload,
    EventType.WAITING_FOR_APPROVAL.value: WaitingForApprovalPayload,
    EventType.APPROVAL_RESPONSE_RECEIVED.value: ApprovalResponseReceivedPayload,
    EventType.CHAT_RESPONSE.value: ChatResponsePayload,
    EventType.CHAT_RESPONSE_CHUNK.value: ChatResponseChunkPayload,
    EventType.CHAT_ERROR.value: ChatErrorPayload,
    EventType.LLM_ACTIONS_AVAILABLE.value: LLMActionsAvailablePayload,
    EventType.LLM_ACTION_STARTED.value: LLMActionStartedPayload,
    EventType.LLM_ACTION_PROGRESS.value: LLMActionProgressPayload,
    EventType.LLM_ACTION_COMPLETED.value: LLMActionCompletedPayload,
    EventType.LLM_ACTION_FAILED.value: LLMActionFailedPayload,
    AuxiliaryType.CHAT_REQUEST.value: ChatRequestPayload,
    AuxiliaryType.LLM_RESPONSE.value: LLMResponsePayload,
}

_EVENT_TYPES = {t.value for t in EventType}


def is_event_type(frame_type: str) -> bool:
    return frame_type in _EVENT_TYPES


def validate_payload(frame_type: str, payload: Any) -> Any:
    """Validate a raw payload for a known type; unknown types pass through.

    Raises:
        ProtocolError: the payload does not match the model for its type.
    """
    model = PAYLOAD_MODELS.get(frame_type)
    if model is None or isinstance(payload, model):
        return payload
    if payload is None:
        payload = {}
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise ProtocolError(f"Invalid payload for {frame_type}: {e}") from e


@dataclass(frozen=True)
class Frame:
    """One parsed inbound frame."""

    type: str
    payload: Any
    id: str | None = None

    @property
    def is_event(self) -> bool:
        return is_event_type(self.type)


@dataclass(frozen=True)
class Event:
    """Normalized, immutable record of one domain event."""

    type: EventType
    payload: Payload
    timestamp: str = field(default_factory=lambda: utc_now().isoformat())
    id: str = ""

    @classmethod
    def from_frame(cls, frame: Frame) -> Event:
        return cls(
            type=EventType(frame.type),
            payload=frame.payload,
            id=frame.id or make_id(frame.type),
        )


def parse_frame(raw: str | bytes) -> Frame:
    """Decode and classify one inbound frame.

    Raises:
        ProtocolError: invalid JSON, not an object, missing/non-string
            ``type``, or a payload that fails validation for a known type.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError, RecursionError) as e:
        raise ProtocolError(f"Frame is not valid JSON: {e}", raw) from e

    if not isinstance(data, dict):
        raise ProtocolError("Frame is not a JSON object", raw)
    frame_type = data.get("type")
    if not isinstance(frame_type, str) or not frame_type:
        raise ProtocolError("Frame has no type", raw)

    payload = validate_payload(frame_type, data.get("payload"))
    frame_id = data.get("id")
    return Frame(
        type=frame_type,
        payload=payload,
        id=str(frame_id) if frame_id is not None else None,
    )
