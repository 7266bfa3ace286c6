"""Deterministic projection of inbound frames to human-readable log lines.

``project(frame_type, payload)`` is pure: the same input always yields the
same lines and nothing outside the return value is touched.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable

from ..models import split_lines
from .events import (
    ApprovalResponseReceivedPayload,
    AuxiliaryType,
    ChatErrorPayload,
    ChatRequestPayload,
    ControlType,
    EndPayload,
    EventType,
    FileOperationCompletePayload,
    FileOperationStartPayload,
    LLMActionCompletedPayload,
    LLMActionFailedPayload,
    LLMActionProgressPayload,
    LLMActionsAvailablePayload,
    LLMActionStartedPayload,
    LLMRequestErrorPayload,
    LLMRequestStartPayload,
    LLMRequestSuccessPayload,
    LLMResponsePayload,
    MessagePayload,
    PhaseChangePayload,
    ProcessEndPayload,
    ProcessStartPayload,
    StreamPayload,
    SystemLogPayload,
    ToolExecutionResultPayload,
    ToolExecutionStartPayload,
    WaitingForApprovalPayload,
    validate_payload,
)

_GOAL_RE = re.compile(r"GOAL:\s*([^\n]+)", re.IGNORECASE)
_REASON_RE = re.compile(r"REASON:\s*([^\n]+)", re.IGNORECASE)
_COT_RE = re.compile(r"<cot>[\s\S]*?</cot>")
_ACTION_LINE_RE = re.compile(r"ACTION:\s*(.*)")
_GOAL_LINE_RE = re.compile(r"GOAL:\s*(.*)")
_REASON_LINE_RE = re.compile(r"REASON:\s*(.*)")


def extract_goal_and_reason(explanation: str | None) -> tuple[str | None, str | None]:
    """Pull the ``GOAL:`` and ``REASON:`` lines out of an LLM explanation."""
    if not explanation:
        return None, None
    goal = _GOAL_RE.search(explanation)
    reason = _REASON_RE.search(explanation)
    return (
        goal.group(1).strip() if goal else None,
        reason.group(1).strip() if reason else None,
    )


def _number(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def to_json(value: Any) -> str:
    """Compact JSON as the backend would print it (no spaces, unicode kept)."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


# -- control frames -----------------------------------------------------------


def _auth_success(p: MessagePayload) -> str:
    return f"[INFO] {p.message}"


def _status(p: MessagePayload) -> str:
    return f"[STATUS] {p.message}"


def _warning(p: MessagePayload) -> str:
    return f"[WARNING] {p.message}"


def _error(p: MessagePayload) -> str:
    return f"[ERROR] {p.message}"


def _stream(p: StreamPayload) -> str:
    return p.data


def _end(p: EndPayload) -> str:
    code = p.exit_code if p.exit_code is not None else "N/A"
    return f"[INFO] Script finished (Code: {code})."


# -- domain events ------------------------------------------------------------


def _process_start(p: ProcessStartPayload) -> str:
    return f"[PROCESS] Started: {p.task_description}"


def _process_end(p: ProcessEndPayload) -> str:
    return f"[PROCESS] Ended: {p.status or ''} - {p.message or 'No message'}"


def _phase_change(p: PhaseChangePayload) -> str:
    return f"[PHASE] {p.phase_name}: {p.details or ''}"


def _llm_request_start(p: LLMRequestStartPayload) -> str:
    return f"[LLM] Starting request to {p.model}: {p.prompt_summary}"


def _llm_request_success(p: LLMRequestSuccessPayload) -> str:
    return f"[LLM] Request completed: {p.response_summary or 'Response received'}"


def _llm_request_error(p: LLMRequestErrorPayload) -> str:
    return f"[LLM ERROR] {p.error_message}"


def _tool_execution_start(p: ToolExecutionStartPayload) -> str:
    goal, _ = extract_goal_and_reason(p.explanation)
    return f"[TOOL] Starting: {p.tool_name} - {goal or p.explanation or 'No details'}"


def _tool_execution_result(p: ToolExecutionResultPayload) -> str:
    return f"[TOOL {p.status.upper()}] {p.tool_name}: {p.result_summary or 'Completed'}"


def _file_operation_start(p: FileOperationStartPayload) -> str:
    target = p.file_path or p.directory_path
    return f"[FILE] {p.operation_type} operation starting on {target}"


def _file_operation_complete(p: FileOperationCompletePayload) -> str:
    status = "SUCCESS" if p.success else "FAILED"
    return f"[FILE {status}] {p.operation_type}: {p.details or 'Operation completed'}"


def _system_log(p: SystemLogPayload) -> str:
    return f"[{p.level.upper()}] {p.message}"


def _waiting_for_approval(p: WaitingForApprovalPayload) -> list[str]:
    lines = [f"[APPROVAL REQUIRED] {p.action_description}"]
    if p.proposed_command:
        lines.append(f"[APPROVAL] Command: {p.proposed_command}")
    return lines


def _approval_response_received(p: ApprovalResponseReceivedPayload) -> str:
    status = "APPROVED" if p.approved else "DENIED"
    return f"[APPROVAL {status}] {p.message or 'No message'}"


def _no_lines(p: Any) -> list[str]:
    return []


def _chat_error(p: ChatErrorPayload) -> str:
    return f"[CHAT ERROR] {p.error}"


def _llm_actions_available(p: LLMActionsAvailablePayload) -> str:
    return f"[ACTIONS] {len(p.actions)} actions available"


def _llm_action_started(p: LLMActionStartedPayload) -> str:
    return f"[ACTION STARTED] {p.action_id}"


def _llm_action_progress(p: LLMActionProgressPayload) -> str:
    return f"[ACTION PROGRESS] {p.action_id}: {_number(p.progress)}% - {p.message or ''}"


def _llm_action_completed(p: LLMActionCompletedPayload) -> str:
    return f"[ACTION COMPLETED] {p.action_id}: {p.summary or 'Success'}"


def _llm_action_failed(p: LLMActionFailedPayload) -> str:
    return f"[ACTION FAILED] {p.action_id}: {p.error}"


# -- auxiliary frames ---------------------------------------------------------


def _chat_request(p: ChatRequestPayload) -> str:
    return f"[CHAT REQUEST] {p.question}"


def _llm_response(p: LLMResponsePayload) -> list[str]:
    content = _COT_RE.sub("", p.content or "Response received").strip()
    # CHAT actions surface as chat messages instead
    if "ACTION: CHAT:" in content:
        return []

    action = _ACTION_LINE_RE.search(content)
    goal = _GOAL_LINE_RE.search(content)
    reason = _REASON_LINE_RE.search(content)
    if not (action or goal or reason):
        return [f"[LLM RESPONSE] {content}"]

    lines = ["[LLM ACTION]"]
    if action:
        lines.append(f"Action: {action.group(1)}")
    if goal:
        lines.append(f"Goal: {goal.group(1)}")
    if reason:
        lines.append(f"Reason: {reason.group(1)}")
    return lines


PROJECTORS: dict[str, Callable[[Any], str | list[str]]] = {
    ControlType.AUTH_SUCCESS.value: _auth_success,
    ControlType.STATUS.value: _status,
    ControlType.WARNING.value: _warning,
    ControlType.ERROR.value: _error,
    ControlType.STDOUT.value: _stream,
    ControlType.STDERR.value: _stream,
    ControlType.END.value: _end,
    EventType.PROCESS_START.value: _process_start,
    EventType.PROCESS_END.value: _process_end,
    EventType.PHASE_CHANGE.value: _phase_change,
    EventType.LLM_REQUEST_START.value: _llm_request_start,
    EventType.LLM_REQUEST_SUCCESS.value: _llm_request_success,
    EventType.LLM_REQUEST_ERROR.value: _llm_request_error,
    EventType.TOOL_EXECUTION_START.value: _tool_execution_start,
    EventType.TOOL_EXECUTION_RESULT.value: _tool_execution_result,
    EventType.FILE_OPERATION_START.value: _file_operation_start,
    EventType.FILE_OPERATION_COMPLETE.value: _file_operation_complete,
    EventType.SYSTEM_LOG.value: _system_log,
    EventType.WAITING_FOR_APPROVAL.value: _waiting_for_approval,
    EventType.APPROVAL_RESPONSE_RECEIVED.value: _approval_response_received,
    EventType.CHAT_RESPONSE.value: _no_lines,
    EventType.CHAT_RESPONSE_CHUNK.value: _no_lines,
    EventType.CHAT_ERROR.value: _chat_error,
    EventType.LLM_ACTIONS_AVAILABLE.value: _llm_actions_available,
    EventType.LLM_ACTION_STARTED.value: _llm_action_started,
    EventType.LLM_ACTION_PROGRESS.value: _llm_action_progress,
    EventType.LLM_ACTION_COMPLETED.value: _llm_action_completed,
    EventType.LLM_ACTION_FAILED.value: _llm_action_failed,
    AuxiliaryType.CHAT_REQUEST.value: _chat_request,
    AuxiliaryType.LLM_RESPONSE.value: _llm_response,
}


def project(frame_type: str, payload: Any) -> list[str]:
    """Map one frame to the output lines it produces (possibly none).

    ``payload`` may be a validated payload model or the raw wire mapping.
    Unknown types render as ``[UNKNOWN EVENT] {type}: {json payload}``.

    Raises:
        ProtocolError: a raw payload for a known type fails validation.
    """
    projector = PROJECTORS.get(frame_type)
    if projector is None:
        return split_lines(f"[UNKNOWN EVENT] {frame_type}: {to_json(payload)}")

    result = projector(validate_payload(frame_type, payload))
    texts = [result] if isinstance(result, str) else result
    lines: list[str] = []
    for text in texts:
        lines.extend(split_lines(text))
    return lines
