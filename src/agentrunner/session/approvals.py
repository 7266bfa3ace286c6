import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Tuple

from ..models import utc_now
from ..protocol.events import ApprovalResponseReceivedPayload, WaitingForApprovalPayload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalRequest:
    """An outstanding request from the backend for explicit user consent."""

    approval_id: str
    action_type: str
    action_description: str
    proposed_command: str | None = None
    proposed_changes: Tuple[dict, ...] = ()
    requested_at: datetime = field(default_factory=utc_now)


class ApprovalGate:
    """Tracks approval requests until they are answered.

    Requests are keyed by approval id. Nothing here blocks: whether and when
    the backend resumes after an answer is entirely up to the backend.
    """

    def __init__(self) -> None:
        self._pending: Dict[str, ApprovalRequest] = {}

    @property
    def pending(self) -> List[ApprovalRequest]:
        return list(self._pending.values())

    @property
    def awaiting_approval(self) -> bool:
        return bool(self._pending)

    def get(self, approval_id: str) -> ApprovalRequest | None:
        return self._pending.get(approval_id)

    def on_request(self, payload: WaitingForApprovalPayload) -> ApprovalRequest:
        request = ApprovalRequest(
            approval_id=payload.approval_id,
            action_type=payload.action_type or "Unknown Action",
            action_description=payload.action_description,
            proposed_command=payload.proposed_command,
            proposed_changes=tuple(
                change.model_dump(by_alias=True, exclude_none=True)
                for change in payload.proposed_changes
            ),
        )
        if request.approval_id in self._pending:
            logger.info("Approval %s re-requested; replacing", request.approval_id)
        self._pending[request.approval_id] = request
        return request

    def on_resolved(self, payload: ApprovalResponseReceivedPayload) -> None:
        """The backend acknowledged an answer."""
        if payload.approval_id:
            self._pending.pop(payload.approval_id, None)

    def mark_answered(self, approval_id: str) -> None:
        if self._pending.pop(approval_id, None) is None:
            logger.warning("Answered approval %s that is not outstanding", approval_id)

    def clear(self) -> None:
        self._pending = {}
