"""Agent session: connection lifecycle, command gating, event routing, chat and approvals."""

from .approvals import ApprovalGate, ApprovalRequest
from .chat import ChatTranscript
from .connection import ConnectionManager, ConnectionState
from .dispatcher import CommandDispatcher
from .router import EventRouter
from .runner import AgentSession

__all__ = [
    "AgentSession",
    "ApprovalGate",
    "ApprovalRequest",
    "ChatTranscript",
    "CommandDispatcher",
    "ConnectionManager",
    "ConnectionState",
    "EventRouter",
]
