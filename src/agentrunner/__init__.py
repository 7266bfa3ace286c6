"""Client for the agent session protocol: run a task, watch it, chat with it, approve its actions."""

from .errors import (
    AgentRunnerError,
    AuthSetupError,
    CommandRejected,
    DomainError,
    ProtocolError,
    TransportError,
)
from .models import ChatMessage, SessionSnapshot
from .protocol import Event, EventType, StartParams, project
from .session import AgentSession, ApprovalRequest, ConnectionState

__all__ = [
    "AgentRunnerError",
    "AgentSession",
    "ApprovalRequest",
    "AuthSetupError",
    "ChatMessage",
    "CommandRejected",
    "ConnectionState",
    "DomainError",
    "Event",
    "EventType",
    "ProtocolError",
    "SessionSnapshot",
    "StartParams",
    "TransportError",
    "project",
]

__version__ = "0.1.0"
