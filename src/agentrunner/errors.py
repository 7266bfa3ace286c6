"""Error taxonomy for the agent session client.

Every error is terminal only to the operation that raised it; the session
object stays usable afterwards.
"""


class AgentRunnerError(Exception):
    """Base class for all agentrunner errors."""


class AuthSetupError(AgentRunnerError):
    """The short-lived credential could not be fetched; no transport was opened."""


class TransportError(AgentRunnerError):
    """Connection-level failure: open/send failed or the channel closed uncleanly."""


class ProtocolError(AgentRunnerError):
    """An inbound frame could not be parsed or validated."""

    def __init__(self, message: str, raw: str | bytes | None = None) -> None:
        super().__init__(message)
        self.raw = raw


class CommandRejected(AgentRunnerError):
    """A command was attempted before the connection was authenticated."""


class DomainError(AgentRunnerError):
    """An error reported by the backend through a domain event."""

    def __init__(self, category: str, message: str) -> None:
        super().__init__(f"{category}: {message}" if category else message)
        self.category = category
        self.message = message
