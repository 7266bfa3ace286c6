import random
import re
import string
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, List, Literal, Tuple

_LINE_SPLIT = re.compile(r"\r?\n")
_ID_ALPHABET = string.ascii_lowercase + string.digits


def make_id(prefix: str) -> str:
    """Return ``{prefix}-{epoch millis}-{9 random base36 chars}``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def split_lines(text: str) -> List[str]:
    """Split text into output lines on \\n or \\r\\n, keeping empty lines."""
    return _LINE_SPLIT.split(text)


@dataclass
class ChatMessage:
    """One entry of the chat transcript.

    Content only grows while ``is_streaming`` is true; the message is frozen
    once the terminating chunk arrives.
    """

    id: str
    content: str
    type: Literal["user", "assistant"]
    timestamp: datetime = field(default_factory=utc_now)
    parent_message_id: str | None = None
    is_streaming: bool = False


@dataclass
class SessionState:
    """Mutable aggregate state of one session (single logical writer)."""

    session_id: str | None = None
    is_running: bool = False
    is_connected: bool = False
    error: str | None = None
    output: List[str] = field(default_factory=list)
    events: List[Any] = field(default_factory=list)

    def add_output(self, text: str) -> None:
        self.output.extend(split_lines(text))

    def add_lines(self, lines: List[str]) -> None:
        for line in lines:
            self.add_output(line)

    def record_error(self, message: str) -> None:
        """Set the user-visible error and mirror it as an ``[ERROR]`` log line."""
        self.error = message
        self.add_output(f"[ERROR] {message}")


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of a session handed to observers."""

    session_id: str | None
    connection_state: str
    is_running: bool
    is_connected: bool
    error: str | None
    output: Tuple[str, ...]
    events: Tuple[Any, ...]
    chat_messages: Tuple[ChatMessage, ...]
    is_typing: bool
    pending_approvals: Tuple[Any, ...]

    @classmethod
    def capture(
        cls,
        state: SessionState,
        connection_state: str,
        chat_messages: List[ChatMessage],
        is_typing: bool,
        pending_approvals: List[Any],
    ) -> "SessionSnapshot":
        return cls(
            session_id=state.session_id,
            connection_state=connection_state,
            is_running=state.is_running,
            is_connected=state.is_connected,
            error=state.error,
            output=tuple(state.output),
            events=tuple(state.events),
            chat_messages=tuple(replace(m) for m in chat_messages),
            is_typing=is_typing,
            pending_approvals=tuple(pending_approvals),
        )
