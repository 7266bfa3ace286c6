import logging
from typing import Dict, List

from ..models import ChatMessage, make_id
from ..protocol.events import ChatRequestPayload, ChatResponseChunkPayload, ChatResponsePayload

logger = logging.getLogger(__name__)


class ChatTranscript:
    """Ordered chat messages rebuilt from response and chunk events.

    Messages are indexed by id so streamed chunks are appended without
    scanning the transcript.
    """

    def __init__(self) -> None:
        self.messages: List[ChatMessage] = []
        self.is_typing: bool = False
        self._index: Dict[str, int] = {}

    def _append(self, message: ChatMessage) -> ChatMessage:
        if message.id in self._index:
            logger.warning("Duplicate chat message id %s; later chunks go to the newest", message.id)
        self._index[message.id] = len(self.messages)
        self.messages.append(message)
        return message

    def get(self, message_id: str) -> ChatMessage | None:
        position = self._index.get(message_id)
        return self.messages[position] if position is not None else None

    def add_user_message(self, text: str) -> ChatMessage:
        """Append the optimistic local copy of an outgoing message."""
        message = self._append(
            ChatMessage(id=make_id("msg"), content=text, type="user")
        )
        self.is_typing = True
        return message

    def on_response(self, payload: ChatResponsePayload) -> ChatMessage:
        message = self._append(
            ChatMessage(
                id=payload.message_id,
                content=payload.message,
                type="assistant",
                parent_message_id=payload.parent_message_id,
                is_streaming=payload.streaming,
            )
        )
        self.is_typing = payload.streaming
        return message

    def on_chunk(self, payload: ChatResponseChunkPayload) -> ChatMessage | None:
        """Append a streamed fragment; returns None when the chunk was dropped."""
        self.is_typing = not payload.done
        message = self.get(payload.message_id)
        if message is None:
            logger.warning("Chunk for unknown chat message %s dropped", payload.message_id)
            return None
        if not message.is_streaming:
            logger.warning("Chunk for finished chat message %s dropped", payload.message_id)
            return None
        message.content += payload.chunk
        message.is_streaming = not payload.done
        return message

    def on_request(self, payload: ChatRequestPayload) -> ChatMessage:
        """A question asked by the running task itself."""
        return self._append(
            ChatMessage(
                id=f"chat-request-{payload.chat_id}",
                content=payload.question,
                type="assistant",
            )
        )

    def on_error(self) -> None:
        self.is_typing = False

    def clear(self) -> None:
        self.messages = []
        self._index = {}
        self.is_typing = False
