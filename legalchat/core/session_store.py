"""
In-memory message store for one conversation. The stream processor writes into
it; at most one writer may stream into a given message at a time.
"""

import logging
import threading
from collections.abc import Iterable
from typing import Any

from legalchat.core.errors import MessageStreamConflictError
from legalchat.schemas.chat import Artifact, Message

logger = logging.getLogger(__name__)


class MessageStore:
    def __init__(self, messages: Iterable[Message] = ()) -> None:
        self._messages: list[Message] = [m.model_copy(deep=True) for m in messages]
        self._writers: set[str] = set()
        self._lock = threading.Lock()

    def _find(self, message_id: str) -> Message:
        for m in self._messages:
            if m.id == message_id:
                return m
        raise KeyError(message_id)

    def messages(self) -> list[Message]:
        """Return a copy of the conversation so callers cannot mutate the store."""
        with self._lock:
            return [m.model_copy(deep=True) for m in self._messages]

    def get(self, message_id: str) -> Message:
        with self._lock:
            return self._find(message_id).model_copy(deep=True)

    def add_message(self, message: Message) -> None:
        with self._lock:
            self._messages.append(message.model_copy(deep=True))
        logger.info("[session_store:add_message] id=%s role=%s content_len=%d", message.id, message.role, len(message.content))

    def remove_message(self, message_id: str) -> None:
        with self._lock:
            self._messages = [m for m in self._messages if m.id != message_id]
            self._writers.discard(message_id)

    def truncate_before(self, message_id: str) -> list[Message]:
        """Drop the message and everything after it; return what remains."""
        with self._lock:
            index = next(i for i, m in enumerate(self._messages) if m.id == message_id)
            self._messages = self._messages[:index]
            return [m.model_copy(deep=True) for m in self._messages]

    def set_content(self, message_id: str, content: str) -> None:
        with self._lock:
            self._find(message_id).content = content

    def clear(self) -> None:
        with self._lock:
            self._messages = []
            self._writers.clear()

    # --- streaming writer ---

    def begin_stream(self, message_id: str) -> None:
        with self._lock:
            self._find(message_id)
            if message_id in self._writers:
                raise MessageStreamConflictError(message_id)
            self._writers.add(message_id)

    def end_stream(self, message_id: str) -> None:
        with self._lock:
            self._writers.discard(message_id)

    def append_content(self, message_id: str, text: str) -> None:
        with self._lock:
            message = self._find(message_id)
            message.content += text

    def merge_artifacts(self, message_id: str, artifacts: Iterable[Artifact]) -> None:
        """Append artifacts the message does not already have, keeping order."""
        with self._lock:
            message = self._find(message_id)
            for artifact in artifacts:
                if artifact not in message.artifacts:
                    message.artifacts.append(artifact)

    def merge_data(self, message_id: str, records: Iterable[dict[str, Any]]) -> None:
        with self._lock:
            message = self._find(message_id)
            if message.data is None:
                message.data = []
            for record in records:
                if record not in message.data:
                    message.data.append(record)
