"""
Stream processor: apply a chat response stream to one in-progress message.

Input is the raw byte stream of POST /chat (Server-Sent Events, UTF-8). Frames:
  status     {"content": str}            -> on_status, message untouched
  content    {"content": str}            -> appended to message content
  artifacts  {"artifacts": [...]}        -> merged into message artifacts
  data       {"data": [...]}             -> merged into auxiliary records
  notice     {"message": str}            -> on_notice (e.g. quota warning)
  error      {"message": str}            -> on_error, processing stops
Stream closure ends the turn. Frames are applied strictly in arrival order.
On failure the message keeps whatever was streamed so far.
"""

import codecs
import json
import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from legalchat.core.errors import StreamError
from legalchat.core.session_store import MessageStore
from legalchat.schemas.chat import Message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Frame:
    event: str
    data: dict[str, Any]


def _parse_block(block: str) -> Frame | None:
    event = "message"
    data_lines: list[str] = []
    for line in block.split("\n"):
        if not line or line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data_lines.append(value)
    if not data_lines:
        return None
    raw = "\n".join(data_lines)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("[stream_processor:parse] skipping malformed frame event=%s data=%r", event, raw[:200])
        return None
    if not isinstance(data, dict):
        logger.warning("[stream_processor:parse] skipping non-object frame event=%s", event)
        return None
    return Frame(event=event, data=data)


class SSEDecoder:
    """Incremental SSE decoder; tolerates frames and UTF-8 sequences split across chunks."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""

    def _drain(self) -> list[Frame]:
        self._buffer = self._buffer.replace("\r\n", "\n")
        frames: list[Frame] = []
        while "\n\n" in self._buffer:
            block, self._buffer = self._buffer.split("\n\n", 1)
            frame = _parse_block(block)
            if frame is not None:
                frames.append(frame)
        return frames

    def feed(self, chunk: bytes) -> list[Frame]:
        self._buffer += self._decoder.decode(chunk)
        return self._drain()

    def flush(self) -> list[Frame]:
        """Frames left when the stream closes, including a last frame without its blank line."""
        self._buffer += self._decoder.decode(b"", final=True)
        frames = self._drain()
        rest, self._buffer = self._buffer.strip("\n"), ""
        if rest:
            frame = _parse_block(rest)
            if frame is not None:
                frames.append(frame)
        return frames


class StreamProcessor:
    """Applies decoded frames to one message in a MessageStore."""

    def __init__(
        self,
        store: MessageStore,
        on_status: Callable[[str | None], None],
        on_error: Callable[[Exception], None],
        on_notice: Callable[[str], None] | None = None,
    ) -> None:
        self.store = store
        self.on_status = on_status
        self.on_error = on_error
        self.on_notice = on_notice

    def _apply(self, frame: Frame, message_id: str) -> StreamError | None:
        """Apply one frame. Returns the reported error when the stream says the turn failed."""
        if frame.event == "status":
            self.on_status(str(frame.data.get("content") or ""))
        elif frame.event == "content":
            text = frame.data.get("content") or ""
            if text:
                self.store.append_content(message_id, str(text))
        elif frame.event == "artifacts":
            self.store.merge_artifacts(message_id, frame.data.get("artifacts") or [])
        elif frame.event == "data":
            self.store.merge_data(message_id, frame.data.get("data") or [])
        elif frame.event == "notice":
            if self.on_notice is not None:
                self.on_notice(str(frame.data.get("message") or ""))
        elif frame.event == "error":
            return StreamError(str(frame.data.get("message") or "Stream failed"))
        else:
            logger.debug("[stream_processor:apply] ignoring event=%s", frame.event)
        return None

    def _read(
        self,
        chunks: Iterable[bytes],
        message_id: str,
        cancelled: Callable[[], bool],
    ) -> Exception | None:
        """Apply frames until the stream ends, fails or is cancelled. Returns the failure, if any."""
        decoder = SSEDecoder()
        try:
            for chunk in chunks:
                if cancelled():
                    logger.info("[stream_processor:process_stream] cancelled message_id=%s", message_id)
                    return None
                for frame in decoder.feed(chunk):
                    if cancelled():
                        return None
                    failure = self._apply(frame, message_id)
                    if failure is not None:
                        return failure
            for frame in decoder.flush():
                if cancelled():
                    return None
                failure = self._apply(frame, message_id)
                if failure is not None:
                    return failure
        except Exception as e:
            if cancelled():
                logger.info("[stream_processor:process_stream] stream closed after cancel: %s", e)
                return None
            logger.warning("[stream_processor:process_stream] stream failed message_id=%s: %s", message_id, e)
            return e
        return None

    def _consume(self, chunks: Iterable[bytes], message_id: str, cancel_event: threading.Event | None) -> None:
        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        failure = self._read(chunks, message_id, cancelled)
        # outside the guarded read: at most one on_error call per stream
        if failure is not None:
            self.on_error(failure)

    def process_stream(
        self,
        chunks: Iterable[bytes],
        message_id: str,
        cancel_event: threading.Event | None = None,
    ) -> Message:
        """Consume the whole stream into the message and return its final state."""
        self.store.begin_stream(message_id)
        try:
            self._consume(chunks, message_id, cancel_event)
        finally:
            self.store.end_stream(message_id)
        message = self.store.get(message_id)
        logger.info(
            "[stream_processor:process_stream] OUT message_id=%s content_len=%d artifacts=%d",
            message_id,
            len(message.content),
            len(message.artifacts),
        )
        return message
