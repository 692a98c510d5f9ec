"""
Tests for the SSE stream processor and the message store it writes into.
"""

import json
import threading

import pytest

from legalchat.core.errors import MessageStreamConflictError, StreamError
from legalchat.core.session_store import MessageStore
from legalchat.schemas.chat import Message
from legalchat.services.stream_processor import SSEDecoder, StreamProcessor


def frame(event: str, payload: dict) -> bytes:
    return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


class Recorder:
    def __init__(self) -> None:
        self.statuses: list = []
        self.errors: list[Exception] = []
        self.notices: list[str] = []


@pytest.fixture
def store() -> MessageStore:
    return MessageStore([Message(id="m1", role="assistant")])


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def processor(store, recorder) -> StreamProcessor:
    return StreamProcessor(store, recorder.statuses.append, recorder.errors.append, recorder.notices.append)


class TestSSEDecoder:
    def test_frame_split_across_chunks(self) -> None:
        raw = frame("content", {"content": "abc"})
        decoder = SSEDecoder()
        assert decoder.feed(raw[:7]) == []
        frames = decoder.feed(raw[7:])
        assert [(f.event, f.data) for f in frames] == [("content", {"content": "abc"})]

    def test_multibyte_character_split_across_chunks(self) -> None:
        raw = frame("content", {"content": "zażółć"})
        cut = raw.index("ż".encode("utf-8")) + 1
        decoder = SSEDecoder()
        frames = decoder.feed(raw[:cut]) + decoder.feed(raw[cut:])
        assert frames[0].data == {"content": "zażółć"}

    def test_crlf_line_endings(self) -> None:
        decoder = SSEDecoder()
        frames = decoder.feed(b'event: status\r\ndata: {"content": "x"}\r\n\r\n')
        assert [(f.event, f.data) for f in frames] == [("status", {"content": "x"})]

    def test_flush_returns_trailing_frame_without_blank_line(self) -> None:
        decoder = SSEDecoder()
        assert decoder.feed(b'event: content\ndata: {"content": "end"}') == []
        assert [f.data for f in decoder.flush()] == [{"content": "end"}]

    def test_malformed_and_comment_frames_are_skipped(self) -> None:
        decoder = SSEDecoder()
        frames = decoder.feed(b": keep-alive\n\nevent: content\ndata: {not json\n\n" + frame("content", {"content": "ok"}))
        assert [f.data for f in frames] == [{"content": "ok"}]


class TestProcessStream:
    def test_applies_frames_in_order(self, store, processor, recorder) -> None:
        act = {"type": "legal_acts", "acts": [{"eli": "DU/1971/114"}]}
        chunks = [
            frame("status", {"content": "Analizuję zapytanie..."}),
            frame("content", {"content": "Kara "}),
            frame("artifacts", {"artifacts": [act]}),
            frame("content", {"content": "wynosi grzywnę."}),
            frame("data", {"data": [{"type": "tool_results", "content": "x"}]}),
        ]
        message = processor.process_stream(chunks, "m1")
        assert message.content == "Kara wynosi grzywnę."
        assert message.artifacts == [act]
        assert message.data == [{"type": "tool_results", "content": "x"}]
        assert recorder.statuses == ["Analizuję zapytanie..."]
        assert recorder.errors == []
        assert store.get("m1") == message

    def test_duplicate_artifacts_are_merged_once(self, processor) -> None:
        a, b = {"eli": "a"}, {"eli": "b"}
        chunks = [frame("artifacts", {"artifacts": [a]}), frame("artifacts", {"artifacts": [a, b]})]
        assert processor.process_stream(chunks, "m1").artifacts == [a, b]

    def test_notice_frame_goes_to_callback(self, processor, recorder) -> None:
        processor.process_stream([frame("notice", {"message": "Przełączam model."})], "m1")
        assert recorder.notices == ["Przełączam model."]

    def test_error_frame_stops_processing(self, processor, recorder) -> None:
        chunks = [
            frame("content", {"content": "part"}),
            frame("error", {"message": "model down"}),
            frame("content", {"content": " ignored"}),
        ]
        message = processor.process_stream(chunks, "m1")
        assert message.content == "part"
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], StreamError)
        assert str(recorder.errors[0]) == "model down"

    def test_broken_stream_keeps_partial_content(self, store, processor, recorder) -> None:
        def chunks():
            yield frame("content", {"content": "Kara "})
            raise ConnectionError("connection reset")

        message = processor.process_stream(chunks(), "m1")
        assert message.content == "Kara "
        assert [str(e) for e in recorder.errors] == ["connection reset"]
        # the writer slot is released even on failure
        store.begin_stream("m1")

    def test_cancel_stops_silently(self, processor, recorder) -> None:
        cancel = threading.Event()

        def chunks():
            yield frame("content", {"content": "Kara "})
            cancel.set()
            yield frame("content", {"content": "wynosi"})

        message = processor.process_stream(chunks(), "m1", cancel)
        assert message.content == "Kara "
        assert recorder.errors == []

    def test_raising_error_handler_is_called_once(self, store) -> None:
        calls: list[Exception] = []

        def on_error(error: Exception) -> None:
            calls.append(error)
            raise RuntimeError("handler broke")

        processor = StreamProcessor(store, lambda text: None, on_error)
        with pytest.raises(RuntimeError, match="handler broke"):
            processor.process_stream([frame("error", {"message": "model down"})], "m1")
        assert [str(e) for e in calls] == ["model down"]
        store.begin_stream("m1")

    def test_cancel_after_last_chunk_skips_trailing_frame(self, processor, recorder) -> None:
        cancel = threading.Event()

        def chunks():
            yield frame("content", {"content": "Kara "})
            yield b'event: content\ndata: {"content": "late"}'
            cancel.set()

        message = processor.process_stream(chunks(), "m1", cancel)
        assert message.content == "Kara "
        assert recorder.errors == []

    def test_second_writer_is_rejected(self, store, processor) -> None:
        store.begin_stream("m1")
        with pytest.raises(MessageStreamConflictError):
            processor.process_stream([frame("content", {"content": "x"})], "m1")
        assert store.get("m1").content == ""


class TestMessageStore:
    def test_reads_are_copies(self, store) -> None:
        store.messages()[0].content = "mutated"
        assert store.get("m1").content == ""

    def test_truncate_before_drops_message_and_rest(self) -> None:
        store = MessageStore(
            [Message(id="u1", role="user"), Message(id="a1", role="assistant"), Message(id="u2", role="user")]
        )
        remaining = store.truncate_before("a1")
        assert [m.id for m in remaining] == ["u1"]
        assert [m.id for m in store.messages()] == ["u1"]

    def test_unknown_message_raises_key_error(self, store) -> None:
        with pytest.raises(KeyError):
            store.append_content("missing", "x")
