from __future__ import annotations

import json
from typing import Any

import pytest

from difygate.gateway.reframer import DONE_FRAME, StreamReframer, reframe

CHAT_STREAM = (
    'data: {"event": "message", "answer": "  Hello", "created_at": 1700000000}\n\n'
    "event: ping\n\n"
    'data: {"event": "agent_thought", "thought": "thinking"}\n\n'
    'data: {"event": "message", "answer": " wörld 你好", "created_at": 1700000001}\n\n'
    'data: {"event": "message_end", "created_at": 1700000002, "metadata": {}}\n\n'
).encode()


def _reframer() -> StreamReframer:
    return StreamReframer(model="dify", completion_id="chatcmpl-test", created=1)


def _payloads(frames: list[str]) -> list[Any]:
    out: list[Any] = []
    for frame in frames:
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        body = frame[len("data: "):-2]
        out.append(body if body == "[DONE]" else json.loads(body))
    return out


def _contents(payloads: list[Any]) -> list[str]:
    return [
        p["choices"][0]["delta"]["content"]
        for p in payloads
        if isinstance(p, dict) and "choices" in p and "content" in p["choices"][0]["delta"]
    ]


def test_whole_buffer_and_byte_at_a_time_produce_identical_frames() -> None:
    whole = _reframer()
    whole_frames = whole.feed(CHAT_STREAM) + whole.finish()

    split = _reframer()
    split_frames: list[str] = []
    for i in range(len(CHAT_STREAM)):
        split_frames.extend(split.feed(CHAT_STREAM[i : i + 1]))
    split_frames.extend(split.finish())

    assert split_frames == whole_frames
    assert _contents(_payloads(whole_frames)) == ["Hello", " wörld 你好"]
    assert whole.full_answer == "Hello wörld 你好"


def test_stream_ends_with_single_stop_and_done() -> None:
    reframer = _reframer()
    payloads = _payloads(reframer.feed(CHAT_STREAM) + reframer.finish())

    stops = [p for p in payloads if isinstance(p, dict) and p["choices"][0]["finish_reason"] == "stop"]
    assert len(stops) == 1
    assert stops[0]["choices"][0]["delta"] == {}
    assert payloads.count("[DONE]") == 1
    assert payloads[-1] == "[DONE]"
    assert reframer.ended


def test_content_chunk_shape() -> None:
    reframer = _reframer()
    frames = reframer.feed(b'data: {"event": "message", "answer": "hi", "created_at": 42}\n')

    assert _payloads(frames) == [
        {
            "id": "chatcmpl-test",
            "object": "chat.completion.chunk",
            "created": 42,
            "model": "dify",
            "choices": [{"index": 0, "delta": {"content": "hi"}, "finish_reason": None}],
        }
    ]


def test_second_terminal_event_is_ignored() -> None:
    reframer = _reframer()
    frames = reframer.feed(
        b'data: {"event": "text_chunk", "data": {"text": "out"}}\n\n'
        b'data: {"event": "workflow_finished", "data": {"outputs": {}}}\n\n'
        b'data: {"event": "message_end"}\n\n'
    )
    frames += reframer.finish()

    payloads = _payloads(frames)
    assert _contents(payloads) == ["out"]
    assert payloads.count("[DONE]") == 1
    assert payloads[-1] == "[DONE]"


def test_error_event_terminates_and_drops_late_frames() -> None:
    reframer = _reframer()
    frames = reframer.feed(
        b'data: {"event": "message", "answer": "partial"}\n\n'
        b'data: {"event": "error", "status": 400, "code": "invalid_param", "message": "boom"}\n\n'
        b'data: {"event": "message", "answer": "late"}\n\n'
    )
    frames += reframer.feed(b'data: {"event": "message", "answer": "later"}\n\n')
    frames += reframer.finish()

    payloads = _payloads(frames)
    assert _contents(payloads) == ["partial"]
    assert payloads[1] == {"error": "boom"}
    assert payloads[-1] == "[DONE]"
    assert payloads.count("[DONE]") == 1
    assert reframer.error_message == "boom"


def test_natural_end_without_terminal_event_emits_done() -> None:
    reframer = _reframer()
    frames = reframer.feed(b'data: {"event": "message", "answer": "cut"}\n\n')

    assert reframer.finish() == [DONE_FRAME]
    assert reframer.finish() == []
    assert _contents(_payloads(frames)) == ["cut"]


def test_malformed_and_non_data_lines_are_skipped() -> None:
    reframer = _reframer()
    frames = reframer.feed(
        b": keep-alive comment\n"
        b"data: {not json\n"
        b"data: plain text\n"
        b"data: [1, 2]\n"
        b'data: {"event": "message", "answer": "ok"}\n'
    )

    assert _contents(_payloads(frames)) == ["ok"]
    assert not reframer.ended


def test_only_first_non_empty_fragment_is_left_trimmed() -> None:
    reframer = _reframer()
    frames = reframer.feed(
        b'data: {"event": "message", "answer": "   "}\n'
        b'data: {"event": "agent_message", "answer": "\\n Hi"}\n'
        b'data: {"event": "message", "answer": "  there"}\n'
    )

    assert _contents(_payloads(frames)) == ["Hi", "  there"]


def test_unterminated_final_line_is_processed_on_close() -> None:
    reframer = _reframer()
    assert reframer.feed(b'data: {"event": "message_end"}') == []

    payloads = _payloads(reframer.finish())

    assert payloads[0]["choices"][0]["finish_reason"] == "stop"
    assert payloads[-1] == "[DONE]"


def test_crlf_line_endings() -> None:
    reframer = _reframer()
    frames = reframer.feed(b'data: {"event": "message", "answer": "x"}\r\n\r\n')

    assert _contents(_payloads(frames)) == ["x"]


@pytest.mark.asyncio
async def test_reframe_stops_reading_after_terminal_event() -> None:
    reads: list[bytes] = []

    async def chunks():
        for chunk in (
            b'data: {"event": "message", "answer": "a"}\n',
            b'data: {"event": "message_end"}\n',
            b'data: {"event": "message", "answer": "never"}\n',
        ):
            reads.append(chunk)
            yield chunk

    frames = [frame async for frame in reframe(chunks(), _reframer())]

    assert len(reads) == 2
    assert frames[-1] == DONE_FRAME
    assert _contents(_payloads(frames)) == ["a"]


@pytest.mark.asyncio
async def test_reframe_closes_source_after_terminal_event() -> None:
    closed: list[bool] = []

    async def chunks():
        try:
            yield b'data: {"event": "message_end"}\n'
            yield b'data: {"event": "message", "answer": "never"}\n'
        finally:
            closed.append(True)

    frames = [frame async for frame in reframe(chunks(), _reframer())]

    assert frames[-1] == DONE_FRAME
    assert closed == [True]
