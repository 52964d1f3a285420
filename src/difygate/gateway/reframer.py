"""Dify SSE → OpenAI chat.completion.chunk reframing.

The backend emits its own event vocabulary (``message``, ``agent_message``,
``text_chunk``, ``workflow_finished``, ``message_end``, ``ping``,
``agent_thought``, ``error``) as ``data:`` lines that may be split across
transport reads. :class:`StreamReframer` is fed raw bytes as they arrive and
returns the OpenAI-shaped SSE frames to forward. It ends every stream with
exactly one ``data: [DONE]`` frame and emits nothing after it.

One reframer instance belongs to one request; it holds the partial-line
buffer between reads.
"""

from __future__ import annotations

import codecs
import json
import secrets
import string
import time
from collections.abc import AsyncGenerator
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger()

DONE_FRAME = "data: [DONE]\n\n"

CONTENT_EVENTS = frozenset({"message", "agent_message", "text_chunk"})
TERMINAL_EVENTS = frozenset({"workflow_finished", "message_end"})
IGNORED_EVENTS = frozenset({"agent_thought", "ping"})

_ID_ALPHABET = string.ascii_letters + string.digits


def new_completion_id() -> str:
    """OpenAI-style ``chatcmpl-`` identifier."""
    return "chatcmpl-" + "".join(secrets.choice(_ID_ALPHABET) for _ in range(29))


def sse_frame(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def completion_chunk(
    completion_id: str,
    model: str | None,
    created: int,
    delta: dict[str, Any],
    finish_reason: str | None = None,
) -> dict[str, Any]:
    return {
        "id": completion_id,
        "object": "chat.completion.chunk",
        "created": created,
        "model": model,
        "choices": [
            {
                "index": 0,
                "delta": delta,
                "finish_reason": finish_reason,
            }
        ],
    }


class StreamState(str, Enum):
    STREAMING = "streaming"
    ENDED = "ended"


class StreamReframer:
    """Incremental state machine over one backend event stream."""

    def __init__(
        self,
        *,
        model: str | None,
        completion_id: str | None = None,
        created: int | None = None,
    ) -> None:
        self.model = model
        self.completion_id = completion_id or new_completion_id()
        self.created = created if created is not None else int(time.time())
        self.state = StreamState.STREAMING
        self.content_frames = 0
        self.error_message: str | None = None
        self._answer_parts: list[str] = []
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._awaiting_first_fragment = True

    @property
    def ended(self) -> bool:
        return self.state is StreamState.ENDED

    @property
    def full_answer(self) -> str:
        """Concatenation of every content delta sent so far."""
        return "".join(self._answer_parts)

    def feed(self, data: bytes | str) -> list[str]:
        """Consume one transport read and return the frames it completes."""
        if self.ended:
            return []
        text = self._decoder.decode(data) if isinstance(data, bytes) else data
        self._buffer += text
        lines = self._buffer.split("\n")
        # The last piece has no newline yet; keep it for the next read.
        self._buffer = lines.pop()

        frames: list[str] = []
        for line in lines:
            frames.extend(self._process_line(line))
            if self.ended:
                break
        return frames

    def finish(self) -> list[str]:
        """Backend closed the connection. Terminates the stream if nothing else did."""
        if self.ended:
            return []
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        frames = self._process_line(tail) if tail.strip() else []
        if not self.ended:
            logger.info("reframer.closed_without_terminal_event", completion_id=self.completion_id)
            frames.append(DONE_FRAME)
            self.state = StreamState.ENDED
        return frames

    def _process_line(self, raw: str) -> list[str]:
        line = raw.strip()
        if not line.startswith("data:"):
            return []
        payload = line[5:].strip()
        if not payload.startswith("{"):
            return []
        try:
            event = json.loads(payload)
        except ValueError:
            logger.debug("reframer.frame.skipped", preview=payload[:120])
            return []
        if not isinstance(event, dict):
            return []

        kind = event.get("event")
        if kind in CONTENT_EVENTS:
            return self._on_content(event)
        if kind in TERMINAL_EVENTS:
            return self._on_terminal(event)
        if kind == "error":
            return self._on_error(event)
        if kind not in IGNORED_EVENTS:
            logger.debug("reframer.event.unhandled", event=kind)
        return []

    def _created_at(self, event: dict[str, Any]) -> int:
        try:
            return int(event["created_at"])
        except (KeyError, TypeError, ValueError):
            return self.created

    def _on_content(self, event: dict[str, Any]) -> list[str]:
        if event.get("event") == "text_chunk":
            data = event.get("data")
            raw = data.get("text") if isinstance(data, dict) else None
        else:
            raw = event.get("answer")
        content = "" if raw is None else str(raw)

        if self._awaiting_first_fragment:
            content = content.lstrip()
            if content:
                self._awaiting_first_fragment = False

        if not content or self.ended:
            return []
        self._answer_parts.append(content)
        self.content_frames += 1
        chunk = completion_chunk(
            self.completion_id,
            self.model,
            self._created_at(event),
            {"content": content},
        )
        return [sse_frame(chunk)]

    def _on_terminal(self, event: dict[str, Any]) -> list[str]:
        if self.ended:
            return []
        self.state = StreamState.ENDED
        chunk = completion_chunk(
            self.completion_id,
            self.model,
            self._created_at(event),
            {},
            finish_reason="stop",
        )
        return [sse_frame(chunk), DONE_FRAME]

    def _on_error(self, event: dict[str, Any]) -> list[str]:
        message = str(event.get("message") or "Upstream stream error")
        logger.warning(
            "reframer.upstream_error",
            code=event.get("code"),
            status=event.get("status"),
            message=message,
        )
        return self.abort(message)

    def abort(self, message: str) -> list[str]:
        """End the stream with an inline error frame."""
        if self.ended:
            return []
        self.error_message = message
        self.state = StreamState.ENDED
        return [sse_frame({"error": message}), DONE_FRAME]


async def reframe(
    chunks: AsyncGenerator[bytes, None],
    reframer: StreamReframer,
) -> AsyncGenerator[str, None]:
    """Pull backend reads through ``reframer``, stopping as soon as it ends."""
    try:
        async for chunk in chunks:
            for frame in reframer.feed(chunk):
                yield frame
            if reframer.ended:
                return
        for frame in reframer.finish():
            yield frame
    finally:
        await chunks.aclose()
