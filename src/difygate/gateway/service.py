"""OpenAI-compatible gateway over Dify applications."""

from __future__ import annotations

import json
import time
from collections.abc import AsyncGenerator, AsyncIterator
from dataclasses import dataclass
from typing import Any

import anyio
import httpx
import structlog

from difygate.gateway.calllog import CallLogger
from difygate.gateway.errors import InvalidRequest, UpstreamError
from difygate.gateway.keys import KeyResolver
from difygate.gateway.models import AppConfig, CallLogEntry, ChatCompletionRequest
from difygate.gateway.normalize import normalize_response
from difygate.gateway.reframer import StreamReframer, new_completion_id, reframe
from difygate.gateway.upstream import DifyClient, UpstreamStream
from difygate.gateway.prompts import is_automated_prompt, preview

logger = structlog.get_logger()

CHAT_COMPLETIONS_ENDPOINT = "/v1/chat/completions"


@dataclass
class StreamResult:
    """Reframed SSE body plus the HTTP status it should be sent with."""

    status_code: int
    frames: AsyncIterator[str]


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class DifyGateway:
    """Resolves the caller's app, calls Dify, and translates the reply."""

    def __init__(
        self,
        *,
        resolver: KeyResolver,
        upstream: DifyClient,
        call_logger: CallLogger,
        log_prompts: bool = True,
    ) -> None:
        self.resolver = resolver
        self.upstream = upstream
        self.call_logger = call_logger
        self.log_prompts = log_prompts

    async def list_models(self, api_key: str | None) -> dict[str, Any]:
        app = await self.resolver.resolve(api_key)
        return {
            "object": "list",
            "data": [
                {
                    "id": app.model_name or "dify",
                    "object": "model",
                    "owned_by": "dify",
                    "permission": None,
                }
            ],
        }

    async def chat_completions(
        self,
        api_key: str | None,
        body: ChatCompletionRequest,
    ) -> dict[str, Any] | StreamResult:
        """Handle one chat completion call.

        Returns the completion object for blocking requests or a
        :class:`StreamResult` for streaming ones. Raises ``GatewayError``
        subclasses for failures that happen before any SSE frame exists.
        A call log entry is written for every call; for streams it is
        written once the stream has finished.
        """
        start = time.monotonic()
        entry = CallLogEntry(
            api_key=api_key or "",
            app_name="Unknown",
            method="POST",
            endpoint=CHAT_COMPLETIONS_ENDPOINT,
            request_body=json.dumps(body.model_dump(exclude_none=True), ensure_ascii=False),
        )
        handed_off = False
        try:
            app = await self.resolver.resolve(api_key)
            entry.app_name = app.name

            query = body.last_user_text()
            if query is None:
                raise InvalidRequest("No user message found in messages.")
            self._log_question(app, query)

            if body.stream:
                result = await self._open_stream(app, body, query, entry, start)
                handed_off = True
                return result

            raw = await self.upstream.invoke(app, query)
            entry.response_body = raw if isinstance(raw, str) else json.dumps(raw, ensure_ascii=False)
            normalized = normalize_response(app.bot_type, raw, app.output_variable)
            self._log_answer(app, query, normalized.text)
            return {
                "id": new_completion_id(),
                "object": "chat.completion",
                "created": int(time.time()),
                "model": body.model,
                "choices": [
                    {
                        "index": 0,
                        "message": {"role": "assistant", "content": normalized.text},
                        "logprobs": None,
                        "finish_reason": "stop",
                    }
                ],
                "usage": normalized.usage,
            }
        except Exception as exc:
            entry.status_code = getattr(exc, "status_code", 500)
            entry.error_message = getattr(exc, "message", None) or str(exc)
            raise
        finally:
            if not handed_off:
                entry.response_time = _elapsed_ms(start)
                await self.call_logger.record(entry)

    async def _open_stream(
        self,
        app: AppConfig,
        body: ChatCompletionRequest,
        query: str,
        entry: CallLogEntry,
        start: float,
    ) -> StreamResult:
        stream = await self.upstream.open_stream(app, query)
        reframer = StreamReframer(model=body.model)
        frames = reframe(stream.iter_bytes(), reframer)

        # Read until the first frame so an immediate backend error can still set the status.
        try:
            first = await anext(frames)
        except httpx.HTTPError as exc:
            await stream.aclose()
            raise UpstreamError(str(exc) or type(exc).__name__) from exc
        except BaseException:
            await stream.aclose()
            raise

        status_code = 500 if reframer.error_message is not None and reframer.content_frames == 0 else 200
        entry.status_code = status_code
        return StreamResult(
            status_code=status_code,
            frames=self._forward(app, query, first, frames, stream, reframer, entry, start),
        )

    async def _forward(
        self,
        app: AppConfig,
        query: str,
        first: str,
        frames: AsyncGenerator[str, None],
        stream: UpstreamStream,
        reframer: StreamReframer,
        entry: CallLogEntry,
        start: float,
    ) -> AsyncGenerator[str, None]:
        try:
            yield first
            async for frame in frames:
                yield frame
        except httpx.HTTPError as exc:
            logger.error("gateway.stream.transport_error", app=app.name, error=str(exc))
            for frame in reframer.abort(str(exc) or type(exc).__name__):
                yield frame
        finally:
            # Runs on normal end and on client disconnect; the upstream must be released either way.
            with anyio.CancelScope(shield=True):
                await frames.aclose()
                await stream.aclose()
                if reframer.error_message is not None:
                    entry.status_code = 500
                    entry.error_message = reframer.error_message
                elif not reframer.ended:
                    logger.info("gateway.stream.client_disconnected", app=app.name)
                entry.response_body = reframer.full_answer
                entry.response_time = _elapsed_ms(start)
                self._log_answer(app, query, reframer.full_answer)
                await self.call_logger.record(entry)

    def _log_question(self, app: AppConfig, query: str) -> None:
        if self.log_prompts and not is_automated_prompt(query):
            logger.info("gateway.ask", app=app.name, question=preview(query))

    def _log_answer(self, app: AppConfig, query: str, answer: str) -> None:
        if self.log_prompts and not is_automated_prompt(query):
            logger.info("gateway.answer", app=app.name, answer=preview(answer))
