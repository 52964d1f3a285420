"""Dify backend client — blocking and streaming calls."""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from typing import Any

import httpx
import structlog

from difygate.gateway.errors import InvalidConfiguration, UpstreamError
from difygate.gateway.models import AppConfig, BotType

logger = structlog.get_logger()

API_PATHS: dict[BotType, str] = {
    BotType.CHAT: "/chat-messages",
    BotType.COMPLETION: "/completion-messages",
    BotType.WORKFLOW: "/workflows/run",
}


def api_path_for(bot_type: str) -> str:
    """Backend endpoint path for an interaction mode."""
    try:
        return API_PATHS[BotType(bot_type)]
    except ValueError:
        raise InvalidConfiguration(f"Invalid bot type: {bot_type!r}") from None


def build_request_body(
    app: AppConfig,
    query: str,
    *,
    stream: bool,
    user: str = "apiuser",
) -> dict[str, Any]:
    """Build the Dify request envelope for one user query."""
    body: dict[str, Any] = {"inputs": {}}
    if app.input_variable:
        body["inputs"] = {app.input_variable: query}
    else:
        body["query"] = query
    body.update(
        {
            "response_mode": "streaming" if stream else "blocking",
            "conversation_id": "",
            "user": user,
            "auto_generate_name": False,
        }
    )
    return body


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    text = response.text.strip()
    return text or f"Request failed with status code {response.status_code}"


class UpstreamStream:
    """Open streaming response from the backend. Must be closed by the consumer."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        self.closed = False

    async def iter_bytes(self) -> AsyncGenerator[bytes, None]:
        async for chunk in self.response.aiter_bytes():
            yield chunk

    async def aclose(self) -> None:
        if not self.closed:
            self.closed = True
            await self.response.aclose()


class DifyClient:
    """Issues exactly one POST per gateway call. No retries."""

    def __init__(
        self,
        *,
        timeout_s: float | None = None,
        user: str = "apiuser",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.user = user
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout_s), transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    def _build_request(self, app: AppConfig, query: str, *, stream: bool) -> httpx.Request:
        path = api_path_for(app.bot_type)
        return self._client.build_request(
            "POST",
            app.dify_api_url.rstrip("/") + path,
            json=build_request_body(app, query, stream=stream, user=self.user),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {app.dify_api_key}",
            },
        )

    async def invoke(self, app: AppConfig, query: str) -> Any:
        """Blocking call. Returns the decoded JSON body, or raw text if not JSON."""
        start = time.monotonic()
        logger.info("upstream.request", app=app.name, bot_type=app.bot_type, stream=False)
        try:
            request = self._build_request(app, query, stream=False)
            response = await self._client.send(request)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.error("upstream.transport_error", app=app.name, error=str(exc))
            raise UpstreamError(str(exc) or type(exc).__name__) from exc

        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning(
                "upstream.error",
                app=app.name,
                status_code=response.status_code,
                message=message,
            )
            raise UpstreamError(message, response.status_code)

        logger.info(
            "upstream.response",
            app=app.name,
            status_code=response.status_code,
            duration=f"{time.monotonic() - start:.2f}s",
        )
        try:
            return response.json()
        except ValueError:
            return response.text

    async def open_stream(self, app: AppConfig, query: str) -> UpstreamStream:
        """Streaming call. Status is checked before any event is consumed."""
        logger.info("upstream.request", app=app.name, bot_type=app.bot_type, stream=True)
        try:
            request = self._build_request(app, query, stream=True)
            response = await self._client.send(request, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.error("upstream.transport_error", app=app.name, error=str(exc))
            raise UpstreamError(str(exc) or type(exc).__name__) from exc

        if response.status_code >= 400:
            try:
                await response.aread()
            finally:
                await response.aclose()
            message = _error_message(response)
            logger.warning(
                "upstream.error",
                app=app.name,
                status_code=response.status_code,
                message=message,
            )
            raise UpstreamError(message, response.status_code)

        return UpstreamStream(response)
