"""OpenAI-compatible endpoints: /v1/models and /v1/chat/completions."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from difygate.api.middleware.auth import bearer_token
from difygate.gateway import ChatCompletionRequest, GatewayError, StreamResult, Unauthorized

logger = structlog.get_logger()

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def _error_response(exc: GatewayError) -> JSONResponse:
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


@router.get("/v1/models")
async def list_models(request: Request):
    """The single model exposed by the caller's app."""
    gateway = request.app.state.gateway
    token = bearer_token(request)
    try:
        if not token:
            raise Unauthorized()
        return await gateway.list_models(token)
    except GatewayError as exc:
        return _error_response(exc)
    except Exception as exc:
        logger.exception("gateway.models.unhandled", error=str(exc))
        return JSONResponse({"error": str(exc) or type(exc).__name__}, status_code=500)


@router.post("/v1/chat/completions", response_model=None)
async def chat_completions(request: Request) -> JSONResponse | StreamingResponse:
    """Chat completion endpoint backed by the caller's Dify app."""
    gateway = request.app.state.gateway
    token = bearer_token(request)
    if not token:
        return _error_response(Unauthorized())

    try:
        body = ChatCompletionRequest.model_validate(await request.json())
    except (ValueError, ValidationError) as exc:
        logger.warning("gateway.request.invalid", error=str(exc))
        return JSONResponse({"error": "Invalid request body."}, status_code=400)

    try:
        result = await gateway.chat_completions(token, body)
    except GatewayError as exc:
        logger.warning(
            "gateway.request.failed",
            status_code=exc.status_code,
            error=exc.message,
        )
        return _error_response(exc)
    except Exception as exc:
        logger.exception("gateway.request.unhandled", error=str(exc))
        return JSONResponse({"error": str(exc) or type(exc).__name__}, status_code=500)

    if isinstance(result, StreamResult):
        return StreamingResponse(
            result.frames,
            status_code=result.status_code,
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )
    return JSONResponse(result)
