"""Blocking-mode response normalization."""

from __future__ import annotations

import json
from typing import Any

import structlog

from difygate.gateway.models import BotType, NormalizedResponse

logger = structlog.get_logger()

EMPTY_PLACEHOLDER = "Empty response"

# Dify does not reliably report usage; these are placeholders, not counts.
DEFAULT_USAGE = {
    "prompt_tokens": 100,
    "completion_tokens": 10,
    "total_tokens": 110,
}


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return json.dumps(value, ensure_ascii=False)


def _message_text(body: Any) -> str | None:
    if isinstance(body, dict) and "answer" in body:
        return _stringify(body["answer"])
    return None


def _workflow_text(body: Any, output_variable: str | None) -> str | None:
    if not isinstance(body, dict) or "data" not in body:
        return None
    data = body["data"]
    outputs = data.get("outputs") if isinstance(data, dict) else None
    if not isinstance(outputs, dict):
        return _stringify(data)
    if output_variable and outputs.get(output_variable) is not None:
        return _stringify(outputs[output_variable])
    if outputs:
        return _stringify(next(iter(outputs.values())))
    return _stringify(outputs)


def _fallback_text(body: Any) -> str:
    if isinstance(body, str):
        return body
    logger.warning("normalize.unexpected_shape", body_type=type(body).__name__)
    return _stringify(body)


def extract_usage(body: Any) -> dict[str, int]:
    """Token usage from ``metadata.usage``; missing or zero fields fall back to the defaults."""
    usage = DEFAULT_USAGE.copy()
    if not isinstance(body, dict):
        return usage
    metadata = body.get("metadata")
    reported = metadata.get("usage") if isinstance(metadata, dict) else None
    if not isinstance(reported, dict):
        return usage
    for key, default in DEFAULT_USAGE.items():
        try:
            usage[key] = int(reported.get(key) or default)
        except (TypeError, ValueError):
            usage[key] = default
    return usage


def normalize_response(
    bot_type: str,
    body: Any,
    output_variable: str | None = None,
) -> NormalizedResponse:
    """Extract the assistant text and usage from a blocking Dify reply."""
    text: str | None
    if bot_type == BotType.WORKFLOW.value:
        text = _workflow_text(body, output_variable)
    else:
        text = _message_text(body)
    if text is None:
        text = _fallback_text(body)

    return NormalizedResponse(
        text=text.strip() or EMPTY_PLACEHOLDER,
        usage=extract_usage(body),
    )
