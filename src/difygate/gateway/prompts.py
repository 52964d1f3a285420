"""Helpers for question/answer log lines."""

from __future__ import annotations

# Helper prompts that chat UIs send on their own (titles, tags, follow-ups).
AUTOMATED_PROMPT_MARKERS = ("### Task:", "### Guidelines:", "### Output:", "JSON format:")


def is_automated_prompt(text: str | None) -> bool:
    if not text:
        return False
    return any(marker in text for marker in AUTOMATED_PROMPT_MARKERS)


def preview(text: str | None, limit: int = 240) -> str:
    """Shorten text for log output."""
    value = text or ""
    if len(value) <= limit:
        return value
    return value[:limit] + "…"
