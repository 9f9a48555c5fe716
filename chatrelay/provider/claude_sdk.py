"""
Anthropic Messages API streaming through the official SDK.

``thinking_delta`` fragments are tagged as reasoning, ``text_delta`` as text.
System turns are lifted into the top-level ``system`` parameter since the
Messages API does not accept them inline.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from contextlib import aclosing
from typing import Any

from chatrelay.settings import settings

from .threaded_stream import iterate_in_thread, response_to_dict


class ClaudeSDKError(Exception):
    """Raised when the anthropic SDK is unavailable or returns an error."""


def _create_client(api_key: str, base_url: str | None):
    try:
        from anthropic import Anthropic
    except ImportError as exc:  # pragma: no cover - import guard
        raise ClaudeSDKError("anthropic is not installed: pip install anthropic") from exc

    kwargs: dict[str, Any] = {"api_key": api_key}
    if base_url:
        kwargs["base_url"] = str(base_url)
    return Anthropic(**kwargs)


def build_request(
    model_id: str,
    messages: list[dict[str, str]],
    options: Mapping[str, Any],
) -> dict[str, Any]:
    system_parts = [m["content"] for m in messages if m.get("role") == "system" and m.get("content")]
    turns = [
        {"role": m["role"], "content": m["content"]}
        for m in messages
        if m.get("role") in ("user", "assistant")
    ]
    request: dict[str, Any] = {"max_tokens": settings.anthropic_max_tokens}
    request.update(options)
    request.update({"model": model_id, "messages": turns, "stream": True})
    if system_parts:
        request["system"] = "\n\n".join(system_parts)
    return request


def parts_from_event(event: Mapping[str, Any]) -> list[dict[str, str]]:
    if event.get("type") != "content_block_delta":
        return []
    delta = event.get("delta") or {}
    delta_type = delta.get("type")
    if delta_type == "thinking_delta" and delta.get("thinking"):
        return [{"type": "reasoning", "text": delta["thinking"]}]
    if delta_type == "text_delta" and delta.get("text"):
        return [{"type": "text", "text": delta["text"]}]
    return []


async def stream_content(
    *,
    api_key: str,
    model_id: str,
    messages: list[dict[str, str]],
    options: Mapping[str, Any],
    base_url: str | None = None,
) -> AsyncIterator[dict[str, str]]:
    client = _create_client(api_key, base_url)
    request = build_request(model_id, messages, options)

    def _produce():
        return client.messages.create(**request)

    try:
        async with aclosing(iterate_in_thread(_produce)) as stream:
            async for event in stream:
                for part in parts_from_event(response_to_dict(event)):
                    yield part
    except ClaudeSDKError:
        raise
    except Exception as exc:
        raise ClaudeSDKError(f"anthropic streaming call failed: {exc}") from exc
