"""
Streaming chat.completions through the official OpenAI Python SDK.

Yields tagged parts: {"type": "reasoning" | "text", "text": str}. Some
OpenAI-compatible backends put reasoning into ``delta.reasoning_content``
(or ``delta.reasoning``); those fragments are tagged as reasoning.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from contextlib import aclosing
from typing import Any

from .threaded_stream import iterate_in_thread, response_to_dict


class OpenAISDKError(Exception):
    """Raised when the openai SDK is unavailable or returns an error."""


def _create_client(api_key: str, base_url: str | None):
    try:
        from openai import OpenAI
    except ImportError as exc:  # pragma: no cover - import guard
        raise OpenAISDKError("openai is not installed: pip install openai") from exc

    kwargs: dict[str, Any] = {"api_key": api_key}
    if base_url:
        kwargs["base_url"] = str(base_url)
    return OpenAI(**kwargs)


def parts_from_chunk(chunk: Mapping[str, Any]) -> list[dict[str, str]]:
    choices = chunk.get("choices") or []
    if not choices or not isinstance(choices[0], Mapping):
        return []
    delta = choices[0].get("delta") or {}
    parts: list[dict[str, str]] = []
    reasoning = delta.get("reasoning_content") or delta.get("reasoning")
    if isinstance(reasoning, str) and reasoning:
        parts.append({"type": "reasoning", "text": reasoning})
    content = delta.get("content")
    if isinstance(content, str) and content:
        parts.append({"type": "text", "text": content})
    return parts


async def stream_content(
    *,
    api_key: str,
    model_id: str,
    messages: list[dict[str, str]],
    options: Mapping[str, Any],
    base_url: str | None = None,
) -> AsyncIterator[dict[str, str]]:
    client = _create_client(api_key, base_url)
    request: dict[str, Any] = dict(options)
    request.update({"model": model_id, "messages": messages, "stream": True})

    def _produce():
        return client.chat.completions.create(**request)

    try:
        async with aclosing(iterate_in_thread(_produce)) as stream:
            async for chunk in stream:
                for part in parts_from_chunk(response_to_dict(chunk)):
                    yield part
    except OpenAISDKError:
        raise
    except Exception as exc:
        raise OpenAISDKError(f"openai streaming call failed: {exc}") from exc
