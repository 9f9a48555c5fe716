"""
Gemini streaming through the google-genai SDK.

Parts flagged with ``thought: true`` (returned when
``thinking_config.include_thoughts`` is set) are tagged as reasoning.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from contextlib import aclosing
from typing import Any

from .threaded_stream import iterate_in_thread, response_to_dict


class GoogleSDKError(Exception):
    """Raised when the google-genai SDK is unavailable or returns an error."""


def _create_client(api_key: str):
    try:
        from google import genai
    except ImportError as exc:  # pragma: no cover - import guard
        raise GoogleSDKError("google-genai is not installed: pip install google-genai") from exc

    return genai.Client(api_key=api_key)


def messages_to_contents(messages: list[dict[str, str]]) -> tuple[list[dict[str, Any]], str | None]:
    """
    Convert OpenAI-style messages into Gemini ``contents`` plus a system instruction.
    """
    contents: list[dict[str, Any]] = []
    system_parts: list[str] = []
    for msg in messages:
        role = msg.get("role") or "user"
        text = msg.get("content") or ""
        if role == "system":
            if text:
                system_parts.append(text)
            continue
        contents.append(
            {"role": "model" if role == "assistant" else "user", "parts": [{"text": text}]}
        )
    return contents, ("\n\n".join(system_parts) or None)


def parts_from_chunk(chunk: Mapping[str, Any]) -> list[dict[str, str]]:
    candidates = chunk.get("candidates") or []
    if not candidates or not isinstance(candidates[0], Mapping):
        return []
    content = candidates[0].get("content") or {}
    parts: list[dict[str, str]] = []
    for part in content.get("parts") or []:
        if not isinstance(part, Mapping):
            continue
        text = part.get("text")
        if not isinstance(text, str) or not text:
            continue
        parts.append({"type": "reasoning" if part.get("thought") else "text", "text": text})
    return parts


async def stream_content(
    *,
    api_key: str,
    model_id: str,
    messages: list[dict[str, str]],
    options: Mapping[str, Any],
    base_url: str | None = None,
) -> AsyncIterator[dict[str, str]]:
    client = _create_client(api_key)
    contents, system_instruction = messages_to_contents(messages)
    config: dict[str, Any] = dict(options)
    if system_instruction:
        config["system_instruction"] = system_instruction

    def _produce():
        return client.models.generate_content_stream(
            model=model_id,
            contents=contents,
            config=config or None,
        )

    try:
        async with aclosing(iterate_in_thread(_produce)) as stream:
            async for chunk in stream:
                for part in parts_from_chunk(response_to_dict(chunk)):
                    yield part
    except GoogleSDKError:
        raise
    except Exception as exc:
        raise GoogleSDKError(f"google-genai streaming call failed: {exc}") from exc
