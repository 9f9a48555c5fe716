"""
HTTP transport: OpenAI-compatible chat/completions over SSE.

Only responsible for sending the request and normalizing the stream;
credentials, quota and persistence are handled by the orchestrator.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from typing import Any

import httpx

from chatrelay.errors import UpstreamError
from chatrelay.logging_config import logger
from chatrelay.provider.registry import TRANSPORT_HTTP, ModelSpec, ProviderSpec
from chatrelay.settings import settings
from chatrelay.upstream import stream_upstream

from .base import RelayEvent, Transport

HttpClientFactory = Callable[[], httpx.AsyncClient]


def default_http_client_factory() -> httpx.AsyncClient:
    timeout = httpx.Timeout(settings.upstream_timeout)
    return httpx.AsyncClient(timeout=timeout)


def build_upstream_headers(api_key: str) -> dict[str, str]:
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
        "Accept": "text/event-stream",
        "HTTP-Referer": settings.upstream_referer,
        "User-Agent": settings.upstream_user_agent,
    }
    if settings.upstream_title:
        headers["X-Title"] = settings.upstream_title
    return headers


def events_from_payload(payload: dict[str, Any]) -> list[RelayEvent]:
    """
    Map one decoded SSE chunk to relay events.

    Role-only and empty deltas produce nothing. An ``error`` object in the
    chunk raises UpstreamError.
    """
    error = payload.get("error")
    if error:
        if isinstance(error, dict):
            message = str(error.get("message") or error)
            code = error.get("code")
        else:
            message, code = str(error), None
        raise UpstreamError(
            f"Upstream stream error: {message}",
            provider="",
            upstream_status=code if isinstance(code, int) else None,
        )

    choices = payload.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return []
    delta = choices[0].get("delta") or {}

    events: list[RelayEvent] = []
    reasoning = delta.get("reasoning") or delta.get("reasoning_content")
    if isinstance(reasoning, str) and reasoning:
        events.append(RelayEvent.reasoning(reasoning))
    content = delta.get("content")
    if isinstance(content, str) and content:
        events.append(RelayEvent.content(content))
    return events


class HttpTransport(Transport):
    transport_name = TRANSPORT_HTTP

    def __init__(
        self,
        *,
        provider: ProviderSpec,
        model: ModelSpec,
        api_key: str,
        client_factory: HttpClientFactory | None = None,
    ):
        super().__init__(provider=provider, model=model, api_key=api_key)
        self._client_factory = client_factory or default_http_client_factory

    def build_body(self, messages: list[dict[str, str]]) -> dict[str, Any]:
        body: dict[str, Any] = self.provider_options()
        body.update({"model": self.model.upstream_id, "messages": messages, "stream": True})
        return body

    async def _iter_events(self, messages: list[dict[str, str]]) -> AsyncIterator[RelayEvent]:
        url = self.provider.chat_completions_url
        body = self.build_body(messages)
        logger.debug(
            "HttpTransport: provider=%s model=%s messages=%d body_bytes=%d",
            self.provider.id,
            body["model"],
            len(messages),
            len(json.dumps(body, ensure_ascii=False)),
        )
        async with self._client_factory() as client:
            payloads = stream_upstream(
                client=client,
                url=url,
                headers=build_upstream_headers(self.api_key),
                json_body=body,
            )
            async with aclosing(payloads):
                async for payload in payloads:
                    for event in events_from_payload(payload):
                        yield event


__all__ = [
    "HttpClientFactory",
    "HttpTransport",
    "build_upstream_headers",
    "default_http_client_factory",
    "events_from_payload",
]
