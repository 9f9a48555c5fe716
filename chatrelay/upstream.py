import json
from typing import Any, AsyncIterator, Dict

import httpx

from .logging_config import logger

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"


class UpstreamStreamError(Exception):
    """
    Upstream failure surfaced while opening or reading a stream.

    ``status_code`` is None for transport-level failures (connection reset,
    timeout) and the HTTP status for non-2xx responses.
    """

    def __init__(
        self,
        *,
        status_code: int | None,
        message: str,
        text: str,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.text = text


def _truncate(text: str, limit: int = 2000) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "...<truncated>"


def parse_sse_line(line: str) -> Dict[str, Any] | str | None:
    """
    Parse one line of an OpenAI-compatible SSE stream.

    Returns the decoded JSON payload, the literal "[DONE]" sentinel, or None
    for blank lines, comments, non-data fields and undecodable payloads.
    """
    line = line.strip()
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    data = line[len(SSE_DATA_PREFIX):].strip()
    if not data:
        return None
    if data == SSE_DONE:
        return SSE_DONE
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("Skipping undecodable SSE payload: %s", _truncate(data, 200))
        return None
    if not isinstance(payload, dict):
        return None
    return payload


async def stream_upstream(
    *,
    client: httpx.AsyncClient,
    url: str,
    headers: Dict[str, str],
    json_body: Dict[str, Any],
) -> AsyncIterator[Dict[str, Any]]:
    """
    POST ``json_body`` to ``url`` and yield each decoded SSE ``data:`` payload.

    Behaviour:
    - A non-2xx status raises UpstreamStreamError after reading the body,
      so the error text can be logged.
    - Transport errors while reading are also raised as UpstreamStreamError.
    - Lines may be split across network chunks; an incomplete trailing line
      is buffered until the next chunk arrives.
    - "[DONE]" ends iteration even if the connection stays open.
    """
    logger.info("stream_upstream: opening POST %s", url)
    try:
        async with client.stream("POST", url, headers=headers, json=json_body) as resp:
            if resp.status_code >= 400:
                text_bytes = await resp.aread()
                text = text_bytes.decode("utf-8", errors="ignore")
                logger.warning(
                    "Upstream streaming HTTP error %s for %s; response=%s",
                    resp.status_code,
                    url,
                    _truncate(text),
                )
                raise UpstreamStreamError(
                    status_code=resp.status_code,
                    message=f"Upstream HTTP error {resp.status_code}",
                    text=text,
                )

            logger.info(
                "stream_upstream: connected to upstream %s with status %s",
                url,
                resp.status_code,
            )

            buffer = ""
            async for chunk in resp.aiter_text():
                if not chunk:
                    continue
                buffer += chunk
                lines = buffer.split("\n")
                buffer = lines.pop()
                for line in lines:
                    parsed = parse_sse_line(line)
                    if parsed is None:
                        continue
                    if parsed == SSE_DONE:
                        return
                    yield parsed

            if buffer:
                parsed = parse_sse_line(buffer)
                if isinstance(parsed, dict):
                    yield parsed
    except httpx.HTTPError as exc:
        logger.warning("Upstream streaming transport error for %s: %s", url, exc)
        raise UpstreamStreamError(
            status_code=None,
            message="Upstream streaming transport error",
            text=str(exc),
        ) from exc


__all__ = ["UpstreamStreamError", "parse_sse_line", "stream_upstream"]
