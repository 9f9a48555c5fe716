"""
Transport base class and the normalized upstream event shape.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any

from chatrelay.errors import UpstreamError
from chatrelay.logging_config import logger
from chatrelay.provider.registry import ModelSpec, ProviderSpec
from chatrelay.upstream import UpstreamStreamError

EVENT_CONTENT = "content"
EVENT_REASONING = "reasoning"
EVENT_TERMINAL = "terminal"


@dataclass(frozen=True)
class RelayEvent:
    """
    One normalized upstream event.

    ``kind`` is content / reasoning (carrying ``text``) or terminal
    (carrying ``ok`` and, on failure, a loggable ``error`` detail).
    """

    kind: str
    text: str = ""
    ok: bool = True
    error: str | None = None

    @classmethod
    def content(cls, text: str) -> "RelayEvent":
        return cls(kind=EVENT_CONTENT, text=text)

    @classmethod
    def reasoning(cls, text: str) -> "RelayEvent":
        return cls(kind=EVENT_REASONING, text=text)

    @classmethod
    def done(cls) -> "RelayEvent":
        return cls(kind=EVENT_TERMINAL)

    @classmethod
    def failed(cls, error: str) -> "RelayEvent":
        return cls(kind=EVENT_TERMINAL, ok=False, error=error)

    @property
    def is_terminal(self) -> bool:
        return self.kind == EVENT_TERMINAL


class Transport(ABC):
    """
    Base class for upstream transports.

    Subclasses implement ``_iter_events`` which yields content / reasoning
    events and raises on failure. ``stream`` wraps it so that every call
    ends with exactly one terminal event and never raises an ordinary
    exception to the caller.
    """

    transport_name: str = ""

    def __init__(self, *, provider: ProviderSpec, model: ModelSpec, api_key: str):
        self.provider = provider
        self.model = model
        self.api_key = api_key

    @abstractmethod
    def _iter_events(self, messages: list[dict[str, str]]) -> AsyncIterator[RelayEvent]:
        """Yield deltas from the upstream; raise to signal failure."""

    def provider_options(self) -> dict[str, Any]:
        return dict(self.model.provider_options)

    async def stream(self, messages: list[dict[str, str]]) -> AsyncIterator[RelayEvent]:
        try:
            async with aclosing(self._iter_events(messages)) as events:
                async for event in events:
                    yield event
        except UpstreamStreamError as exc:
            yield RelayEvent.failed(
                self._describe(status_code=exc.status_code, message=f"{exc}: {exc.text[:500]}")
            )
            return
        except UpstreamError as exc:
            yield RelayEvent.failed(
                self._describe(status_code=exc.upstream_status, message=exc.message)
            )
            return
        except Exception as exc:
            logger.exception(
                "%s transport raised for provider=%s model=%s",
                self.transport_name,
                self.provider.id,
                self.model.model,
            )
            yield RelayEvent.failed(self._describe(status_code=None, message=str(exc)))
            return
        yield RelayEvent.done()

    def _describe(self, *, status_code: int | None, message: str) -> str:
        status = status_code if status_code is not None else "n/a"
        return f"provider={self.provider.id} status={status}: {message}"


__all__ = [
    "EVENT_CONTENT",
    "EVENT_REASONING",
    "EVENT_TERMINAL",
    "RelayEvent",
    "Transport",
]
