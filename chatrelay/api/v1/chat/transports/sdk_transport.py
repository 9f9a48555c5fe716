"""
SDK transport: stream through a registered vendor SDK driver.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing

from chatrelay.errors import UpstreamError
from chatrelay.logging_config import logger
from chatrelay.provider.registry import TRANSPORT_SDK
from chatrelay.provider.sdk_selector import get_sdk_driver, list_registered_sdk_vendors

from .base import RelayEvent, Transport


class SdkTransport(Transport):
    transport_name = TRANSPORT_SDK

    async def _iter_events(self, messages: list[dict[str, str]]) -> AsyncIterator[RelayEvent]:
        driver = get_sdk_driver(self.provider)
        if driver is None:
            raise UpstreamError(
                f"No SDK driver registered for vendor {self.provider.sdk_vendor!r}; "
                f"available: {', '.join(list_registered_sdk_vendors()) or 'none'}",
                provider=self.provider.id,
            )

        logger.debug(
            "SdkTransport: provider=%s driver=%s model=%s messages=%d",
            self.provider.id,
            driver.name,
            self.model.upstream_id,
            len(messages),
        )

        stream = driver.stream_content(
            api_key=self.api_key,
            model_id=self.model.upstream_id,
            messages=messages,
            options=self.provider_options(),
            base_url=self.provider.base_url,
        )
        try:
            async with aclosing(stream):
                async for part in stream:
                    if not isinstance(part, dict):
                        continue
                    text = part.get("text")
                    if not isinstance(text, str) or not text:
                        continue
                    if part.get("type") == "reasoning":
                        yield RelayEvent.reasoning(text)
                    else:
                        yield RelayEvent.content(text)
        except driver.error_types as exc:
            raise UpstreamError(str(exc), provider=self.provider.id) from exc


__all__ = ["SdkTransport"]
