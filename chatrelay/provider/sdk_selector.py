"""
SDK vendor dispatch.

Built-in drivers cover openai, claude (anthropic) and google (google-genai).
A driver's ``stream_content`` yields tagged parts
``{"type": "reasoning" | "text", "text": str}``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

from chatrelay.provider import claude_sdk, google_sdk, openai_sdk
from chatrelay.provider.registry import ProviderSpec


@dataclass(frozen=True)
class SDKDriver:
    name: str
    stream_content: Callable[..., AsyncIterator[dict]]
    # Vendor exceptions the SDK transport turns into an UpstreamError.
    error_types: tuple[type[BaseException], ...]


SDK_DRIVERS: dict[str, SDKDriver] = {
    vendor: SDKDriver(name=vendor, stream_content=module.stream_content, error_types=errors)
    for vendor, module, errors in (
        ("openai", openai_sdk, (openai_sdk.OpenAISDKError,)),
        ("claude", claude_sdk, (claude_sdk.ClaudeSDKError,)),
        ("google", google_sdk, (google_sdk.GoogleSDKError,)),
    )
}


def list_registered_sdk_vendors() -> list[str]:
    return sorted(SDK_DRIVERS)


def get_sdk_driver(provider: ProviderSpec) -> SDKDriver | None:
    if provider.sdk_vendor is None:
        return None
    return SDK_DRIVERS.get(provider.sdk_vendor)


__all__ = [
    "SDKDriver",
    "SDK_DRIVERS",
    "get_sdk_driver",
    "list_registered_sdk_vendors",
]
