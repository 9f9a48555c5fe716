"""
Upstream transports: direct SSE over HTTP and vendor SDK drivers.
"""

from chatrelay.provider.registry import TRANSPORT_HTTP, ModelSpec, ProviderSpec

from .base import RelayEvent, Transport
from .http_transport import HttpClientFactory, HttpTransport
from .sdk_transport import SdkTransport


def create_transport(
    *,
    provider: ProviderSpec,
    model: ModelSpec,
    api_key: str,
    http_client_factory: HttpClientFactory | None = None,
) -> Transport:
    if provider.transport == TRANSPORT_HTTP:
        return HttpTransport(
            provider=provider,
            model=model,
            api_key=api_key,
            client_factory=http_client_factory,
        )
    return SdkTransport(provider=provider, model=model, api_key=api_key)


__all__ = [
    "HttpTransport",
    "RelayEvent",
    "SdkTransport",
    "Transport",
    "create_transport",
]
