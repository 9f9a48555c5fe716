from collections.abc import Iterator

from fastapi import Request
from sqlalchemy.orm import Session

from .api.v1.chat.checkpointer import SessionFactory
from .api.v1.chat.transports.http_transport import (
    HttpClientFactory,
    default_http_client_factory,
)
from .db import SessionLocal, get_db_session
from .provider.registry import ProviderRegistry


def get_db() -> Iterator[Session]:
    """
    Request-scoped DB session used for the pre-stream checks.
    """
    yield from get_db_session()


def get_session_factory() -> SessionFactory:
    """
    Session factory for background checkpoint writes.

    The streaming task outlives the request, so it cannot share the
    request-scoped session; it opens a short session per write instead.
    """
    return SessionLocal


def get_http_client_factory() -> HttpClientFactory:
    """
    Builds one AsyncClient per relay. Tests override this with a
    factory that returns a client on httpx.MockTransport.
    """
    return default_http_client_factory


def get_provider_registry(request: Request) -> ProviderRegistry:
    return request.app.state.provider_registry
