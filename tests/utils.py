from __future__ import annotations

import asyncio
import datetime as dt
import json
from collections.abc import AsyncIterator, Callable, Iterable
from typing import Any

import httpx
from fastapi import FastAPI
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from chatrelay.deps import get_db, get_http_client_factory, get_session_factory
from chatrelay.models import Base, Chat, Message, RequestLimit, UserAPIKey, UserPreference
from chatrelay.provider.registry import (
    TRANSPORT_HTTP,
    TRANSPORT_SDK,
    ModelSpec,
    ProviderRegistry,
    ProviderSpec,
)
from chatrelay.provider.sdk_selector import SDKDriver

MOCK_BASE_URL = "https://mock.local/api/v1"
STUB_VENDOR = "stub"
BASE_TIME = dt.datetime(2026, 1, 1, 12, 0, tzinfo=dt.UTC)


def make_session_factory() -> tuple[Any, sessionmaker]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )
    return engine, SessionLocal


def install_inmemory_db(app: FastAPI) -> sessionmaker:
    """
    Point the app's DB dependencies at a fresh in-memory SQLite database.
    """
    _, SessionLocal = make_session_factory()

    def _get_db():
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: SessionLocal
    return SessionLocal


def install_mock_upstream(app: FastAPI, handler: Callable[[httpx.Request], httpx.Response]) -> None:
    app.dependency_overrides[get_http_client_factory] = lambda: mock_client_factory(handler)


def mock_client_factory(handler: Callable[[httpx.Request], httpx.Response]):
    def _factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _factory


def build_test_registry() -> ProviderRegistry:
    providers = [
        ProviderSpec(
            id="openrouter",
            display_name="OpenRouter",
            transport=TRANSPORT_HTTP,
            base_url=MOCK_BASE_URL,
        ),
        ProviderSpec(
            id="openai",
            display_name="OpenAI",
            transport=TRANSPORT_SDK,
            sdk_vendor=STUB_VENDOR,
        ),
    ]
    models = [
        ModelSpec(model="mock/plain", provider="openrouter"),
        ModelSpec(model="mock/thinker", provider="openrouter", has_thinking=True),
        ModelSpec(
            model="stub-model",
            provider="openai",
            upstream_model_id="stub-upstream",
            has_thinking=True,
            provider_options={"reasoning_effort": "low"},
        ),
    ]
    return ProviderRegistry(providers, models)


# ---------------------------------------------------------------------------
# SSE helpers
# ---------------------------------------------------------------------------


def sse_line(payload: dict[str, Any] | str) -> str:
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {data}\n\n"


def content_chunk(text: str) -> dict[str, Any]:
    return {"choices": [{"index": 0, "delta": {"content": text}}]}


def reasoning_chunk(text: str) -> dict[str, Any]:
    return {"choices": [{"index": 0, "delta": {"reasoning": text}}]}


def sse_body(*payloads: dict[str, Any] | str, done: bool = True) -> str:
    body = "".join(sse_line(p) for p in payloads)
    if done:
        body += sse_line("[DONE]")
    return body


async def _aiter_bytes(chunks: Iterable[str]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk.encode("utf-8")


def sse_response(*payloads: dict[str, Any] | str, done: bool = True) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"content-type": "text/event-stream"},
        content=sse_body(*payloads, done=done).encode("utf-8"),
    )


def chunked_response(chunks: Iterable[str], status_code: int = 200) -> httpx.Response:
    """Response whose body arrives in exactly the given pieces."""
    return httpx.Response(
        status_code,
        headers={"content-type": "text/event-stream"},
        content=_aiter_bytes(list(chunks)),
    )


# ---------------------------------------------------------------------------
# SDK stub
# ---------------------------------------------------------------------------


class StubSDKError(Exception):
    pass


class StubDriver:
    """
    Fake SDK driver. ``parts`` are yielded in order; ``fail_after`` raises
    StubSDKError after that many parts.
    """

    def __init__(self) -> None:
        self.parts: list[dict[str, str]] = []
        self.fail_after: int | None = None
        self.calls: list[dict[str, Any]] = []
        self.release: asyncio.Event | None = None

    async def stream_content(
        self,
        *,
        api_key: str,
        model_id: str,
        messages: list[dict[str, str]],
        options: dict[str, Any],
        base_url: str | None = None,
    ) -> AsyncIterator[dict[str, str]]:
        self.calls.append(
            {
                "api_key": api_key,
                "model_id": model_id,
                "messages": messages,
                "options": options,
            }
        )
        for index, part in enumerate(self.parts):
            if self.fail_after is not None and index >= self.fail_after:
                raise StubSDKError("stub upstream exploded")
            if index == 1 and self.release is not None:
                await self.release.wait()
            await asyncio.sleep(0)
            yield part
        if self.fail_after is not None and self.fail_after >= len(self.parts):
            raise StubSDKError("stub upstream exploded")

    def as_sdk_driver(self) -> SDKDriver:
        return SDKDriver(
            name=STUB_VENDOR,
            stream_content=self.stream_content,
            error_types=(StubSDKError,),
        )


# ---------------------------------------------------------------------------
# Seeding
# ---------------------------------------------------------------------------


def seed_chat(session: Session, *, user_id: str = "user-1", chat_id: str = "chat-1") -> Chat:
    chat = Chat(id=chat_id, created_by=user_id, model="mock/plain", title="Test chat")
    session.add(chat)
    session.commit()
    return chat


def seed_message(
    session: Session,
    chat: Chat,
    *,
    role: str,
    content: str,
    created_at: dt.datetime,
    sequence: int,
    status: str = "complete",
    message_id: str | None = None,
) -> Message:
    kwargs: dict[str, Any] = {}
    if message_id:
        kwargs["id"] = message_id
    message = Message(
        chat_id=chat.id,
        role=role,
        content=content,
        status=status,
        model="mock/plain",
        sequence=sequence,
        created_at=created_at,
        updated_at=created_at,
        **kwargs,
    )
    session.add(message)
    session.commit()
    return message


def seed_user_key(
    session: Session,
    *,
    user_id: str = "user-1",
    provider: str = "openai",
    key: str = "sk-user-key",
    enabled: bool = True,
    updated_at: dt.datetime | None = None,
) -> UserAPIKey:
    record = UserAPIKey(user_id=user_id, provider=provider, key=key, enabled=enabled)
    if updated_at is not None:
        record.created_at = updated_at
        record.updated_at = updated_at
    session.add(record)
    session.commit()
    return record


def seed_request_limit(
    session: Session,
    *,
    user_id: str = "user-1",
    request_count: int = 0,
    max_requests: int = 250,
    reset_at: dt.datetime | None = None,
) -> RequestLimit:
    record = RequestLimit(
        user_id=user_id,
        request_count=request_count,
        max_requests=max_requests,
        reset_at=reset_at or (BASE_TIME + dt.timedelta(days=30)),
    )
    session.add(record)
    session.commit()
    return record


def seed_system_prompt(session: Session, *, user_id: str = "user-1", prompt: str) -> UserPreference:
    pref = UserPreference(user_id=user_id, system_prompt=prompt)
    session.add(pref)
    session.commit()
    return pref


def chat_messages(session: Session, chat_id: str = "chat-1") -> list[Message]:
    stmt = (
        select(Message)
        .where(Message.chat_id == chat_id)
        .order_by(Message.created_at.asc(), Message.sequence.asc())
    )
    return list(session.execute(stmt).scalars().all())


def request_limit_for(session: Session, user_id: str = "user-1") -> RequestLimit | None:
    return session.execute(
        select(RequestLimit).where(RequestLimit.user_id == user_id)
    ).scalar_one_or_none()
