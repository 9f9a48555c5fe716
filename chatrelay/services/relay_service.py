"""
Relay orchestration for a single chat turn or retry.

Everything that can still be rejected with a JSON error (validation,
ownership, provider lookup, credential, quota) happens synchronously in
``prepare_turn`` / ``prepare_retry`` on the request's DB session. Once the
target message row exists, ``start`` spawns a background task that drives
upstream -> multiplexer -> checkpointer, and hands the caller an iterator
over the emitted text.

The background task owns persistence: it keeps running after the client
goes away and always writes exactly one terminal status.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum

import anyio
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from chatrelay.api.v1.chat.checkpointer import PersistenceCheckpointer, SessionFactory
from chatrelay.api.v1.chat.reasoning_multiplexer import MuxState, ReasoningMultiplexer
from chatrelay.api.v1.chat.transports import RelayEvent, create_transport
from chatrelay.api.v1.chat.transports.http_transport import HttpClientFactory
from chatrelay.errors import (
    AuthorizationError,
    CredentialUnavailable,
    ValidationError,
)
from chatrelay.logging_config import logger
from chatrelay.models import Chat, Message, new_id, utcnow
from chatrelay.provider.registry import ModelSpec, ProviderRegistry, ProviderSpec
from chatrelay.schemas.chat import ChatRequest, RetryRequest
from chatrelay.services.context_service import assemble_context, load_system_prompt
from chatrelay.services.credential_service import (
    Credential,
    Unavailable,
    quota_cost,
    resolve_credential,
)
from chatrelay.services.quota_service import check_and_charge
from chatrelay.settings import settings

# Strong references to in-flight relays; asyncio only keeps weak ones.
_BACKGROUND_TASKS: set[asyncio.Task] = set()


class RelayState(str, Enum):
    VALIDATING = "validating"
    AUTHORIZING = "authorizing"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PreparedRelay:
    chat_id: str
    user_id: str
    message_id: str
    model: ModelSpec
    provider: ProviderSpec
    api_key: str
    messages: list[dict[str, str]]
    charged: int = 0


@dataclass
class RelayHandle:
    """Running relay: ``body`` feeds the HTTP response, ``task`` owns persistence."""

    message_id: str
    body: AsyncIterator[str]
    task: asyncio.Task
    multiplexer: ReasoningMultiplexer = field(repr=False)
    checkpointer: PersistenceCheckpointer = field(repr=False)


class ChatRelay:
    def __init__(
        self,
        *,
        db: Session,
        registry: ProviderRegistry,
        session_factory: SessionFactory,
        http_client_factory: HttpClientFactory | None = None,
    ) -> None:
        self.db = db
        self.registry = registry
        self.session_factory = session_factory
        self.http_client_factory = http_client_factory
        self.state = RelayState.VALIDATING

    def _transition(self, state: RelayState, message_id: str | None = None) -> None:
        logger.debug("relay %s: %s -> %s", message_id or "-", self.state.value, state.value)
        self.state = state

    # ------------------------------------------------------------------
    # Pre-stream phase
    # ------------------------------------------------------------------

    @staticmethod
    def _require_fields(payload: ChatRequest, names: tuple[str, ...]) -> None:
        missing = [
            ChatRequest.wire_name(name)
            for name in names
            if not (getattr(payload, name) or "").strip()
        ]
        if missing:
            raise ValidationError(
                "Missing required fields",
                details={"missing": missing},
            )

    def _load_owned_chat(self, chat_id: str, user_id: str) -> Chat:
        chat = self.db.get(Chat, chat_id)
        if chat is None or chat.created_by != user_id:
            raise AuthorizationError("Chat not found or unauthorized")
        return chat

    def _authorize(self, model: str, user_id: str) -> tuple[ModelSpec, ProviderSpec, Credential]:
        self._transition(RelayState.AUTHORIZING)
        spec, provider = self.registry.resolve(model)
        credential = resolve_credential(self.db, user_id, provider.id)
        if isinstance(credential, Unavailable):
            raise CredentialUnavailable(
                f"No API key available for {provider.display_name}. "
                "Please add your own key or contact support",
                details={"provider": provider.id},
            )
        check_and_charge(self.db, user_id, quota_cost(credential))
        return spec, provider, credential

    def _next_sequence(self, chat_id: str) -> int:
        current = self.db.execute(
            select(func.max(Message.sequence)).where(Message.chat_id == chat_id)
        ).scalar()
        return (current or 0) + 1

    def prepare_turn(self, payload: ChatRequest) -> PreparedRelay:
        """
        Validate a new turn, charge it, and insert the user message plus
        the empty assistant message the stream will be written into.
        """
        self._transition(RelayState.VALIDATING)
        self._require_fields(payload, ("model", "prompt", "chat_id", "user_id"))
        chat = self._load_owned_chat(payload.chat_id, payload.user_id)

        message_id = (payload.message_id or "").strip() or new_id()
        if self.db.get(Message, message_id) is not None:
            raise ValidationError(
                "Message id already exists",
                details={"messageId": message_id},
            )

        spec, provider, credential = self._authorize(payload.model, payload.user_id)

        # Context is read before the new rows exist.
        messages = assemble_context(
            self.db,
            chat_id=chat.id,
            prompt=payload.prompt,
            system_prompt=load_system_prompt(self.db, payload.user_id),
        )

        now = utcnow()
        sequence = self._next_sequence(chat.id)
        self.db.add(
            Message(
                chat_id=chat.id,
                role="user",
                content=payload.prompt,
                status="complete",
                model=spec.model,
                sequence=sequence,
                created_at=now,
                updated_at=now,
            )
        )
        self.db.add(
            Message(
                id=message_id,
                chat_id=chat.id,
                role="assistant",
                content="",
                status="streaming",
                model=spec.model,
                sequence=sequence + 1,
                created_at=now,
                updated_at=now,
            )
        )
        chat.updated_at = now
        self.db.commit()

        logger.info(
            "relay prepared: chat=%s message=%s model=%s provider=%s key=%s",
            chat.id,
            message_id,
            spec.model,
            provider.id,
            type(credential).__name__,
        )
        return PreparedRelay(
            chat_id=chat.id,
            user_id=payload.user_id,
            message_id=message_id,
            model=spec,
            provider=provider,
            api_key=credential.key,
            messages=messages,
            charged=quota_cost(credential),
        )

    def prepare_retry(self, payload: RetryRequest) -> PreparedRelay:
        """
        Validate a retry, charge it, snapshot the target's content into
        ``previous_content`` and reset it to an empty streaming row.
        """
        self._transition(RelayState.VALIDATING)
        self._require_fields(payload, ("model", "prompt", "chat_id", "user_id", "message_id"))
        chat = self._load_owned_chat(payload.chat_id, payload.user_id)

        target = self.db.get(Message, payload.message_id)
        if target is None or target.chat_id != chat.id:
            raise AuthorizationError("Message not found or unauthorized")

        spec, provider, credential = self._authorize(payload.model, payload.user_id)

        messages = assemble_context(
            self.db,
            chat_id=chat.id,
            prompt=payload.prompt,
            system_prompt=load_system_prompt(self.db, payload.user_id),
            before=target,
        )

        now = utcnow()
        target.previous_content = target.content
        target.content = ""
        target.status = "streaming"
        target.model = spec.model
        target.updated_at = now
        chat.updated_at = now
        self.db.commit()

        logger.info(
            "relay retry prepared: chat=%s message=%s model=%s provider=%s key=%s",
            chat.id,
            target.id,
            spec.model,
            provider.id,
            type(credential).__name__,
        )
        return PreparedRelay(
            chat_id=chat.id,
            user_id=payload.user_id,
            message_id=target.id,
            model=spec,
            provider=provider,
            api_key=credential.key,
            messages=messages,
            charged=quota_cost(credential),
        )

    # ------------------------------------------------------------------
    # Streaming phase
    # ------------------------------------------------------------------

    def start(self, prepared: PreparedRelay) -> RelayHandle:
        """
        Spawn the background relay and return its handle.

        Must be called from within a running event loop.
        """
        queue: asyncio.Queue[str | None] = asyncio.Queue()
        mux = ReasoningMultiplexer()
        checkpointer = PersistenceCheckpointer(
            message_id=prepared.message_id,
            chat_id=prepared.chat_id,
            session_factory=self.session_factory,
        )
        task = asyncio.create_task(
            self._pump(prepared, mux, checkpointer, queue),
            name=f"relay-{prepared.message_id}",
        )
        _BACKGROUND_TASKS.add(task)
        task.add_done_callback(_BACKGROUND_TASKS.discard)
        return RelayHandle(
            message_id=prepared.message_id,
            body=_drain(queue, prepared.message_id),
            task=task,
            multiplexer=mux,
            checkpointer=checkpointer,
        )

    async def _pump(
        self,
        prepared: PreparedRelay,
        mux: ReasoningMultiplexer,
        checkpointer: PersistenceCheckpointer,
        queue: asyncio.Queue[str | None],
    ) -> None:
        message_id = prepared.message_id
        self._transition(RelayState.STREAMING, message_id)
        transport = create_transport(
            provider=prepared.provider,
            model=prepared.model,
            api_key=prepared.api_key,
            http_client_factory=self.http_client_factory,
        )
        limit = settings.relay_max_duration_seconds or None

        def emit(event: RelayEvent) -> None:
            for chunk in mux.feed(event):
                queue.put_nowait(chunk)

        try:
            with anyio.move_on_after(limit) as scope:
                async with aclosing(transport.stream(prepared.messages)) as events:
                    async for event in events:
                        seen = mux.delta_count
                        emit(event)
                        if mux.finished:
                            break
                        if mux.delta_count != seen:
                            await checkpointer.on_delta(mux.transcript)
            if scope.cancelled_caught:
                emit(RelayEvent.failed(f"upstream exceeded {limit:g}s without finishing"))
            if not mux.finished:
                emit(RelayEvent.failed("upstream ended without a terminal event"))
        except Exception as exc:
            logger.exception("relay %s: unexpected failure while streaming", message_id)
            emit(RelayEvent.failed(str(exc)))
        finally:
            self._transition(RelayState.FINALIZING, message_id)
            ok = mux.state == MuxState.DONE
            try:
                await checkpointer.finalize(mux.transcript, ok=ok)
                self._log_outcome(prepared, mux, checkpointer, ok)
            finally:
                queue.put_nowait(None)

    def _log_outcome(
        self,
        prepared: PreparedRelay,
        mux: ReasoningMultiplexer,
        checkpointer: PersistenceCheckpointer,
        ok: bool,
    ) -> None:
        if ok:
            self._transition(RelayState.COMPLETED, prepared.message_id)
            logger.info(
                "relay %s completed: provider=%s deltas=%d chars=%d checkpoints=%d",
                prepared.message_id,
                prepared.provider.id,
                mux.delta_count,
                len(mux.transcript),
                checkpointer.periodic_writes,
            )
        else:
            self._transition(RelayState.FAILED, prepared.message_id)
            logger.warning(
                "relay %s failed: provider=%s model=%s deltas=%d error=%s",
                prepared.message_id,
                prepared.provider.id,
                prepared.model.model,
                mux.delta_count,
                mux.error,
            )


async def _drain(queue: asyncio.Queue[str | None], message_id: str) -> AsyncIterator[str]:
    finished = False
    try:
        while True:
            chunk = await queue.get()
            if chunk is None:
                finished = True
                return
            yield chunk
    finally:
        if not finished:
            logger.info(
                "relay %s: client detached; upstream continues in background",
                message_id,
            )


async def wait_for_background_relays(timeout: float | None = None) -> None:
    """Wait for in-flight relays, e.g. on application shutdown."""
    pending = list(_BACKGROUND_TASKS)
    if not pending:
        return
    logger.info("Waiting for %d in-flight relays", len(pending))
    with anyio.move_on_after(timeout):
        await asyncio.gather(*pending, return_exceptions=True)


__all__ = [
    "ChatRelay",
    "PreparedRelay",
    "RelayHandle",
    "RelayState",
    "wait_for_background_relays",
]
