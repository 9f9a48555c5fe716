"""
Periodic and final persistence of a live transcript.
"""

from __future__ import annotations

from collections.abc import Callable

import anyio
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chatrelay.errors import PersistenceError
from chatrelay.logging_config import logger
from chatrelay.models import Chat, Message, utcnow
from chatrelay.settings import settings

FAILURE_CONTENT = "Failed to generate response"

SessionFactory = Callable[[], Session]


class PersistenceCheckpointer:
    """
    Writes the transcript into the target message row.

    - every ``interval``-th delta: ``content`` only, status untouched;
    - exactly once at the end: ``complete`` with the transcript, or
      ``error`` with a fixed failure text; the owning chat is touched too.

    Store failures are logged and swallowed so a broken store never
    interrupts the live stream.
    """

    def __init__(
        self,
        *,
        message_id: str,
        chat_id: str,
        session_factory: SessionFactory,
        interval: int | None = None,
    ) -> None:
        self.message_id = message_id
        self.chat_id = chat_id
        self._session_factory = session_factory
        self.interval = interval or settings.checkpoint_interval
        self.deltas_seen = 0
        self.periodic_writes = 0
        self.final_writes = 0
        self.failed_writes = 0

    async def on_delta(self, transcript: str) -> None:
        self.deltas_seen += 1
        if self.deltas_seen % self.interval:
            return
        self.periodic_writes += 1
        await anyio.to_thread.run_sync(self._write, transcript, None)

    async def finalize(self, transcript: str, *, ok: bool) -> None:
        if self.final_writes:
            return
        self.final_writes += 1
        if ok:
            await anyio.to_thread.run_sync(self._write, transcript, "complete")
        else:
            await anyio.to_thread.run_sync(self._write, FAILURE_CONTENT, "error")

    def _write(self, content: str, status: str | None) -> bool:
        try:
            written = self._apply(content, status)
        except PersistenceError as exc:
            self.failed_writes += 1
            logger.error("%s (details=%s)", exc.message, exc.details, exc_info=exc.__cause__)
            return False
        if written:
            logger.debug(
                "Checkpoint message=%s status=%s content_len=%d",
                self.message_id,
                status or "streaming",
                len(content),
            )
        return written

    def _apply(self, content: str, status: str | None) -> bool:
        """
        Update the message row in a short session of its own.

        Returns False when the message is gone; raises PersistenceError when
        the store rejects the write.
        """
        now = utcnow()
        session = self._session_factory()
        try:
            message = session.get(Message, self.message_id)
            if message is None:
                logger.warning(
                    "Checkpoint skipped: message %s no longer exists (chat=%s)",
                    self.message_id,
                    self.chat_id,
                )
                return False
            message.content = content
            message.updated_at = now
            if status is not None:
                message.status = status
                chat = session.get(Chat, self.chat_id)
                if chat is not None:
                    chat.updated_at = now
            session.commit()
            return True
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceError(
                f"Checkpoint write failed for message {self.message_id}",
                details={"status": status or "streaming", "error": str(exc)},
            ) from exc
        finally:
            session.close()


__all__ = ["FAILURE_CONTENT", "PersistenceCheckpointer", "SessionFactory"]
