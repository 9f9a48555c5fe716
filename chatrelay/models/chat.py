from __future__ import annotations

from sqlalchemy import Column, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped

from .base import Base, StringIdPrimaryKeyMixin, TimestampMixin

MESSAGE_ROLES = ("user", "assistant", "system", "error")
MESSAGE_STATUSES = ("streaming", "complete", "error")


class Chat(StringIdPrimaryKeyMixin, TimestampMixin, Base):
    """A conversation owned by exactly one user."""

    __tablename__ = "chats"

    created_by: Mapped[str] = Column(String(64), nullable=False, index=True)
    model: Mapped[str | None] = Column(String(128), nullable=True)
    title: Mapped[str | None] = Column(String(255), nullable=True)
    parent_chat_id: Mapped[str | None] = Column(
        String(64),
        ForeignKey("chats.id", ondelete="SET NULL"),
        nullable=True,
        doc="Source chat when this chat was branched off another one",
    )
    branch_message_id: Mapped[str | None] = Column(
        String(64),
        nullable=True,
        doc="Message in the parent chat the branch was taken at",
    )


class Message(StringIdPrimaryKeyMixin, TimestampMixin, Base):
    """
    One turn in a chat.

    Assistant rows start empty with status 'streaming' and are filled by
    checkpoints until they settle on 'complete' or 'error'.
    """

    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_messages_chat_created", "chat_id", "created_at", "sequence"),
    )

    chat_id: Mapped[str] = Column(
        String(64),
        ForeignKey("chats.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = Column(String(16), nullable=False)
    content: Mapped[str] = Column(Text, nullable=False, default="", server_default=text("''"))
    previous_content: Mapped[str | None] = Column(
        Text,
        nullable=True,
        doc="Content snapshot taken right before a retry overwrote it",
    )
    status: Mapped[str] = Column(
        String(16),
        nullable=False,
        default="complete",
        server_default=text("'complete'"),
    )
    model: Mapped[str | None] = Column(String(128), nullable=True)
    sequence: Mapped[int] = Column(
        Integer,
        nullable=False,
        default=0,
        doc="Insertion order inside a chat; breaks ties between rows sharing created_at",
    )


__all__ = ["Chat", "MESSAGE_ROLES", "MESSAGE_STATUSES", "Message"]
