from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, String, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid.uuid4())


class StringIdPrimaryKeyMixin:
    """
    Text primary key holding a UUID string.

    Ids are generated client side (or up front by the relay) so callers can
    address a message row before it is streamed into.
    """

    id = Column(String(64), primary_key=True, default=new_id, nullable=False)


class TimestampMixin:
    """Automatically manage created/updated timestamps."""

    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


__all__ = ["Base", "StringIdPrimaryKeyMixin", "TimestampMixin", "new_id", "utcnow"]
