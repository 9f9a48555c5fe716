from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, String, text
from sqlalchemy.orm import Mapped

from .base import Base, StringIdPrimaryKeyMixin, TimestampMixin


class RequestLimit(StringIdPrimaryKeyMixin, TimestampMixin, Base):
    """
    Monthly request counter for requests served with a shared key.

    - one row per user (unique user_id);
    - request_count only ever moves forward inside a period;
    - reset_at is advanced by the maintenance job, never by the relay.
    """

    __tablename__ = "request_limits"

    user_id: Mapped[str] = Column(String(64), nullable=False, unique=True, index=True)
    request_count: Mapped[int] = Column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    max_requests: Mapped[int] = Column(
        Integer,
        nullable=False,
        default=250,
        server_default=text("250"),
    )
    reset_at = Column(DateTime(timezone=True), nullable=False)


__all__ = ["RequestLimit"]
