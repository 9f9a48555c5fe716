from __future__ import annotations

from sqlalchemy import Boolean, Column, String, Text, text
from sqlalchemy.orm import Mapped

from .base import Base, StringIdPrimaryKeyMixin, TimestampMixin


class UserAPIKey(StringIdPrimaryKeyMixin, TimestampMixin, Base):
    """
    A provider key supplied by the user.

    Requests served with an enabled key are not charged against the
    user's request limit.
    """

    __tablename__ = "user_api_keys"

    user_id: Mapped[str] = Column(String(64), nullable=False, index=True)
    provider: Mapped[str] = Column(String(32), nullable=False)
    key: Mapped[str] = Column(Text, nullable=False)
    enabled: Mapped[bool] = Column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("TRUE"),
    )


__all__ = ["UserAPIKey"]
