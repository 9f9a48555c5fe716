from __future__ import annotations

from sqlalchemy import Column, String, Text, text
from sqlalchemy.orm import Mapped

from .base import Base, StringIdPrimaryKeyMixin, TimestampMixin


class UserPreference(StringIdPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "user_preferences"

    user_id: Mapped[str] = Column(String(64), nullable=False, unique=True, index=True)
    system_prompt: Mapped[str] = Column(Text, nullable=False, default="", server_default=text("''"))


__all__ = ["UserPreference"]
