"""
Build the message list sent upstream.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from chatrelay.models import Message, UserPreference


def load_system_prompt(session: Session, user_id: str) -> str | None:
    pref = session.execute(
        select(UserPreference).where(UserPreference.user_id == user_id)
    ).scalar_one_or_none()
    if pref is None:
        return None
    prompt = (pref.system_prompt or "").strip()
    return prompt or None


def prior_messages(
    session: Session,
    chat_id: str,
    *,
    before: Message | None = None,
) -> list[Message]:
    """
    Messages of a chat, oldest first.

    With ``before`` only rows created strictly earlier are returned, which
    is what a retry regenerates from.
    """
    stmt = select(Message).where(Message.chat_id == chat_id)
    if before is not None:
        stmt = stmt.where(Message.created_at < before.created_at)
    stmt = stmt.order_by(Message.created_at.asc(), Message.sequence.asc())
    return list(session.execute(stmt).scalars().all())


def assemble_context(
    session: Session,
    *,
    chat_id: str,
    prompt: str,
    system_prompt: str | None = None,
    before: Message | None = None,
) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})

    for row in prior_messages(session, chat_id, before=before):
        # Failed turns and placeholders are not part of the conversation.
        if row.role == "error" or row.status == "error" or not row.content:
            continue
        messages.append({"role": row.role, "content": row.content})

    messages.append({"role": "user", "content": prompt})
    return messages


__all__ = ["assemble_context", "load_system_prompt", "prior_messages"]
