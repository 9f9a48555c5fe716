"""
Pick the credential used for an upstream call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from chatrelay.models import UserAPIKey
from chatrelay.settings import Settings, settings as default_settings


@dataclass(frozen=True)
class UseUserKey:
    key: str


@dataclass(frozen=True)
class UseSharedKey:
    key: str


@dataclass(frozen=True)
class Unavailable:
    provider: str


Credential = Union[UseUserKey, UseSharedKey, Unavailable]


def find_user_key(session: Session, user_id: str, provider_id: str) -> UserAPIKey | None:
    """
    Most recently updated enabled key of ``user_id`` for ``provider_id``.

    Provider names are compared case-insensitively; blank keys are ignored.
    """
    stmt = (
        select(UserAPIKey)
        .where(
            UserAPIKey.user_id == user_id,
            func.lower(UserAPIKey.provider) == provider_id.lower(),
            UserAPIKey.enabled.is_(True),
        )
        .order_by(UserAPIKey.updated_at.desc(), UserAPIKey.created_at.desc())
    )
    for record in session.execute(stmt).scalars():
        if record.key and record.key.strip():
            return record
    return None


def resolve_credential(
    session: Session,
    user_id: str,
    provider_id: str,
    *,
    config: Settings | None = None,
) -> Credential:
    record = find_user_key(session, user_id, provider_id)
    if record is not None:
        return UseUserKey(key=record.key.strip())

    shared = (config or default_settings).shared_credential_for(provider_id)
    if shared:
        return UseSharedKey(key=shared)
    return Unavailable(provider=provider_id)


def quota_cost(credential: Credential) -> int:
    """Requests on the operator's key count against the quota; the user's own do not."""
    return 1 if isinstance(credential, UseSharedKey) else 0


__all__ = [
    "Credential",
    "Unavailable",
    "UseSharedKey",
    "UseUserKey",
    "find_user_key",
    "quota_cost",
    "resolve_credential",
]
