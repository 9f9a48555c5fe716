"""
Per-user monthly request quota.

Charging is a single conditional UPDATE so that concurrent charges for the
same user are serialized by the database row lock: the check
``request_count < max_requests`` and the increment happen in one statement.
"""

from __future__ import annotations

import datetime as dt

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chatrelay.errors import QuotaExceeded
from chatrelay.logging_config import logger
from chatrelay.models import RequestLimit, utcnow
from chatrelay.settings import settings


def _as_utc(value: dt.datetime) -> dt.datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.UTC)
    return value


def get_or_create_limit(session: Session, user_id: str) -> RequestLimit:
    record = session.execute(
        select(RequestLimit).where(RequestLimit.user_id == user_id)
    ).scalar_one_or_none()
    if record is not None:
        return record

    now = utcnow()
    record = RequestLimit(
        user_id=user_id,
        request_count=0,
        max_requests=settings.default_max_requests,
        reset_at=now + dt.timedelta(days=settings.request_limit_period_days),
    )
    session.add(record)
    try:
        session.commit()
    except IntegrityError:
        # Another request created the row first.
        session.rollback()
        return session.execute(
            select(RequestLimit).where(RequestLimit.user_id == user_id)
        ).scalar_one()
    session.refresh(record)
    logger.info(
        "Created request limit for user=%s max_requests=%s reset_at=%s",
        user_id,
        record.max_requests,
        record.reset_at,
    )
    return record


def check_and_charge(session: Session, user_id: str, cost: int) -> RequestLimit:
    """
    Charge ``cost`` (0 or 1) requests to ``user_id``.

    Raises QuotaExceeded without mutating anything when the user already
    reached ``max_requests``; that holds for cost 0 as well.
    """
    if cost not in (0, 1):
        raise ValueError(f"cost must be 0 or 1, got {cost!r}")

    record = get_or_create_limit(session, user_id)

    result = session.execute(
        update(RequestLimit)
        .where(
            RequestLimit.user_id == user_id,
            RequestLimit.request_count < RequestLimit.max_requests,
        )
        .values(request_count=RequestLimit.request_count + cost, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        session.rollback()
        session.refresh(record)
        logger.info(
            "Request limit reached for user=%s (%s/%s)",
            user_id,
            record.request_count,
            record.max_requests,
        )
        raise QuotaExceeded(
            "Request limit exceeded. Add your own API key or wait for the limit to reset",
            request_count=record.request_count,
            max_requests=record.max_requests,
            details={
                "request_count": record.request_count,
                "max_requests": record.max_requests,
                "reset_at": _as_utc(record.reset_at).isoformat(),
            },
        )

    session.commit()
    session.refresh(record)
    logger.debug(
        "Charged user=%s cost=%s now %s/%s",
        user_id,
        cost,
        record.request_count,
        record.max_requests,
    )
    return record


def reset_expired_limits(session: Session, now: dt.datetime | None = None) -> int:
    """
    Zero the counter of every record whose ``reset_at`` has passed and move
    ``reset_at`` forward by whole periods until it lies in the future.

    Returns the number of records reset.
    """
    now = _as_utc(now or utcnow())
    period = dt.timedelta(days=settings.request_limit_period_days)

    records = session.execute(
        select(RequestLimit).where(RequestLimit.reset_at <= now)
    ).scalars().all()

    for record in records:
        reset_at = _as_utc(record.reset_at)
        while reset_at <= now:
            reset_at += period
        record.request_count = 0
        record.reset_at = reset_at
        record.updated_at = now

    if records:
        session.commit()
        logger.info("Reset %d expired request limits", len(records))
    return len(records)


__all__ = ["check_and_charge", "get_or_create_limit", "reset_expired_limits"]
