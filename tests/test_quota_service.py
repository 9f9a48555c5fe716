import datetime as dt
import threading

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from chatrelay.errors import QuotaExceeded
from chatrelay.models import Base, RequestLimit
from chatrelay.services.quota_service import (
    check_and_charge,
    get_or_create_limit,
    reset_expired_limits,
)
from tests.utils import BASE_TIME, request_limit_for, seed_request_limit


def test_first_charge_creates_record_with_defaults(session_factory, shared_keys):
    with session_factory() as session:
        record = check_and_charge(session, "user-1", 1)

        assert record.request_count == 1
        assert record.max_requests == 250
        reset_at = record.reset_at.replace(tzinfo=dt.UTC)
        expected = dt.datetime.now(dt.UTC) + dt.timedelta(days=30)
        assert abs((reset_at - expected).total_seconds()) < 60


def test_cost_zero_leaves_counter_unchanged(session_factory):
    with session_factory() as session:
        seed_request_limit(session, request_count=7)
        record = check_and_charge(session, "user-1", 0)
        assert record.request_count == 7


def test_limit_reached_raises_without_mutation(session_factory):
    with session_factory() as session:
        seed_request_limit(session, request_count=250, max_requests=250)
        with pytest.raises(QuotaExceeded) as excinfo:
            check_and_charge(session, "user-1", 1)

    assert excinfo.value.status_code == 429
    assert excinfo.value.request_count == 250
    assert excinfo.value.max_requests == 250
    with session_factory() as session:
        assert request_limit_for(session).request_count == 250


def test_limit_applies_to_free_requests_too(session_factory):
    with session_factory() as session:
        seed_request_limit(session, request_count=3, max_requests=3)
        with pytest.raises(QuotaExceeded):
            check_and_charge(session, "user-1", 0)


def test_invalid_cost_rejected(session_factory):
    with session_factory() as session:
        with pytest.raises(ValueError):
            check_and_charge(session, "user-1", 2)


def test_get_or_create_is_idempotent(session_factory):
    with session_factory() as session:
        first = get_or_create_limit(session, "user-1")
        second = get_or_create_limit(session, "user-1")
        assert first.id == second.id
        assert session.query(RequestLimit).count() == 1


def test_stale_reads_cannot_both_charge_the_last_request(session_factory):
    with session_factory() as seed:
        seed_request_limit(seed, request_count=4, max_requests=5)

    first = session_factory()
    second = session_factory()
    try:
        # Both callers observe 4/5 before either writes.
        assert get_or_create_limit(first, "user-1").request_count == 4
        assert get_or_create_limit(second, "user-1").request_count == 4

        check_and_charge(first, "user-1", 1)
        with pytest.raises(QuotaExceeded):
            check_and_charge(second, "user-1", 1)
    finally:
        first.close()
        second.close()

    with session_factory() as session:
        assert request_limit_for(session).request_count == 5


def _file_session_factory(path):
    engine = create_engine(
        f"sqlite+pysqlite:///{path}",
        future=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    # Take the write lock when the transaction starts so concurrent writers
    # queue up instead of failing on lock upgrade.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(bind=engine)
    return engine, sessionmaker(bind=engine, expire_on_commit=False, future=True)


def test_concurrent_charges_are_linearized(tmp_path):
    engine, factory = _file_session_factory(tmp_path / "quota.sqlite3")
    try:
        with factory() as session:
            seed_request_limit(session, request_count=9, max_requests=10)

        barrier = threading.Barrier(2)
        outcomes: list[str] = []
        lock = threading.Lock()

        def _worker():
            barrier.wait()
            with factory() as session:
                try:
                    check_and_charge(session, "user-1", 1)
                    result = "ok"
                except QuotaExceeded:
                    result = "exceeded"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=_worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(outcomes) == ["exceeded", "ok"]
        with factory() as session:
            assert request_limit_for(session).request_count == 10
    finally:
        engine.dispose()


def test_reset_expired_limits_advances_by_whole_periods(session_factory, shared_keys):
    now = BASE_TIME
    with session_factory() as session:
        seed_request_limit(
            session,
            user_id="expired",
            request_count=120,
            reset_at=now - dt.timedelta(days=45),
        )
        seed_request_limit(
            session,
            user_id="current",
            request_count=5,
            reset_at=now + dt.timedelta(days=3),
        )

        assert reset_expired_limits(session, now=now) == 1

    with session_factory() as session:
        expired = request_limit_for(session, "expired")
        current = request_limit_for(session, "current")
        assert expired.request_count == 0
        assert expired.reset_at.replace(tzinfo=dt.UTC) == now + dt.timedelta(days=15)
        assert current.request_count == 5


def test_reset_with_nothing_due_returns_zero(session_factory):
    with session_factory() as session:
        seed_request_limit(session, reset_at=BASE_TIME + dt.timedelta(days=1))
        assert reset_expired_limits(session, now=BASE_TIME) == 0
