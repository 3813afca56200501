import uuid

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from stockflow.config import settings
from stockflow.core.events import RecordingDispatcher, StockLevelChanged
from stockflow.core.exceptions import ConcurrencyConflict, InsufficientStock
from stockflow.services.unit_of_work import is_contention_error, run_atomic


def event():
    return StockLevelChanged(
        inventory_id=uuid.uuid4(),
        product_id=uuid.uuid4(),
        warehouse_id=uuid.uuid4(),
        movement_type="purchase",
        old_on_hand=0,
        new_on_hand=1,
        quantity_available=1,
        stock_status="in_stock",
    )


def test_contention_detection():
    assert is_contention_error(StaleDataError("version mismatch"))
    assert is_contention_error(OperationalError("UPDATE", {}, Exception("database is locked")))
    assert is_contention_error(OperationalError("UPDATE", {}, Exception("could not serialize access")))
    assert not is_contention_error(OperationalError("UPDATE", {}, Exception("no such table: x")))
    assert not is_contention_error(ValueError("locked"))


async def test_events_published_after_commit(db):
    dispatcher = RecordingDispatcher()

    async def operation(pending):
        pending.append(event())
        assert dispatcher.events == []
        return "done"

    assert await run_atomic(db, operation, events=dispatcher) == "done"
    assert len(dispatcher.events) == 1


async def test_retries_contention_then_succeeds(db):
    dispatcher = RecordingDispatcher()
    attempts = []

    async def operation(pending):
        attempts.append(len(attempts) + 1)
        pending.append(event())
        if len(attempts) < 3:
            raise StaleDataError("row was updated concurrently")
        return len(attempts)

    assert await run_atomic(db, operation, events=dispatcher, max_attempts=3) == 3
    # Only the successful attempt's events survive
    assert len(dispatcher.events) == 1


async def test_gives_up_with_concurrency_conflict(db, monkeypatch):
    monkeypatch.setattr(settings, "LEDGER_MAX_RETRIES", 2)
    dispatcher = RecordingDispatcher()
    calls = []

    async def operation(pending):
        calls.append(1)
        pending.append(event())
        raise StaleDataError("row was updated concurrently")

    with pytest.raises(ConcurrencyConflict) as excinfo:
        await run_atomic(db, operation, events=dispatcher)

    assert len(calls) == 2
    assert excinfo.value.details == {"attempts": 2}
    assert dispatcher.events == []


async def test_domain_errors_are_not_retried(db):
    calls = []

    async def operation(pending):
        calls.append(1)
        raise InsufficientStock("not enough")

    with pytest.raises(InsufficientStock):
        await run_atomic(db, operation)
    assert calls == [1]


async def test_other_database_errors_propagate(db):
    async def operation(pending):
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    with pytest.raises(OperationalError):
        await run_atomic(db, operation)
