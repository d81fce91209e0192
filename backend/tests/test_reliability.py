"""
Reliability Tests.

Transient store failures become TransientStoreError at the unit boundary and
are retried as whole units; business errors are not retried.
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import IntegrityError, OperationalError

from backend.app.core.calendar import BusinessCalendar
from backend.app.core.exceptions import InsufficientBalanceError, TransientStoreError
from backend.app.core.reliability import run_with_transient_retry
from backend.app.db.atomic import atomic_unit, is_transient
from backend.tests.helpers import BUSINESS_TZ


class Flaky:
    """Fails transiently `failures` times, then returns "done"."""

    def __init__(self, failures, error=None):
        self.failures = failures
        self.calls = 0
        self.error = error or TransientStoreError()

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "done"


@pytest.mark.asyncio
async def test_transient_failure_is_retried():
    unit = Flaky(failures=2)

    assert await run_with_transient_retry(unit, attempts=3, backoff=0) == "done"
    assert unit.calls == 3


@pytest.mark.asyncio
async def test_retry_gives_up_after_attempts():
    unit = Flaky(failures=5)

    with pytest.raises(TransientStoreError):
        await run_with_transient_retry(unit, attempts=3, backoff=0)
    assert unit.calls == 3


@pytest.mark.asyncio
async def test_business_errors_are_not_retried():
    unit = Flaky(failures=5, error=InsufficientBalanceError("cash", "cash", Decimal("1"), Decimal("2")))

    with pytest.raises(InsufficientBalanceError):
        await run_with_transient_retry(unit, attempts=3, backoff=0)
    assert unit.calls == 1


def test_operational_errors_are_transient():
    assert is_transient(OperationalError("UPDATE balance_locks", {}, Exception("database is locked")))
    assert not is_transient(IntegrityError("INSERT INTO journal_entries", {}, Exception("constraint failed")))


@pytest.mark.asyncio
async def test_unit_translates_transient_store_errors(session_factory):
    with pytest.raises(TransientStoreError) as exc_info:
        async with atomic_unit(session_factory):
            raise OperationalError("UPDATE balance_locks", {}, Exception("database is locked"))

    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_unit_propagates_other_store_errors(session_factory):
    with pytest.raises(IntegrityError):
        async with atomic_unit(session_factory):
            raise IntegrityError("INSERT INTO journal_entries", {}, Exception("constraint failed"))


def test_calendar_treats_naive_timestamps_as_utc():
    calendar = BusinessCalendar(BUSINESS_TZ)

    assert calendar.to_business_date(datetime(2024, 1, 1, 19, 30)) == date(2024, 1, 2)
    assert calendar.to_business_date(datetime(2024, 1, 1, 18, 59, tzinfo=timezone.utc)) == date(2024, 1, 1)


def test_calendar_day_ranges_are_inclusive():
    days = list(BusinessCalendar.days_between(date(2024, 2, 28), date(2024, 3, 1)))

    assert days == [date(2024, 2, 28), date(2024, 2, 29), date(2024, 3, 1)]
