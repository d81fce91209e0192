"""
Shared test doubles and ledger helpers.
"""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from backend.app.core.jwt import create_access_token
from backend.app.db.atomic import atomic_unit
from backend.app.domain.ledger.account import Account
from backend.app.domain.ledger.balances import BalanceSet
from backend.app.domain.ledger.provenance import Provenance
from backend.app.domain.ledger.snapshots import SnapshotService
from backend.app.models.enums import Direction
from backend.app.models.user import User
from backend.app.services.identity import SYSTEM_ACTOR

BUSINESS_TZ = "Asia/Karachi"
CASH = Account.cash()


class FrozenClock:
    """Injectable clock for BusinessCalendar; tests move it between days."""

    def __init__(self, moment: datetime):
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def set_day(self, day: date, hour: int = 12) -> None:
        local = datetime(day.year, day.month, day.day, hour, tzinfo=ZoneInfo(BUSINESS_TZ))
        self.moment = local.astimezone(timezone.utc)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


def token_for(user: User) -> str:
    return create_access_token(data={"sub": user.username, "user_id": user.id, "kind": user.kind.value})


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {token_for(user)}"}


async def seed_opening(session_factory, day, cash=0, banks=None, cards=None, actor=SYSTEM_ACTOR):
    async with atomic_unit(session_factory) as unit:
        row, _ = await SnapshotService.ensure_opening(
            unit.session, day, BalanceSet(cash, banks, cards), "seeded by test", actor
        )
    return row


async def apply_change(session_factory, mutator, account, day, amount, direction=Direction.EXPENSE,
                       source="manual", actor=SYSTEM_ACTOR):
    async with atomic_unit(session_factory) as unit:
        return await mutator.apply(
            unit, account, day, amount, direction,
            Provenance(description=f"test {source}", source=source, actor=actor),
        )


async def resolve_balance(session_factory, resolver, account, day):
    async with session_factory() as session:
        return await resolver.resolve(session, account, day)
