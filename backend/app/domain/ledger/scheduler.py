"""
Snapshot Rollover Scheduler.

Daily job in two independent, idempotent phases:
A. freeze yesterday's closing snapshot (and any earlier unfrozen day)
B. materialize today's opening snapshot from yesterday's closing

Each phase runs in its own atomic unit. A failure in one phase is logged and
recorded on the report but never stops the other. Wall-clock scheduling is
owned by the caller (cron endpoint, admin endpoint or scripts/run_rollover.py).
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from backend.app.core.calendar import BusinessCalendar
from backend.app.core.exceptions import InvalidBusinessDateError
from backend.app.db.atomic import atomic_unit
from backend.app.domain.ledger.balances import BalanceSet
from backend.app.domain.ledger.snapshots import SnapshotService
from backend.app.services.identity import SYSTEM_ACTOR
from backend.app.services.rollover_monitor import RolloverMonitor

logger = logging.getLogger(__name__)

# Phase outcomes
CREATED = "created"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class PhaseOutcome:
    snapshot_date: date
    status: str = SKIPPED
    error: Optional[str] = None
    # Earlier days frozen to close a gap (Phase A only)
    backfilled: List[date] = field(default_factory=list)


@dataclass
class RolloverReport:
    reference_date: date
    closing: PhaseOutcome
    opening: PhaseOutcome
    degraded: bool = False
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.closing.status != FAILED and self.opening.status != FAILED

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["reference_date"] = self.reference_date.isoformat()
        for phase in ("closing", "opening"):
            data[phase]["snapshot_date"] = data[phase]["snapshot_date"].isoformat()
            data[phase]["backfilled"] = [d.isoformat() for d in data[phase]["backfilled"]]
        data["ok"] = self.ok
        return data


class SnapshotRolloverScheduler:

    def __init__(
        self,
        calendar: BusinessCalendar,
        session_factory: Optional[async_sessionmaker] = None,
        monitor: Optional[RolloverMonitor] = None
    ):
        self.calendar = calendar
        self.session_factory = session_factory
        self.monitor = monitor

    async def run_daily_rollover(self, reference_date: Optional[date] = None) -> RolloverReport:
        """
        Run both phases for a reference date ("today" by default).

        Safe to re-run and safe to run concurrently with itself or with live
        mutations: every write defers to an existing row, and freezing a day
        waits for that day's in-flight mutations.

        Raises:
            InvalidBusinessDateError: If reference_date is after today. Running
                ahead would freeze the live day.
        """
        current = self.calendar.today()
        today = reference_date or current
        if today > current:
            raise InvalidBusinessDateError(
                f"Cannot run the rollover for {today.isoformat()}, a date after today ({current.isoformat()})",
                today,
                current,
            )
        yesterday = BusinessCalendar.previous_day(today)

        report = RolloverReport(
            reference_date=today,
            closing=PhaseOutcome(snapshot_date=yesterday),
            opening=PhaseOutcome(snapshot_date=today),
            started_at=self.calendar.now().isoformat(),
        )
        logger.info("Rollover started for %s (closing %s)", today, yesterday)

        await self._freeze_yesterday(report, today, yesterday)
        await self._open_today(report, today, yesterday)

        report.finished_at = self.calendar.now().isoformat()
        if report.ok:
            logger.info("Rollover for %s finished: closing=%s opening=%s",
                        today, report.closing.status, report.opening.status)
        else:
            logger.error("Rollover for %s finished with failures: closing=%s opening=%s",
                         today, report.closing.status, report.opening.status)

        if self.monitor is not None:
            await self.monitor.record(report.to_dict())
        return report

    async def _freeze_yesterday(self, report: RolloverReport, today: date, yesterday: date) -> None:
        """Phase A."""
        try:
            async with atomic_unit(self.session_factory) as unit:
                backfilled = await SnapshotService.freeze_through(unit, today)
                _, created = await SnapshotService.freeze_closing(unit, yesterday)

            report.closing.backfilled = [d for d in backfilled if d != yesterday]
            report.closing.status = CREATED if (created or yesterday in backfilled) else SKIPPED
            if report.closing.backfilled:
                logger.warning("Rollover froze %s earlier unfrozen day(s): %s",
                               len(report.closing.backfilled), report.closing.backfilled)
        except Exception as e:
            # Phase B must still run
            report.closing.status = FAILED
            report.closing.error = f"{type(e).__name__}: {e}"
            logger.exception("Rollover phase A failed for %s", yesterday)

    async def _open_today(self, report: RolloverReport, today: date, yesterday: date) -> None:
        """Phase B."""
        try:
            async with atomic_unit(self.session_factory) as unit:
                db = unit.session
                if await SnapshotService.get_opening(db, today) is not None:
                    logger.info("Opening snapshot already exists for %s, skipping", today)
                    return

                stamp = self.calendar.now().isoformat()
                closing = await SnapshotService.get_closing(db, yesterday)
                if closing is not None:
                    balances = BalanceSet.from_snapshot(closing)
                    notes = f"Auto-created from previous day ({yesterday}) closing balance (via rollover) at {stamp}"
                    degraded = False
                else:
                    balances = BalanceSet.zero()
                    notes = (
                        f"Auto-created with zero balance (no previous closing balance found for {yesterday})"
                        f" (via rollover) at {stamp}"
                    )
                    degraded = True

                _, created = await SnapshotService.ensure_opening(db, today, balances, notes, SYSTEM_ACTOR)

            if not created:
                # Concurrent writer got there first; its row stands
                logger.info("Opening snapshot for %s was created concurrently, keeping existing row", today)
                return

            report.opening.status = CREATED
            report.degraded = degraded
            if degraded:
                logger.warning("Rollover degraded: no closing snapshot for %s, opened %s with zero balances",
                               yesterday, today)
            else:
                logger.info("Opening snapshot for %s created from %s closing: cash=%s",
                            today, yesterday, balances.cash)
        except Exception as e:
            report.opening.status = FAILED
            report.opening.error = f"{type(e).__name__}: {e}"
            logger.exception("Rollover phase B failed for %s", today)

    async def backfill(self, start: date, end: date) -> List[RolloverReport]:
        """Run the rollover for every reference date in [start, end], oldest first."""
        if start > end:
            raise ValueError("backfill start must not be after end")
        current = self.calendar.today()
        if end > current:
            raise InvalidBusinessDateError(
                f"Cannot backfill through {end.isoformat()}, a date after today ({current.isoformat()})",
                end,
                current,
            )
        reports = []
        for reference in BusinessCalendar.days_between(start, end):
            reports.append(await self.run_daily_rollover(reference))
        return reports
