"""
Rollover API Endpoints.

External cron trigger (shared secret) and admin-triggered rollover/backfill.
The core does not own wall-clock scheduling: something outside calls these
once per operating day.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker

from backend.app.core.calendar import BusinessCalendar, get_calendar
from backend.app.core.config import settings
from backend.app.core.guards import require_admin
from backend.app.core.redis_client import get_redis
from backend.app.db.atomic import atomic_unit
from backend.app.db.session import get_session_factory
from backend.app.domain.ledger.scheduler import SnapshotRolloverScheduler
from backend.app.schemas.ledger import BackfillRequest, RolloverReportResponse, RolloverRequest
from backend.app.services.audit import AuditAction, log_event
from backend.app.services.rollover_monitor import RolloverMonitor

logger = logging.getLogger(__name__)

cron_router = APIRouter(prefix="/cron", tags=["Cron"])
admin_router = APIRouter(prefix="/admin/ledger", tags=["Admin - Ledger"])

MAX_BACKFILL_DAYS = 366


async def get_rollover_monitor(redis_client=Depends(get_redis)) -> RolloverMonitor:
    return RolloverMonitor(redis_client)


async def get_scheduler(
    calendar: BusinessCalendar = Depends(get_calendar),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    monitor: RolloverMonitor = Depends(get_rollover_monitor)
) -> SnapshotRolloverScheduler:
    return SnapshotRolloverScheduler(calendar, session_factory=session_factory, monitor=monitor)


def verify_cron_secret(
    x_cron_secret: Optional[str] = Header(None),
    token: Optional[str] = Query(None)
) -> None:
    """
    Accept the shared secret from the X-Cron-Secret header or ?token=.

    When no secret is configured the trigger is open.
    """
    expected = settings.cron_secret_token
    if expected and (x_cron_secret or token) != expected:
        logger.warning("Unauthorized cron trigger attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: Invalid cron secret token"
        )


async def _audit_rollover(session_factory, admin: Optional[dict], reports) -> None:
    async with atomic_unit(session_factory) as unit:
        await log_event(
            unit.session,
            action=AuditAction.ROLLOVER_TRIGGERED,
            actor_id=admin["user_id"] if admin else None,
            actor_username=admin.get("sub") if admin else "cron",
            metadata={
                "reference_dates": [r.reference_date.isoformat() for r in reports],
                "ok": all(r.ok for r in reports),
            },
        )


@cron_router.api_route("/trigger", methods=["GET", "POST"], response_model=RolloverReportResponse)
async def cron_trigger(
    _: None = Depends(verify_cron_secret),
    scheduler: SnapshotRolloverScheduler = Depends(get_scheduler),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    Run today's rollover. GET and POST are both accepted (hosted cron services
    commonly issue GET). Responds 500 with the report if a phase failed.
    """
    logger.info("Cron rollover trigger received")
    report = await scheduler.run_daily_rollover()
    await _audit_rollover(session_factory, None, [report])

    if not report.ok:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=RolloverReportResponse.model_validate(report).model_dump(mode="json"),
        )
    return RolloverReportResponse.model_validate(report)


@cron_router.get("/status")
async def cron_status(
    monitor: RolloverMonitor = Depends(get_rollover_monitor),
    calendar: BusinessCalendar = Depends(get_calendar)
):
    """
    Last recorded rollover report and last fully successful run.
    """
    return {
        "timezone": calendar.timezone_name,
        "today": calendar.today().isoformat(),
        "last_report": await monitor.last_report(),
        "last_success": await monitor.last_success(),
    }


@admin_router.post("/rollover", response_model=RolloverReportResponse)
async def trigger_rollover(
    request: Optional[RolloverRequest] = None,
    admin: dict = Depends(require_admin),
    scheduler: SnapshotRolloverScheduler = Depends(get_scheduler),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    Run the rollover on demand, optionally for a past reference date.
    """
    report = await scheduler.run_daily_rollover(request.reference_date if request else None)
    await _audit_rollover(session_factory, admin, [report])
    return RolloverReportResponse.model_validate(report)


@admin_router.post("/rollover/backfill", response_model=List[RolloverReportResponse])
async def backfill_rollover(
    request: BackfillRequest,
    admin: dict = Depends(require_admin),
    scheduler: SnapshotRolloverScheduler = Depends(get_scheduler),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    Run the rollover for every reference date in [start, end], oldest first.
    """
    if request.start > request.end:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start must not be after end")
    if (request.end - request.start).days >= MAX_BACKFILL_DAYS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Backfill is limited to {MAX_BACKFILL_DAYS} days")

    reports = await scheduler.backfill(request.start, request.end)
    await _audit_rollover(session_factory, admin, reports)
    return [RolloverReportResponse.model_validate(report) for report in reports]
