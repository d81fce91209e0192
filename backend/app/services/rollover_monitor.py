"""
Rollover Monitor.

Keeps the last rollover report and the last fully successful run in Redis so
operators (and the /cron/status endpoint) can see whether the nightly job is
healthy. Monitor failures never fail the rollover itself.
"""

import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

LAST_REPORT_KEY = "ledger:rollover:last_report"
LAST_SUCCESS_KEY = "ledger:rollover:last_success"
REPORT_TTL_SECONDS = 30 * 24 * 3600


class RolloverMonitor:

    def __init__(self, redis_client):
        self.redis = redis_client

    async def record(self, report: Dict[str, Any]) -> None:
        """Store the report; also bump last_success when both phases succeeded."""
        try:
            await self.redis.set(LAST_REPORT_KEY, json.dumps(report), ex=REPORT_TTL_SECONDS)
            if report.get("ok"):
                await self.redis.set(LAST_SUCCESS_KEY, report["finished_at"], ex=REPORT_TTL_SECONDS)
        except (redis.RedisError, OSError) as e:
            logger.error("Could not record rollover report for %s: %s", report.get("reference_date"), e)

    async def last_report(self) -> Optional[Dict[str, Any]]:
        raw = await self.redis.get(LAST_REPORT_KEY)
        return json.loads(raw) if raw else None

    async def last_success(self) -> Optional[str]:
        return await self.redis.get(LAST_SUCCESS_KEY)
