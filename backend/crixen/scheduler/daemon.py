"""DailyScheduler: wall-clock trigger for the subscription sweep.

Runs as an asyncio.Task inside the API process (started from the app
lifespan), not as a separate worker. Fires once per day at
``hour_utc:00`` UTC.

Several API replicas each run this loop. Before a run, a replica claims
``crixen:scheduler:daily:{date}`` with SET NX; the loser skips. Redis
failures are non-fatal: the sweep is idempotent, so running it twice is
preferable to not running it.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import structlog

from crixen.scheduler.expiry import ExpiryScheduler, SweepReport

logger = structlog.get_logger(__name__)

_CLAIM_KEY = "crixen:scheduler:daily:{date}"
_CLAIM_TTL = 86_400  # seconds


class DailyScheduler:
    """Usage:
        scheduler = DailyScheduler(expiry, redis, hour_utc=9)
        task = asyncio.create_task(scheduler.run())
        ...
        scheduler.stop()
        await task
    """

    def __init__(self, expiry: ExpiryScheduler, redis: object, hour_utc: int = 9, run_on_startup: bool = False) -> None:
        self.expiry = expiry
        self.redis = redis
        self.hour_utc = hour_utc
        self.run_on_startup = run_on_startup
        self.stop_event = asyncio.Event()

    def next_run_at(self, now: datetime | None = None) -> datetime:
        now = now or datetime.now(UTC)
        candidate = now.replace(hour=self.hour_utc, minute=0, second=0, microsecond=0)
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    async def run(self) -> None:
        logger.info("daily_scheduler_started", hour_utc=self.hour_utc)

        if self.run_on_startup:
            await self._run_guarded(claim=False)

        while not self.stop_event.is_set():
            now = datetime.now(UTC)
            delay = (self.next_run_at(now) - now).total_seconds()
            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=delay)
            except TimeoutError:
                await self._run_guarded(claim=True)

        logger.info("daily_scheduler_stopped")

    def stop(self) -> None:
        self.stop_event.set()

    async def _run_guarded(self, claim: bool) -> None:
        try:
            await self.run_once(claim=claim)
        except Exception as exc:
            logger.exception("daily_check_failed", error=str(exc))

    async def run_once(self, now: datetime | None = None, claim: bool = True) -> SweepReport | None:
        """Run the daily check once.

        Returns:
            The sweep report, or None when another replica already claimed today.
        """
        now = now or datetime.now(UTC)
        if claim and not await self._claim(now):
            logger.info("daily_check_claimed_elsewhere", date=now.date().isoformat())
            return None
        return await self.expiry.run_daily_check(now)

    async def _claim(self, now: datetime) -> bool:
        key = _CLAIM_KEY.format(date=now.date().isoformat())
        try:
            claimed = await self.redis.set(key, "1", nx=True, ex=_CLAIM_TTL)
        except Exception as exc:
            logger.warning("daily_check_claim_failed", error=str(exc))
            return True
        return bool(claimed)
