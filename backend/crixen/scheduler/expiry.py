"""ExpiryScheduler: the daily subscription sweep.

Passes, in order:
  1. grant recovery: replay grants for paid orders that never got a ticket
  2. warning: remind users whose term ends within the warning window
  3. downgrade: drop expired users back to starter
  4. stale pending report: count abandoned pending orders

Each row is read, then written with its own conditional UPDATE. A failure
on one row is logged and the pass moves on to the next.

Warnings are at-least-once: the reminder flag is only set after the email
was accepted. Downgrades never wait on email: the notice is sent after the
downgrade has committed and its failure is only logged.
"""

import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog

from crixen.core.exceptions import SchedulerUserError
from crixen.db.models.order import Order
from crixen.db.models.user import User
from crixen.domain.entitlements import normalize_tier
from crixen.domain.tiers import tier_for_amount
from crixen.metrics.cloudwatch import emit_business_event
from crixen.notifications.email import EXPIRY_NOTICE, EXPIRY_WARNING, EmailNotifier
from crixen.services.order_ledger import OrderLedger
from crixen.services.subscriptions import SubscriptionStore

logger = structlog.get_logger(__name__)


@dataclass
class SweepReport:
    recovered: int = 0
    warned: int = 0
    warnings_pending: int = 0  # email not accepted, retried next run
    downgraded: int = 0
    stale_pending: int = 0
    errors: int = 0


class ExpiryScheduler:
    def __init__(
        self,
        subscriptions: SubscriptionStore,
        ledger: OrderLedger,
        notifier: EmailNotifier,
        warning_days: int = 3,
        subscription_days: int = 30,
        recovery_grace: timedelta = timedelta(minutes=15),
        stale_pending_after: timedelta = timedelta(days=7),
    ):
        self.subscriptions = subscriptions
        self.ledger = ledger
        self.notifier = notifier
        self.warning_window = timedelta(days=warning_days)
        self.subscription_days = subscription_days
        self.recovery_grace = recovery_grace
        self.stale_pending_after = stale_pending_after

    async def run_daily_check(self, now: datetime | None = None) -> SweepReport:
        now = now or datetime.now(UTC)
        report = SweepReport()

        logger.info("daily_check_started", now=now.isoformat())

        await self.recover_missing_grants(now, report)
        await self.process_expiry_warnings(now, report)
        await self.process_expired_subscriptions(now, report)
        report.stale_pending = await self.report_stale_pending(now)

        logger.info(
            "daily_check_completed",
            recovered=report.recovered,
            warned=report.warned,
            warnings_pending=report.warnings_pending,
            downgraded=report.downgraded,
            stale_pending=report.stale_pending,
            errors=report.errors,
        )
        return report

    async def process_expiry_warnings(self, now: datetime, report: SweepReport | None = None) -> SweepReport:
        report = report or SweepReport()
        users = await self.subscriptions.list_expiring(now, self.warning_window)
        logger.info("expiry_warning_candidates", count=len(users))

        for user in users:
            try:
                sent = await self._warn(user, now)
            except Exception as exc:
                self._record_failure(SchedulerUserError(user.id, "warning", exc), report)
                continue
            if sent:
                report.warned += 1
            else:
                report.warnings_pending += 1

        return report

    async def _warn(self, user: User, now: datetime) -> bool:
        days_left = max(1, math.ceil((user.subscription_expires_at - now) / timedelta(days=1)))
        sent = await self.notifier.send(
            user.email,
            EXPIRY_WARNING,
            {"tier": user.tier, "days_left": days_left},
        )
        if not sent:
            logger.warning("expiry_warning_not_delivered", user_id=user.id)
            return False

        await self.subscriptions.mark_reminder_sent(user.id)
        logger.info("expiry_warning_sent", user_id=user.id, days_left=days_left)
        return True

    async def process_expired_subscriptions(self, now: datetime, report: SweepReport | None = None) -> SweepReport:
        report = report or SweepReport()
        users = await self.subscriptions.list_expired(now)
        logger.info("expired_subscription_candidates", count=len(users))

        for user in users:
            previous_tier = normalize_tier(user.tier)
            try:
                downgraded = await self.subscriptions.downgrade_if_expired(user.id, now)
            except Exception as exc:
                self._record_failure(SchedulerUserError(user.id, "downgrade", exc), report)
                continue

            if not downgraded:
                # Renewed between the read and the write.
                logger.info("downgrade_skipped", user_id=user.id)
                continue

            report.downgraded += 1
            logger.info("subscription_downgraded", user_id=user.id, previous_tier=previous_tier.value)

            try:
                sent = await self.notifier.send(user.email, EXPIRY_NOTICE, {"tier": previous_tier.value})
            except Exception as exc:
                logger.warning("expiry_notice_failed", user_id=user.id, error=str(exc))
            else:
                if not sent:
                    logger.warning("expiry_notice_not_delivered", user_id=user.id)

            await emit_business_event("subscription_expired", tier=previous_tier.value)

        return report

    async def recover_missing_grants(self, now: datetime, report: SweepReport | None = None) -> SweepReport:
        """Replay grants for paid orders that have no ticket.

        Only orders paid longer ago than the grace window are touched, so a
        webhook still mid-flight is not raced. The expiry is derived from
        ``paid_at`` and only ever moves forward.
        """
        report = report or SweepReport()
        orders = await self.ledger.list_paid_without_ticket(now - self.recovery_grace)
        if orders:
            logger.warning("paid_orders_without_ticket", count=len(orders))

        for order in orders:
            try:
                await self._recover(order, now)
            except Exception as exc:
                self._record_failure(SchedulerUserError(order.user_id, "recovery", exc), report)
                continue
            report.recovered += 1

        return report

    async def _recover(self, order: Order, now: datetime) -> None:
        tier = tier_for_amount(order.amount)
        expires_at = order.paid_at + timedelta(days=self.subscription_days)
        applied = await self.subscriptions.extend_grant(order.user_id, tier, expires_at)

        await self.ledger.append_ticket(
            order,
            {
                "description": f"{tier.value.capitalize()} subscription ({self.subscription_days} days)",
                "provider": order.provider,
                "tier": tier.value,
                "amount": order.amount,
                "item_id": order.item_id,
                "issued_at": now.isoformat(),
                "expires_at": expires_at.isoformat(),
                "recovered": True,
            },
        )

        logger.info(
            "grant_recovered",
            order_id=order.id,
            user_id=order.user_id,
            tier=tier.value,
            grant_applied=applied,
        )
        await emit_business_event("grant_recovered", provider=order.provider, tier=tier.value)

    async def report_stale_pending(self, now: datetime) -> int:
        count = await self.ledger.count_stale_pending(now - self.stale_pending_after)
        if count:
            logger.warning("stale_pending_orders", count=count, older_than_days=self.stale_pending_after.days)
        return count

    @staticmethod
    def _record_failure(error: SchedulerUserError, report: SweepReport) -> None:
        report.errors += 1
        logger.error(
            "scheduler_user_failed",
            user_id=error.user_id,
            stage=error.stage,
            error=str(error.cause),
            error_type=type(error.cause).__name__,
        )
