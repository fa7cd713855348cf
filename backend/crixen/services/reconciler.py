"""WebhookReconciler: turns provider payment callbacks into tier grants.

Delivery is at-least-once and unordered, so the same success callback
arrives more than once and sometimes concurrently. The order's conditional
``pending -> paid`` UPDATE is the only gate: exactly one delivery wins it
and performs the grant, every other delivery acknowledges as already paid.

Side effects run strictly in this order, and the HTTP acknowledgment is
only sent once the grant has committed:

    mark paid -> derive tier -> grant tier/expiry -> ticket -> email/metrics

A crash between "mark paid" and "grant" leaves a paid order with no ticket;
the daily grant-recovery pass replays those.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError

from crixen.core.exceptions import AmountMismatchError, OrderNotFoundError
from crixen.db.models.order import ORDER_PAID, Order
from crixen.domain.entitlements import Tier
from crixen.domain.tiers import parse_amount, tier_for_amount
from crixen.domain.webhooks import HotPayWebhook, ParsedWebhook, parse_webhook
from crixen.metrics.cloudwatch import emit_business_event
from crixen.notifications.email import PAYMENT_CONFIRMED, EmailNotifier
from crixen.services.order_ledger import OrderLedger
from crixen.services.subscriptions import SubscriptionStore
from crixen.services.webhook_signatures import WebhookSignatureVerifier

logger = structlog.get_logger(__name__)


class ReconcileOutcome(str, Enum):
    GRANTED = "granted"
    ALREADY_PAID = "already_paid"
    IGNORED = "ignored"  # provider reported a non-success status


@dataclass(frozen=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    provider: str
    order_id: int | None = None
    tier: Tier | None = None
    expires_at: datetime | None = None


class WebhookReconciler:
    def __init__(
        self,
        ledger: OrderLedger,
        subscriptions: SubscriptionStore,
        notifier: EmailNotifier,
        verifier: WebhookSignatureVerifier,
        subscription_days: int = 30,
    ):
        self.ledger = ledger
        self.subscriptions = subscriptions
        self.notifier = notifier
        self.verifier = verifier
        self.subscription_days = subscription_days

    async def reconcile(
        self,
        payload: Any,
        raw_body: bytes,
        headers: Mapping[str, str],
        now: datetime | None = None,
    ) -> ReconcileResult:
        """Process one webhook delivery.

        Raises:
            UnrecognizedPayloadError: body matches no provider schema.
            ConfigurationError / WebhookSignatureError: signature cannot be verified.
            OrderNotFoundError: success callback for a memo we never issued.
            AmountMismatchError: success callback amount differs from the order.
        """
        webhook = parse_webhook(payload)
        self.verifier.verify(webhook, raw_body, headers)

        provider = webhook.provider.value
        token = webhook.correlation_token
        log = logger.bind(provider=provider, memo=token, status=webhook.status)

        if not webhook.is_success:
            log.info("webhook_non_success_ignored")
            return ReconcileResult(outcome=ReconcileOutcome.IGNORED, provider=provider)

        order = await self.ledger.find_by_memo(token)
        if order is None:
            log.error("webhook_order_not_found")
            raise OrderNotFoundError(token)

        log = log.bind(order_id=order.id, user_id=order.user_id)

        if order.status == ORDER_PAID:
            log.info("webhook_duplicate_already_paid")
            return ReconcileResult(outcome=ReconcileOutcome.ALREADY_PAID, provider=provider, order_id=order.id)

        self._check_amount(webhook, order, log)

        now = now or datetime.now(UTC)
        if not await self.ledger.mark_paid(order.id, now):
            # A concurrent delivery won the transition.
            log.info("webhook_lost_paid_race")
            return ReconcileResult(outcome=ReconcileOutcome.ALREADY_PAID, provider=provider, order_id=order.id)

        log.info("order_paid")

        tier = tier_for_amount(order.amount)
        expires_at = now + timedelta(days=self.subscription_days)
        if not await self.subscriptions.grant(order.user_id, tier, expires_at):
            log.error("tier_grant_user_missing", tier=tier.value)
            raise RuntimeError(f"Tier grant failed: user {order.user_id} not found")

        log.info("tier_granted", tier=tier.value, expires_at=expires_at.isoformat())

        await self._write_ticket(order, provider, tier, now, expires_at, log)
        await self._send_confirmation(order, tier, expires_at, log)
        await emit_business_event("subscription_granted", provider=provider, tier=tier.value)

        return ReconcileResult(
            outcome=ReconcileOutcome.GRANTED,
            provider=provider,
            order_id=order.id,
            tier=tier,
            expires_at=expires_at,
        )

    @staticmethod
    def _check_amount(webhook: ParsedWebhook, order: Order, log) -> None:
        if not isinstance(webhook, HotPayWebhook) or webhook.amount is None:
            return
        try:
            reported = parse_amount(webhook.amount)
        except ValueError:
            reported = None
        if reported is None or reported != Decimal(order.amount):
            log.error("webhook_amount_mismatch", reported=str(webhook.amount), expected=order.amount)
            raise AmountMismatchError("Payment amount does not match the order")

    async def _write_ticket(self, order: Order, provider: str, tier: Tier, now: datetime, expires_at: datetime, log) -> None:
        """Audit write. The grant has already committed, so a failure here is logged, not raised."""
        ticket_data = {
            "description": f"{tier.value.capitalize()} subscription ({self.subscription_days} days)",
            "provider": provider,
            "tier": tier.value,
            "amount": order.amount,
            "item_id": order.item_id,
            "issued_at": now.isoformat(),
            "expires_at": expires_at.isoformat(),
        }
        try:
            await self.ledger.append_ticket(order, ticket_data)
        except SQLAlchemyError as exc:
            log.error("ticket_write_failed", error=str(exc), error_type=type(exc).__name__)

    async def _send_confirmation(self, order: Order, tier: Tier, expires_at: datetime, log) -> None:
        try:
            user = await self.subscriptions.get_user(order.user_id)
            if user is None:
                return
            await self.notifier.send(
                user.email,
                PAYMENT_CONFIRMED,
                {"tier": tier.value, "expires_on": expires_at.strftime("%B %d, %Y")},
            )
        except Exception as exc:
            log.warning("payment_confirmation_email_failed", error=str(exc), error_type=type(exc).__name__)
