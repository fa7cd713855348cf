"""Process-scoped billing services, built once at startup.

The reconciler and scheduler receive their collaborators here instead of
reaching for module globals, so tests can assemble the same graph over a
SQLite session factory, fakeredis, and ``httpx.MockTransport``.
"""

from dataclasses import dataclass
from datetime import timedelta

import httpx
from fastapi import Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crixen.core.config import Settings
from crixen.domain.webhooks import PaymentProvider
from crixen.integrations.hot_pay import HotPayGateway
from crixen.integrations.pingpay import PingPayClient
from crixen.notifications.email import EmailNotifier
from crixen.scheduler.daemon import DailyScheduler
from crixen.scheduler.expiry import ExpiryScheduler
from crixen.services.order_ledger import OrderLedger
from crixen.services.payment_intents import PaymentIntentFactory
from crixen.services.reconciler import WebhookReconciler
from crixen.services.subscriptions import SubscriptionStore
from crixen.services.usage import GenerationQuota
from crixen.services.webhook_signatures import WebhookSignatureVerifier

WEBHOOK_PATH = "/api/billing/webhook"


@dataclass
class BillingContainer:
    ledger: OrderLedger
    subscriptions: SubscriptionStore
    notifier: EmailNotifier
    intents: PaymentIntentFactory
    reconciler: WebhookReconciler
    quota: GenerationQuota
    expiry: ExpiryScheduler
    scheduler: DailyScheduler

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        redis: Redis,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "BillingContainer":
        """Wire the billing services.

        Args:
            transport: Optional httpx transport shared by the Pingpay and email
                clients (tests pass an ``httpx.MockTransport``).
        """
        frontend = settings.frontend_url.rstrip("/")
        backend = settings.backend_url.rstrip("/")

        ledger = OrderLedger(session_factory)
        subscriptions = SubscriptionStore(session_factory)
        notifier = EmailNotifier(
            api_key=settings.resend_api_key,
            sender=settings.email_from,
            frontend_url=frontend,
            api_url=settings.resend_api_url,
            transport=transport,
        )

        hot_pay = HotPayGateway(
            base_url=settings.hot_pay_base_url,
            default_item_id=settings.hot_pay_item_id,
            notify_url=f"{backend}{WEBHOOK_PATH}" if backend else "",
            redirect_url=f"{frontend}/dashboard?payment=success",
        )
        pingpay = PingPayClient(
            api_url=settings.pingpay_api_url,
            api_key=settings.pingpay_api_key,
            success_url=f"{frontend}/dashboard?payment=success",
            cancel_url=f"{frontend}/billing?payment=canceled",
            asset_chain=settings.pingpay_asset_chain,
            asset_symbol=settings.pingpay_asset_symbol,
            asset_decimals=settings.pingpay_asset_decimals,
            timeout=settings.pingpay_timeout_seconds,
            transport=transport,
        )

        verifier = WebhookSignatureVerifier(
            {
                PaymentProvider.HOT_PAY: settings.hot_pay_webhook_secret,
                PaymentProvider.PINGPAY: settings.pingpay_webhook_secret,
            },
            require_secrets=not settings.debug,
        )

        reconciler = WebhookReconciler(
            ledger=ledger,
            subscriptions=subscriptions,
            notifier=notifier,
            verifier=verifier,
            subscription_days=settings.subscription_days,
        )
        expiry = ExpiryScheduler(
            subscriptions=subscriptions,
            ledger=ledger,
            notifier=notifier,
            warning_days=settings.expiry_warning_days,
            subscription_days=settings.subscription_days,
            recovery_grace=timedelta(minutes=settings.grant_recovery_grace_minutes),
            stale_pending_after=timedelta(days=settings.stale_pending_order_days),
        )

        return cls(
            ledger=ledger,
            subscriptions=subscriptions,
            notifier=notifier,
            intents=PaymentIntentFactory(ledger, hot_pay, pingpay),
            reconciler=reconciler,
            quota=GenerationQuota(redis),
            expiry=expiry,
            scheduler=DailyScheduler(
                expiry,
                redis,
                hour_utc=settings.scheduler_hour_utc,
                run_on_startup=settings.run_scheduler_on_startup,
            ),
        )


def get_container(request: Request) -> BillingContainer:
    """FastAPI dependency returning the container built in the app lifespan."""
    return request.app.state.billing
