"""PaymentIntentFactory: pending order + provider checkout URL.

Callers get the same ``CheckoutIntent`` shape whichever provider is used;
the difference is only in when the memo becomes known:

- HOT Pay: memo is minted here, so the order is written *before* the URL is
  handed back (a notify callback can race the HTTP response).
- Pingpay: memo is the provider's session id, so the order is written
  *after* the session call succeeds.
"""

from dataclasses import dataclass

import structlog

from crixen.domain.plans import plan_for_amount, resolve_plan
from crixen.integrations.hot_pay import HotPayGateway
from crixen.integrations.pingpay import PingPayClient
from crixen.services.order_ledger import OrderLedger

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CheckoutIntent:
    provider: str
    url: str
    memo: str
    order_id: int
    amount: str
    plan_id: str


class PaymentIntentFactory:
    def __init__(self, ledger: OrderLedger, hot_pay: HotPayGateway, pingpay: PingPayClient):
        self.ledger = ledger
        self.hot_pay = hot_pay
        self.pingpay = pingpay

    async def create_hot_order(
        self,
        user_id: int,
        item_id: str | None = None,
        amount: str | None = None,
    ) -> CheckoutIntent:
        """Create a HOT Pay redirect checkout.

        The stored amount is the catalog price, never the client's string.

        Raises:
            InvalidPlanError: ``amount`` matches no plan, or ``item_id`` is not the configured item.
            ConfigurationError: HOT Pay base URL, item id or callback URL missing.
            DuplicateMemoError: memo collision (retryable).
        """
        plan = plan_for_amount(amount)
        self.hot_pay.ensure_configured()
        resolved_item = self.hot_pay.resolve_item_id(item_id)

        memo = self.hot_pay.new_memo()
        url = self.hot_pay.build_checkout_url(resolved_item, plan.amount, memo)

        order = await self.ledger.create_order(
            user_id=user_id,
            memo=memo,
            amount=plan.amount,
            item_id=resolved_item,
            provider=self.hot_pay.provider_name,
        )

        return CheckoutIntent(
            provider=self.hot_pay.provider_name,
            url=url,
            memo=memo,
            order_id=order.id,
            amount=plan.amount,
            plan_id=plan.plan_id,
        )

    async def create_pingpay_session(self, user_id: int, plan_id: str, amount: str) -> CheckoutIntent:
        """Create a Pingpay hosted checkout session.

        Raises:
            InvalidPlanError: unknown plan, or amount differs from its price.
            ConfigurationError: Pingpay credentials missing.
            ProviderError: Pingpay rejected the request or answered unusably.
        """
        plan = resolve_plan(plan_id, amount)

        session = await self.pingpay.create_checkout_session(
            plan.amount_decimal,
            metadata={"userId": str(user_id), "planId": plan.plan_id, "tier": plan.tier.value},
        )

        order = await self.ledger.create_order(
            user_id=user_id,
            memo=session.session_id,
            amount=plan.amount,
            item_id=plan.plan_id,
            provider=self.pingpay.provider_name,
        )

        logger.info("pingpay_session_created", session_id=session.session_id, order_id=order.id, plan_id=plan.plan_id)
        return CheckoutIntent(
            provider=self.pingpay.provider_name,
            url=session.url,
            memo=session.session_id,
            order_id=order.id,
            amount=plan.amount,
            plan_id=plan.plan_id,
        )
