"""Server-side plan catalog. Checkout amounts are always taken from here."""

from dataclasses import dataclass
from decimal import Decimal

from crixen.core.exceptions import InvalidPlanError
from crixen.domain.entitlements import Tier
from crixen.domain.tiers import parse_amount


@dataclass(frozen=True)
class Plan:
    plan_id: str
    name: str
    tier: Tier
    amount: str  # USD, two decimals

    @property
    def amount_decimal(self) -> Decimal:
        return Decimal(self.amount)


PLANS: dict[str, Plan] = {
    "pro": Plan(plan_id="pro", name="Pro", tier=Tier.PRO, amount="10.00"),
    "agency": Plan(plan_id="agency", name="Agency", tier=Tier.AGENCY, amount="100.00"),
}

DEFAULT_PLAN_ID = "pro"


def get_plan(plan_id: str | None) -> Plan:
    plan = PLANS.get((plan_id or "").strip().lower())
    if plan is None:
        raise InvalidPlanError(f"Unknown plan: {plan_id}")
    return plan


def plan_for_amount(raw_amount: str | None) -> Plan:
    """Resolve a client-sent amount to a catalog plan (default plan when absent)."""
    if raw_amount is None or str(raw_amount).strip() == "":
        return PLANS[DEFAULT_PLAN_ID]
    try:
        amount = parse_amount(raw_amount)
    except ValueError as exc:
        raise InvalidPlanError(str(exc)) from exc
    for plan in PLANS.values():
        if plan.amount_decimal == amount:
            return plan
    raise InvalidPlanError(f"No plan is priced at {raw_amount}")


def resolve_plan(plan_id: str, raw_amount: str) -> Plan:
    """Return the plan for ``plan_id`` if ``raw_amount`` matches its price."""
    plan = get_plan(plan_id)
    try:
        amount = parse_amount(raw_amount)
    except ValueError as exc:
        raise InvalidPlanError(str(exc)) from exc
    if amount != plan.amount_decimal:
        raise InvalidPlanError(f"Amount {raw_amount} does not match the {plan.name} plan price")
    return plan
