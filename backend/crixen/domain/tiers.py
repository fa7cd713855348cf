"""Tier derivation from a paid order amount."""

from decimal import Decimal, InvalidOperation

from crixen.domain.entitlements import Tier

AGENCY_THRESHOLD = Decimal("100")
PRO_THRESHOLD = Decimal("10")


def parse_amount(raw: str | Decimal | int | float) -> Decimal:
    """Parse a decimal amount string. Raises ValueError on garbage or negatives."""
    try:
        amount = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid amount: {raw!r}") from exc
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"Invalid amount: {raw!r}")
    return amount


def tier_for_amount(raw: str | Decimal) -> Tier:
    """Threshold bands: >= 100 agency, >= 10 pro.

    Anything below 10 also maps to PRO. No catalog plan is priced below 10,
    so that branch only fires for hand-made orders; it is kept rather than
    rejected so a paid order always grants something.
    """
    amount = parse_amount(raw)
    if amount >= AGENCY_THRESHOLD:
        return Tier.AGENCY
    if amount >= PRO_THRESHOLD:
        return Tier.PRO
    return Tier.PRO
