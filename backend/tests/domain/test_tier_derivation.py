"""Tests for amount -> tier threshold bands."""

from decimal import Decimal

import pytest

from crixen.domain.entitlements import Tier
from crixen.domain.tiers import parse_amount, tier_for_amount

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("amount", "expected"),
    [
        ("10.00", Tier.PRO),
        ("9.99", Tier.PRO),  # below every plan price, still pro
        ("99.99", Tier.PRO),
        ("100.00", Tier.AGENCY),
        ("250", Tier.AGENCY),
        (Decimal("10"), Tier.PRO),
    ],
)
def test_tier_bands(amount, expected):
    assert tier_for_amount(amount) is expected


@pytest.mark.parametrize("raw", ["abc", "", "-1", "NaN", "Infinity"])
def test_parse_amount_rejects_garbage(raw):
    with pytest.raises(ValueError):
        parse_amount(raw)


def test_parse_amount_accepts_numbers():
    assert parse_amount(10) == Decimal("10")
    assert parse_amount(" 100.00 ") == Decimal("100.00")
