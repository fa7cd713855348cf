"""Tier entitlement policy: the single mapping from tier to numeric limits.

Generation quota checks, project provisioning and strategy provisioning
all call ``limits_for`` so the three paths can never disagree.
"""

from dataclasses import dataclass
from enum import Enum

# -1 = unlimited (same convention as stored plan limits)
UNLIMITED = -1


class Tier(str, Enum):
    """Subscription tiers. ``free`` is a legacy alias of STARTER."""

    STARTER = "starter"
    PRO = "pro"
    AGENCY = "agency"


_LEGACY_ALIASES = {"free": Tier.STARTER}

# Lowest to highest
TIER_ORDER = (Tier.STARTER, Tier.PRO, Tier.AGENCY)


@dataclass(frozen=True)
class Limits:
    daily_generations: int
    max_projects: int
    max_strategies_per_project: int


TIER_LIMITS: dict[Tier, Limits] = {
    Tier.STARTER: Limits(daily_generations=10, max_projects=1, max_strategies_per_project=3),
    Tier.PRO: Limits(daily_generations=150, max_projects=3, max_strategies_per_project=10),
    Tier.AGENCY: Limits(daily_generations=UNLIMITED, max_projects=UNLIMITED, max_strategies_per_project=UNLIMITED),
}

# Raw column values that mean "not on a paid tier"
UNPAID_TIER_VALUES = ("starter", "free")


def tier_values_below(tier: Tier) -> tuple[str, ...]:
    """Raw column values ranked below ``tier``, legacy aliases included."""
    lower = TIER_ORDER[: TIER_ORDER.index(tier)]
    aliases = [alias for alias, target in _LEGACY_ALIASES.items() if target in lower]
    return tuple(t.value for t in lower) + tuple(aliases)


def normalize_tier(raw: str | Tier | None) -> Tier:
    """Map any stored tier value to a Tier.

    Legacy ``free``, empty and unknown values all normalize to STARTER.
    """
    if isinstance(raw, Tier):
        return raw
    value = (raw or "").strip().lower()
    if value in _LEGACY_ALIASES:
        return _LEGACY_ALIASES[value]
    try:
        return Tier(value)
    except ValueError:
        return Tier.STARTER


def limits_for(tier: str | Tier | None) -> Limits:
    return TIER_LIMITS[normalize_tier(tier)]


def within_limit(limit: int, current_count: int) -> bool:
    """True if one more unit fits under ``limit``."""
    if limit == UNLIMITED:
        return True
    return current_count < limit


def can_create_project(tier: str | Tier | None, current_count: int) -> bool:
    return within_limit(limits_for(tier).max_projects, current_count)


def can_add_strategy(tier: str | Tier | None, current_count: int) -> bool:
    return within_limit(limits_for(tier).max_strategies_per_project, current_count)
