"""Billing routes: checkout intents, the shared provider webhook, and status."""

import json
from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from crixen.core.auth import AuthUser, require_auth
from crixen.core.container import BillingContainer, get_container
from crixen.domain.entitlements import limits_for, normalize_tier

logger = structlog.get_logger(__name__)

router = APIRouter()


# ── Request / Response schemas ──────────────────────────────────────


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HotOrderRequest(_CamelModel):
    item_id: str | None = None
    amount: str | int | float | None = None


class HotOrderResponse(_CamelModel):
    url: str


class PingPaySessionRequest(_CamelModel):
    plan_id: str | None = None
    amount: str | int | float | None = None


class PingPaySessionResponse(_CamelModel):
    url: str
    session_id: str


class LimitsResponse(_CamelModel):
    daily_generations: int  # -1 = unlimited
    max_projects: int
    max_strategies_per_project: int


class BillingStatusResponse(_CamelModel):
    tier: str
    subscription_expires_at: datetime | None
    limits: LimitsResponse
    generations_used_today: int


# ── Endpoints ───────────────────────────────────────────────────────


@router.post("/billing/create-hot-order", response_model=HotOrderResponse)
async def create_hot_order(
    body: HotOrderRequest | None = None,
    user: AuthUser = Depends(require_auth),
    billing: BillingContainer = Depends(get_container),
):
    """Start a HOT Pay checkout. Defaults to the Pro plan when no amount is sent."""
    body = body or HotOrderRequest()
    amount = None if body.amount is None else str(body.amount)

    intent = await billing.intents.create_hot_order(user.user_id, item_id=body.item_id, amount=amount)
    logger.info("hot_order_created", user_id=user.user_id, order_id=intent.order_id, plan_id=intent.plan_id)
    return HotOrderResponse(url=intent.url)


@router.post("/billing/create-pingpay-session", response_model=PingPaySessionResponse)
async def create_pingpay_session(
    body: PingPaySessionRequest | None = None,
    user: AuthUser = Depends(require_auth),
    billing: BillingContainer = Depends(get_container),
):
    body = body or PingPaySessionRequest()
    if not body.plan_id or body.amount is None or str(body.amount).strip() == "":
        raise HTTPException(status_code=400, detail="planId and amount are required")

    intent = await billing.intents.create_pingpay_session(user.user_id, body.plan_id, str(body.amount))
    return PingPaySessionResponse(url=intent.url, session_id=intent.memo)


@router.post("/billing/webhook")
async def billing_webhook(request: Request, billing: BillingContainer = Depends(get_container)):
    """Shared callback endpoint for every payment provider.

    Returns 200 for grants, duplicates and non-success notifications. Any
    non-2xx makes the provider redeliver.
    """
    raw_body = await request.body()
    try:
        payload = json.loads(raw_body)
    except ValueError:
        logger.warning("webhook_invalid_json", size=len(raw_body))
        raise HTTPException(status_code=400, detail="Invalid payload")

    result = await billing.reconciler.reconcile(payload, raw_body, request.headers)
    return {"received": True, "outcome": result.outcome.value}


@router.get("/billing/status", response_model=BillingStatusResponse)
async def billing_status(
    user: AuthUser = Depends(require_auth),
    billing: BillingContainer = Depends(get_container),
):
    """Current tier, expiry, and the limits that tier grants."""
    record = await billing.subscriptions.get_user(user.user_id)
    if record is None:
        raise HTTPException(status_code=404, detail="User not found")

    tier = normalize_tier(record.tier)
    limits = limits_for(tier)
    used = await billing.quota.get(user.user_id)

    return BillingStatusResponse(
        tier=tier.value,
        subscription_expires_at=record.subscription_expires_at,
        limits=LimitsResponse(
            daily_generations=limits.daily_generations,
            max_projects=limits.max_projects,
            max_strategies_per_project=limits.max_strategies_per_project,
        ),
        generations_used_today=used,
    )
