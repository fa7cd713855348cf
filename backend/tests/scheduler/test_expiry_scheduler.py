"""Tests for the daily subscription sweep."""

from datetime import UTC, datetime, timedelta

import pytest

from crixen.domain.entitlements import Tier
from crixen.notifications.email import EXPIRY_NOTICE, EXPIRY_WARNING
from crixen.scheduler.expiry import ExpiryScheduler

pytestmark = pytest.mark.integration

NOW = datetime(2030, 6, 15, 9, 0, 0, tzinfo=UTC)


@pytest.fixture
def expiry(subscriptions, ledger, notifier):
    return ExpiryScheduler(subscriptions, ledger, notifier, warning_days=3, subscription_days=30)


# ============================================================================
# Warning pass
# ============================================================================


async def test_warning_sent_once(expiry, subscriptions, make_user, notifier):
    user = await make_user(tier="pro", expires_at=NOW + timedelta(days=2))

    first = await expiry.process_expiry_warnings(NOW)
    second = await expiry.process_expiry_warnings(NOW)

    assert first.warned == 1
    assert second.warned == 0
    assert notifier.kinds_for(user.email) == [EXPIRY_WARNING]
    assert notifier.sent[0][2]["days_left"] == 2
    assert (await subscriptions.get_user(user.id)).expiry_reminder_sent is True


async def test_warning_window_bounds(expiry, make_user, notifier):
    inside = await make_user(tier="pro", expires_at=NOW + timedelta(days=3))
    outside = await make_user(tier="pro", expires_at=NOW + timedelta(days=3, seconds=1))
    starter = await make_user(tier="starter", expires_at=NOW + timedelta(days=1))
    legacy = await make_user(tier="free", expires_at=NOW + timedelta(days=1))
    reminded = await make_user(tier="agency", expires_at=NOW + timedelta(days=1), reminder_sent=True)

    await expiry.process_expiry_warnings(NOW)

    warned = {to for to, _, _ in notifier.sent}
    assert warned == {inside.email}
    assert outside.email not in warned
    assert starter.email not in warned
    assert legacy.email not in warned
    assert reminded.email not in warned


async def test_failed_warning_is_retried_next_run(expiry, subscriptions, make_user, notifier):
    user = await make_user(tier="pro", expires_at=NOW + timedelta(days=1), email="flaky@example.com")
    notifier.fail_for.add("flaky@example.com")

    report = await expiry.process_expiry_warnings(NOW)
    assert report.warnings_pending == 1
    assert (await subscriptions.get_user(user.id)).expiry_reminder_sent is False

    notifier.fail_for.clear()
    report = await expiry.process_expiry_warnings(NOW)
    assert report.warned == 1
    assert (await subscriptions.get_user(user.id)).expiry_reminder_sent is True


async def test_warning_error_does_not_abort_batch(expiry, make_user, notifier):
    await make_user(tier="pro", expires_at=NOW + timedelta(days=1), email="boom@example.com")
    ok = await make_user(tier="pro", expires_at=NOW + timedelta(days=2))
    notifier.raise_for.add("boom@example.com")

    report = await expiry.process_expiry_warnings(NOW)

    assert report.errors == 1
    assert report.warned == 1
    assert notifier.kinds_for(ok.email) == [EXPIRY_WARNING]


# ============================================================================
# Downgrade pass
# ============================================================================


async def test_expired_user_downgraded(expiry, subscriptions, make_user, notifier):
    user = await make_user(tier="pro", expires_at=NOW - timedelta(hours=1), reminder_sent=True)

    report = await expiry.process_expired_subscriptions(NOW)

    assert report.downgraded == 1
    refreshed = await subscriptions.get_user(user.id)
    assert refreshed.tier == "starter"
    assert refreshed.subscription_expires_at is None
    assert refreshed.expiry_reminder_sent is False
    assert notifier.kinds_for(user.email) == [EXPIRY_NOTICE]
    assert notifier.sent[0][2] == {"tier": "pro"}


async def test_downgrade_sweep_is_idempotent(expiry, make_user, notifier):
    await make_user(tier="agency", expires_at=NOW - timedelta(days=1))

    first = await expiry.process_expired_subscriptions(NOW)
    second = await expiry.process_expired_subscriptions(NOW)

    assert first.downgraded == 1
    assert second.downgraded == 0
    assert len(notifier.sent) == 1


async def test_downgrade_survives_notice_failure(expiry, subscriptions, make_user, notifier):
    user = await make_user(tier="pro", expires_at=NOW - timedelta(days=1), email="down@example.com")
    notifier.raise_for.add("down@example.com")

    report = await expiry.process_expired_subscriptions(NOW)

    assert report.downgraded == 1
    assert report.errors == 0
    assert (await subscriptions.get_user(user.id)).tier == "starter"


async def test_unexpired_user_untouched(expiry, subscriptions, make_user):
    user = await make_user(tier="pro", expires_at=NOW + timedelta(days=10))

    await expiry.process_expired_subscriptions(NOW)

    assert (await subscriptions.get_user(user.id)).tier == "pro"


async def test_renewal_between_read_and_write_wins(subscriptions, make_user):
    user = await make_user(tier="pro", expires_at=NOW - timedelta(days=1))
    stale_rows = await subscriptions.list_expired(NOW)
    assert [u.id for u in stale_rows] == [user.id]

    # A webhook grant lands after the sweep read the row
    await subscriptions.grant(user.id, Tier.AGENCY, NOW + timedelta(days=30))

    assert await subscriptions.downgrade_if_expired(user.id, NOW) is False
    refreshed = await subscriptions.get_user(user.id)
    assert refreshed.tier == "agency"
    assert refreshed.subscription_expires_at == NOW + timedelta(days=30)


# ============================================================================
# Grant recovery and stale pending
# ============================================================================


async def test_recover_missing_grant(expiry, ledger, subscriptions, make_user):
    user = await make_user()
    order = await ledger.create_order(user.id, "memo-orphan", "100.00", None, "hot_pay")
    paid_at = NOW - timedelta(hours=1)
    await ledger.mark_paid(order.id, paid_at)

    report = await expiry.recover_missing_grants(NOW)

    assert report.recovered == 1
    refreshed = await subscriptions.get_user(user.id)
    assert refreshed.tier == "agency"
    assert refreshed.subscription_expires_at == paid_at + timedelta(days=30)
    assert await ledger.count_tickets(order.id) == 1

    again = await expiry.recover_missing_grants(NOW)
    assert again.recovered == 0


async def test_recovery_skips_orders_within_grace(expiry, ledger, make_user):
    user = await make_user()
    order = await ledger.create_order(user.id, "memo-fresh", "10.00", None, "hot_pay")
    await ledger.mark_paid(order.id, NOW - timedelta(minutes=5))

    report = await expiry.recover_missing_grants(NOW)

    assert report.recovered == 0
    assert await ledger.count_tickets(order.id) == 0


async def test_recovery_never_shortens_expiry(expiry, ledger, subscriptions, make_user):
    later = NOW + timedelta(days=60)
    user = await make_user(tier="pro", expires_at=later)
    order = await ledger.create_order(user.id, "memo-old", "10.00", None, "hot_pay")
    await ledger.mark_paid(order.id, NOW - timedelta(days=1))

    await expiry.recover_missing_grants(NOW)

    refreshed = await subscriptions.get_user(user.id)
    assert refreshed.subscription_expires_at == later
    assert await ledger.count_tickets(order.id) == 1


async def test_recovery_applies_upgrade_within_longer_term(expiry, ledger, subscriptions, make_user):
    current_end = NOW + timedelta(days=45)
    user = await make_user(tier="pro", expires_at=current_end, reminder_sent=True)
    order = await ledger.create_order(user.id, "memo-upgrade", "100.00", None, "hot_pay")
    await ledger.mark_paid(order.id, NOW - timedelta(days=1))

    report = await expiry.recover_missing_grants(NOW)

    assert report.recovered == 1
    refreshed = await subscriptions.get_user(user.id)
    assert refreshed.tier == "agency"
    assert refreshed.subscription_expires_at == current_end
    assert refreshed.expiry_reminder_sent is True
    assert await ledger.count_tickets(order.id) == 1


async def test_recovery_keeps_higher_tier_with_longer_term(expiry, ledger, subscriptions, make_user):
    current_end = NOW + timedelta(days=45)
    user = await make_user(tier="agency", expires_at=current_end)
    order = await ledger.create_order(user.id, "memo-lower", "10.00", None, "hot_pay")
    await ledger.mark_paid(order.id, NOW - timedelta(days=1))

    await expiry.recover_missing_grants(NOW)

    refreshed = await subscriptions.get_user(user.id)
    assert refreshed.tier == "agency"
    assert refreshed.subscription_expires_at == current_end


async def test_run_daily_check_reports_all_passes(expiry, ledger, make_user):
    await make_user(tier="pro", expires_at=NOW + timedelta(days=1))
    await make_user(tier="pro", expires_at=NOW - timedelta(days=1))
    buyer = await make_user()
    await ledger.create_order(buyer.id, "abandoned", "10.00", None, "hot_pay", now=NOW - timedelta(days=30))

    report = await expiry.run_daily_check(NOW)

    assert report.warned == 1
    assert report.downgraded == 1
    assert report.stale_pending == 1
    assert report.errors == 0
