"""Tests for OrderLedger against SQLite."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from crixen.core.exceptions import DuplicateMemoError
from crixen.db.models.order import ORDER_PAID, ORDER_PENDING

pytestmark = pytest.mark.integration

NOW = datetime(2030, 6, 15, 12, 0, 0, tzinfo=UTC)


async def test_create_and_find_by_memo(ledger, make_user):
    user = await make_user()
    order = await ledger.create_order(user.id, "memo-1", "10.00", "item-1", "hot_pay", now=NOW)

    found = await ledger.find_by_memo("memo-1")
    assert found is not None
    assert found.id == order.id
    assert found.status == ORDER_PENDING
    assert found.amount == "10.00"
    assert found.paid_at is None


async def test_find_by_memo_missing(ledger):
    assert await ledger.find_by_memo("nope") is None


async def test_duplicate_memo_raises(ledger, make_user):
    user = await make_user()
    await ledger.create_order(user.id, "memo-dup", "10.00", None, "hot_pay")

    with pytest.raises(DuplicateMemoError) as exc_info:
        await ledger.create_order(user.id, "memo-dup", "100.00", None, "hot_pay")

    assert exc_info.value.status_code == 503
    assert exc_info.value.memo == "memo-dup"


async def test_mark_paid_transitions_once(ledger, make_user):
    user = await make_user()
    order = await ledger.create_order(user.id, "memo-2", "10.00", None, "hot_pay")

    assert await ledger.mark_paid(order.id, NOW) is True
    assert await ledger.mark_paid(order.id, NOW) is False

    found = await ledger.find_by_memo("memo-2")
    assert found.status == ORDER_PAID
    assert found.paid_at == NOW


async def test_concurrent_mark_paid_has_one_winner(ledger, make_user):
    user = await make_user()
    order = await ledger.create_order(user.id, "memo-race", "10.00", None, "pingpay")

    results = await asyncio.gather(*(ledger.mark_paid(order.id, NOW) for _ in range(5)))

    assert sorted(results) == [False, False, False, False, True]


async def test_mark_paid_unknown_order(ledger):
    assert await ledger.mark_paid(9999, NOW) is False


async def test_list_paid_without_ticket(ledger, make_user):
    user = await make_user()
    with_ticket = await ledger.create_order(user.id, "m-a", "10.00", None, "hot_pay")
    without_ticket = await ledger.create_order(user.id, "m-b", "10.00", None, "hot_pay")
    recent = await ledger.create_order(user.id, "m-c", "10.00", None, "hot_pay")
    await ledger.create_order(user.id, "m-d", "10.00", None, "hot_pay")  # still pending

    old = NOW - timedelta(hours=2)
    await ledger.mark_paid(with_ticket.id, old)
    await ledger.mark_paid(without_ticket.id, old)
    await ledger.mark_paid(recent.id, NOW)
    await ledger.append_ticket(with_ticket, {"tier": "pro"})

    orphans = await ledger.list_paid_without_ticket(NOW - timedelta(minutes=15))

    assert [o.id for o in orphans] == [without_ticket.id]


async def test_count_tickets(ledger, make_user):
    user = await make_user()
    order = await ledger.create_order(user.id, "m-t", "10.00", None, "hot_pay")
    assert await ledger.count_tickets(order.id) == 0
    await ledger.append_ticket(order, {"tier": "pro"})
    assert await ledger.count_tickets(order.id) == 1


async def test_count_stale_pending(ledger, make_user):
    user = await make_user()
    await ledger.create_order(user.id, "old-1", "10.00", None, "hot_pay", now=NOW - timedelta(days=10))
    await ledger.create_order(user.id, "old-2", "10.00", None, "hot_pay", now=NOW - timedelta(days=8))
    paid = await ledger.create_order(user.id, "old-3", "10.00", None, "hot_pay", now=NOW - timedelta(days=9))
    await ledger.create_order(user.id, "new-1", "10.00", None, "hot_pay", now=NOW - timedelta(days=1))
    await ledger.mark_paid(paid.id, NOW)

    assert await ledger.count_stale_pending(NOW - timedelta(days=7)) == 2
