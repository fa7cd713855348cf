"""OrderLedger: persistent payment intents and the ticket audit trail.

Every state change is one conditional UPDATE whose rowcount decides who won,
so concurrent webhook deliveries for the same memo cannot both transition
an order.
"""

from datetime import UTC, datetime

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crixen.core.exceptions import DuplicateMemoError
from crixen.db.models.order import ORDER_PAID, ORDER_PENDING, Order
from crixen.db.models.ticket import Ticket

logger = structlog.get_logger(__name__)


class OrderLedger:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create_order(
        self,
        user_id: int,
        memo: str,
        amount: str,
        item_id: str | None,
        provider: str,
        now: datetime | None = None,
    ) -> Order:
        """Insert a pending order.

        Raises:
            DuplicateMemoError: ``memo`` already belongs to another order.
        """
        now = now or datetime.now(UTC)
        async with self.session_factory() as session:
            order = Order(
                user_id=user_id,
                memo=memo,
                provider=provider,
                amount=amount,
                item_id=item_id,
                status=ORDER_PENDING,
                created_at=now,
            )
            session.add(order)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                existing = await session.execute(select(Order.id).where(Order.memo == memo))
                if existing.scalar_one_or_none() is not None:
                    logger.error("order_memo_collision", memo=memo, provider=provider, user_id=user_id)
                    raise DuplicateMemoError(memo)
                raise

            await session.refresh(order)

        logger.info("order_created", order_id=order.id, provider=provider, amount=amount, user_id=user_id)
        return order

    async def find_by_memo(self, memo: str) -> Order | None:
        async with self.session_factory() as session:
            result = await session.execute(select(Order).where(Order.memo == memo))
            return result.scalar_one_or_none()

    async def mark_paid(self, order_id: int, now: datetime | None = None) -> bool:
        """Transition ``pending -> paid``.

        Returns:
            True if this call made the transition. False if the order was
            already paid (or does not exist), in which case the caller must
            not grant anything.
        """
        now = now or datetime.now(UTC)
        async with self.session_factory() as session:
            result = await session.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == ORDER_PENDING)
                .values(status=ORDER_PAID, paid_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def append_ticket(self, order: Order, ticket_data: dict) -> Ticket:
        async with self.session_factory() as session:
            ticket = Ticket(user_id=order.user_id, order_id=order.id, ticket_data=ticket_data)
            session.add(ticket)
            await session.commit()
            await session.refresh(ticket)
            return ticket

    async def count_tickets(self, order_id: int) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(func.count(Ticket.id)).where(Ticket.order_id == order_id))
            return result.scalar_one()

    async def list_paid_without_ticket(self, paid_before: datetime, limit: int = 100) -> list[Order]:
        """Paid orders with no ticket, paid before ``paid_before``.

        These are grants interrupted between the paid transition and the
        audit write.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(Order)
                .outerjoin(Ticket, Ticket.order_id == Order.id)
                .where(
                    Order.status == ORDER_PAID,
                    Order.paid_at.is_not(None),
                    Order.paid_at < paid_before,
                    Ticket.id.is_(None),
                )
                .order_by(Order.paid_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def count_stale_pending(self, created_before: datetime) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(Order.id)).where(
                    Order.status == ORDER_PENDING,
                    Order.created_at < created_before,
                )
            )
            return result.scalar_one()
