"""SubscriptionStore: tier and expiry mutations on the users table.

The webhook grant path and the daily expiry sweep both write here. Each
write is a single conditional UPDATE evaluated by the database, never a
read-modify-write in Python, so a grant landing mid-sweep is not lost.
"""

from datetime import datetime, timedelta

from sqlalchemy import case, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crixen.db.models.user import User
from crixen.domain.entitlements import UNPAID_TIER_VALUES, Tier, tier_values_below


class SubscriptionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_user(self, user_id: int) -> User | None:
        async with self.session_factory() as session:
            result = await session.execute(select(User).where(User.id == user_id))
            return result.scalar_one_or_none()

    async def grant(self, user_id: int, tier: Tier, expires_at: datetime) -> bool:
        """Set tier and expiry and re-arm the expiry reminder in one statement."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(User)
                .where(User.id == user_id)
                .values(tier=tier.value, subscription_expires_at=expires_at, expiry_reminder_sent=False)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def extend_grant(self, user_id: int, tier: Tier, expires_at: datetime) -> bool:
        """Replay an interrupted grant.

        Applies when it moves the expiry forward or raises the tier. The
        stored expiry becomes the later of the two, so a term granted later
        is never shortened. Returns False when the user already holds an
        equal or higher tier for at least as long.
        """
        moves_forward = or_(
            User.subscription_expires_at.is_(None),
            User.subscription_expires_at < expires_at,
        )
        upgrades = User.tier.in_(tier_values_below(tier))
        async with self.session_factory() as session:
            result = await session.execute(
                update(User)
                .where(User.id == user_id, or_(moves_forward, upgrades))
                .values(
                    tier=tier.value,
                    subscription_expires_at=case((moves_forward, expires_at), else_=User.subscription_expires_at),
                    expiry_reminder_sent=case((moves_forward, False), else_=User.expiry_reminder_sent),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def list_expiring(self, now: datetime, window: timedelta) -> list[User]:
        """Paid users expiring in ``(now, now + window]`` who have not been reminded."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(User)
                .where(
                    User.subscription_expires_at.is_not(None),
                    User.subscription_expires_at > now,
                    User.subscription_expires_at <= now + window,
                    User.expiry_reminder_sent.is_(False),
                    User.tier.not_in(UNPAID_TIER_VALUES),
                )
                .order_by(User.subscription_expires_at)
            )
            return list(result.scalars().all())

    async def list_expired(self, now: datetime) -> list[User]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(User)
                .where(
                    User.subscription_expires_at.is_not(None),
                    User.subscription_expires_at < now,
                    User.tier.not_in(UNPAID_TIER_VALUES),
                )
                .order_by(User.subscription_expires_at)
            )
            return list(result.scalars().all())

    async def mark_reminder_sent(self, user_id: int) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(User)
                .where(User.id == user_id, User.expiry_reminder_sent.is_(False))
                .values(expiry_reminder_sent=True)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def downgrade_if_expired(self, user_id: int, now: datetime) -> bool:
        """Drop a user to starter, but only if the term is still expired.

        Returns False when a grant renewed the user after the sweep read the
        row; the renewed term is left alone.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                update(User)
                .where(
                    User.id == user_id,
                    User.tier.not_in(UNPAID_TIER_VALUES),
                    User.subscription_expires_at.is_not(None),
                    User.subscription_expires_at < now,
                )
                .values(tier=Tier.STARTER.value, subscription_expires_at=None, expiry_reminder_sent=False)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1
