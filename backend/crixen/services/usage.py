"""Daily generation quota backed by Redis counters."""

from datetime import UTC, datetime, timedelta

from redis.asyncio import Redis

from crixen.domain.entitlements import Tier, limits_for, within_limit


class GenerationQuota:
    """Per-user daily generation counter with midnight UTC reset.

    Limits come from ``limits_for`` so the quota path and the project/strategy
    provisioning path read the same table.
    """

    def __init__(self, redis: Redis):
        self.redis = redis

    @staticmethod
    def _key(user_id: int, now: datetime) -> str:
        return f"crixen:usage:{user_id}:generations:{now.date().isoformat()}"

    async def increment(self, user_id: int, now: datetime | None = None) -> int:
        """Count one generation and return today's total.

        Args:
            user_id: User identifier
            now: Current time (for deterministic testing)
        """
        now = now or datetime.now(UTC)
        key = self._key(user_id, now)

        count = await self.redis.incr(key)

        ttl = await self.redis.ttl(key)
        if ttl == -1:
            await self.redis.expireat(key, int(self.next_reset(now).timestamp()))

        return count

    async def get(self, user_id: int, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        count = await self.redis.get(self._key(user_id, now))
        return int(count) if count else 0

    async def check(self, user_id: int, tier: str | Tier | None, now: datetime | None = None) -> tuple[bool, int, int]:
        """Check whether today's quota is used up.

        Returns:
            Tuple of (exceeded, used, limit). ``limit`` is -1 for unbounded tiers,
            which never exceed.
        """
        limit = limits_for(tier).daily_generations
        used = await self.get(user_id, now)
        return (not within_limit(limit, used), used, limit)

    @staticmethod
    def next_reset(now: datetime | None = None) -> datetime:
        """Next midnight UTC."""
        now = now or datetime.now(UTC)
        tomorrow = now.date() + timedelta(days=1)
        return datetime.combine(tomorrow, datetime.min.time(), tzinfo=UTC)
