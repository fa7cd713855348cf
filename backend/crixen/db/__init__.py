"""Engine, session factory and Redis client."""

from crixen.db.base import Base, build_session_factory, close_db, get_session_factory, init_db
from crixen.db.redis import close_redis, get_redis, init_redis

__all__ = [
    "Base",
    "build_session_factory",
    "close_db",
    "close_redis",
    "get_redis",
    "get_session_factory",
    "init_db",
    "init_redis",
]
