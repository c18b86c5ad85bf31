from src.core.database.session import async_session, build_engine, build_sessionmaker, engine, get_db
from src.core.database.base import Base, TimestampedModel, BigIntPK

__all__ = [
    "async_session",
    "build_engine",
    "build_sessionmaker",
    "engine",
    "get_db",
    "Base",
    "TimestampedModel",
    "BigIntPK",
]
