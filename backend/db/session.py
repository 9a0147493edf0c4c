"""
CarrierSync Database Session Management

Async SQLAlchemy engine and session factory.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from core.config import get_settings

settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_size=20,
    max_overflow=10,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
    pass


def on_rollback(db: AsyncSession, callback) -> None:
    """Run `callback()` after each real rollback of the session's transaction."""
    event.listen(db.sync_session, "after_rollback", lambda session: callback())
