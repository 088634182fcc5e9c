# --- models section for the bundle cart cache ---

from __future__ import annotations

from sqlalchemy import create_engine, String, Text, DateTime, func, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from datetime import datetime
from typing import Optional
import logging

from settings import BUNDLE_CACHE_DATABASE_URL

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------
# Engine / Session
# -------------------------------------------------------------------
def make_engine(url: Optional[str] = None) -> Engine:
    url = url or BUNDLE_CACHE_DATABASE_URL
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            # One shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=1800,
    )


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


# -------------------------------------------------------------------
# Models
# -------------------------------------------------------------------
class Base(DeclarativeBase):
    pass


class BundleCacheEntry(Base):
    """One row per store key; payload is the JSON-encoded product-id map."""
    __tablename__ = "bundle_cart_cache"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(engine)
    logger.info("Bundle cache tables ready")


def check_db_health(engine: Engine) -> dict:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return {"status": "healthy"}
    except Exception as e:
        logger.error(f"Bundle cache database health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}
