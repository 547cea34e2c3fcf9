"""Relational store connection and schema definitions."""

from __future__ import annotations

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
)
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from config.settings import get_settings
from src.core.logging import get_logger

log = get_logger(__name__)

metadata = MetaData()

# ── Tables ───────────────────────────────────────────────────────

end_user_subscriptions = Table(
    "end_user_subscriptions",
    metadata,
    Column("tenant_id", String, nullable=False),
    Column("public_key", String, nullable=False),
    Column("subject_id", String, nullable=False),
    Column("email", String, nullable=True),
    Column("plan", String, nullable=False, default="free"),
    Column("status", String, nullable=False, default="none"),
    Column("usage_count", Integer, nullable=False, default=0),
    Column("period_start", DateTime(timezone=True), nullable=True),
    Column("period_end", DateTime(timezone=True), nullable=True),
    Column("billing_period_end", DateTime(timezone=True), nullable=True),
    Column("customer_id", String, nullable=True),
    Column("subscription_id", String, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=True),
    PrimaryKeyConstraint("tenant_id", "public_key", "subject_id", name="pk_end_user_subscriptions"),
    Index("ix_end_user_subscriptions_tenant_subject", "tenant_id", "subject_id"),
)


# ── Engine ───────────────────────────────────────────────────────

_engine: AsyncEngine | None = None


async def get_engine() -> AsyncEngine:
    """Get or create the async database engine (singleton)."""
    global _engine  # noqa: PLW0603
    if _engine is None:
        settings = get_settings()
        db_url = settings.database_url.get_secret_value()
        kwargs: dict[str, object] = {"echo": False}
        if not db_url.startswith("sqlite"):
            kwargs.update(pool_size=10, max_overflow=20)
        _engine = create_async_engine(db_url, **kwargs)
        log.info("database_engine_created", host=db_url.split("@")[-1].split("?")[0])
    return _engine


async def init_schema(engine: AsyncEngine | None = None) -> None:
    """Create all tables."""
    engine = engine or await get_engine()

    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    log.info("schema_initialized")


async def close_engine() -> None:
    """Dispose the database engine."""
    global _engine  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        log.info("database_engine_closed")
