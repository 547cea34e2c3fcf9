"""Usage/identity sync — denormalized end-user rows for tenant dashboards.

Signup inserts once and never resets counters. Status changes come from the
payment provider's webhook handler and overwrite status and billing period
unconditionally. Usage is incremented with a single conditional UPDATE so
concurrent calls cannot overshoot a tier limit.

Two periods live on each row. ``period_start``/``period_end`` is the usage
window and always follows UTC calendar months. ``billing_period_end`` is what
the provider reports for the subscription and never moves the usage window.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from src.core.constants import FREE_PLAN
from src.core.logging import get_logger
from src.core.types import SubscriptionRecord, SubscriptionStatus, UsageResult
from src.data.db import end_user_subscriptions as subs

log = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(dt: datetime | None) -> datetime | None:
    """SQLite hands datetimes back naive; every stored value is UTC."""
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def month_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Calendar-month window containing ``now``: [first of month, first of next)."""
    start = now.astimezone(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def _insert_for(conn: AsyncConnection) -> Callable[..., Any]:
    if conn.dialect.name == "postgresql":
        return postgresql.insert
    if conn.dialect.name == "sqlite":
        return sqlite.insert
    msg = f"unsupported database dialect: {conn.dialect.name}"
    raise RuntimeError(msg)


class SubscriptionSync:
    """Async relational storage for end-user subscription rows."""

    def __init__(self, engine: AsyncEngine, clock: Callable[[], datetime] = _utcnow) -> None:
        self._engine = engine
        self._clock = clock

    async def record_signup(
        self,
        tenant_id: str,
        public_key: str,
        subject_id: str,
        email: str | None = None,
        trial_days: int = 0,
    ) -> SubscriptionRecord:
        """Create the row on first signup. Repeats only fill a missing email."""
        now = self._clock()
        period_start, period_end = month_bounds(now)
        status = SubscriptionStatus.TRIALING if trial_days > 0 else SubscriptionStatus.NONE

        async with self._engine.begin() as conn:
            insert = _insert_for(conn)
            stmt = insert(subs).values(
                tenant_id=tenant_id,
                public_key=public_key,
                subject_id=subject_id,
                email=email,
                plan=FREE_PLAN,
                status=status.value,
                usage_count=0,
                period_start=period_start,
                period_end=period_end,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[subs.c.tenant_id, subs.c.public_key, subs.c.subject_id],
                set_={"email": func.coalesce(subs.c.email, stmt.excluded.email)},
            )
            await conn.execute(stmt)
            row = await self._fetch(conn, tenant_id, public_key, subject_id)

        log.info("end_user_signup_recorded", tenant_id=tenant_id, status=status.value)
        assert row is not None
        return row

    async def apply_status_change(
        self,
        tenant_id: str,
        public_key: str,
        subject_id: str,
        new_status: SubscriptionStatus,
        period_end: datetime | None,
        plan: str | None = None,
        customer_id: str | None = None,
        subscription_id: str | None = None,
    ) -> int:
        """Last-write-wins overwrite of status and billing period. Returns rows touched.

        Scoped to one publishable key, so a test-mode event never reaches the
        live row. The usage window and counter are left alone.
        """
        values: dict[str, Any] = {
            "status": new_status.value,
            "billing_period_end": period_end,
            "updated_at": self._clock(),
        }
        if plan is not None:
            values["plan"] = plan
        if customer_id is not None:
            values["customer_id"] = customer_id
        if subscription_id is not None:
            values["subscription_id"] = subscription_id

        async with self._engine.begin() as conn:
            result = await conn.execute(
                update(subs)
                .where(
                    subs.c.tenant_id == tenant_id,
                    subs.c.public_key == public_key,
                    subs.c.subject_id == subject_id,
                )
                .values(**values)
            )

        log.info(
            "subscription_status_applied",
            tenant_id=tenant_id,
            status=new_status.value,
            rows=result.rowcount,
        )
        return result.rowcount

    async def get_record(
        self, tenant_id: str, public_key: str, subject_id: str
    ) -> SubscriptionRecord | None:
        async with self._engine.begin() as conn:
            return await self._fetch(conn, tenant_id, public_key, subject_id)

    async def increment_usage(
        self,
        tenant_id: str,
        public_key: str,
        subject_id: str,
        limit: int | None,
    ) -> UsageResult:
        """Count one call against ``limit`` (None = unlimited).

        The usage window rolls over once the calendar month has moved on.
        A call at the limit is refused and leaves the counter unchanged.
        """
        now = self._clock()
        key = and_(
            subs.c.tenant_id == tenant_id,
            subs.c.public_key == public_key,
            subs.c.subject_id == subject_id,
        )

        async with self._engine.begin() as conn:
            record = await self._fetch(conn, tenant_id, public_key, subject_id)
            if record is None:
                msg = "end-user has no subscription record"
                raise LookupError(msg)

            period_start, period_end = month_bounds(now)
            if record.period_start is None or record.period_start < period_start:
                # Guarded on the old window so concurrent rollovers reset once.
                await conn.execute(
                    update(subs)
                    .where(
                        key,
                        or_(subs.c.period_start.is_(None), subs.c.period_start < period_start),
                    )
                    .values(usage_count=0, period_start=period_start, period_end=period_end)
                )
                log.info("usage_period_rolled_over", tenant_id=tenant_id)

            guard = key if limit is None else and_(key, subs.c.usage_count < limit)
            result = await conn.execute(
                update(subs)
                .where(guard)
                .values(usage_count=subs.c.usage_count + 1, updated_at=now)
                .returning(subs.c.usage_count, subs.c.plan)
            )
            bumped = result.first()
            if bumped is None:
                current = await self._fetch(conn, tenant_id, public_key, subject_id)
                assert current is not None
                log.info("usage_limit_reached", tenant_id=tenant_id, plan=current.plan)
                return UsageResult(False, current.usage_count, limit, current.plan)

        return UsageResult(True, bumped.usage_count, limit, bumped.plan)

    async def wipe_tenant(self, tenant_id: str) -> int:
        """Delete every row scoped to ``tenant_id``."""
        async with self._engine.begin() as conn:
            result = await conn.execute(delete(subs).where(subs.c.tenant_id == tenant_id))
        log.warning("tenant_data_wiped", tenant_id=tenant_id, rows=result.rowcount)
        return result.rowcount

    async def _fetch(
        self, conn: AsyncConnection, tenant_id: str, public_key: str, subject_id: str
    ) -> SubscriptionRecord | None:
        result = await conn.execute(
            select(subs).where(
                subs.c.tenant_id == tenant_id,
                subs.c.public_key == public_key,
                subs.c.subject_id == subject_id,
            )
        )
        row = result.mappings().first()
        return None if row is None else self._row_to_record(row)

    @staticmethod
    def _row_to_record(r: Mapping[str, Any]) -> SubscriptionRecord:
        """Convert a DB row mapping to a SubscriptionRecord."""
        try:
            status = SubscriptionStatus(r["status"])
        except ValueError:
            status = SubscriptionStatus.NONE

        return SubscriptionRecord(
            tenant_id=r["tenant_id"],
            public_key=r["public_key"],
            subject_id=r["subject_id"],
            email=r["email"],
            plan=r["plan"],
            status=status,
            usage_count=r["usage_count"],
            period_start=_aware(r["period_start"]),
            period_end=_aware(r["period_end"]),
            billing_period_end=_aware(r["billing_period_end"]),
            customer_id=r["customer_id"],
            subscription_id=r["subscription_id"],
            created_at=_aware(r["created_at"]),
            updated_at=_aware(r["updated_at"]),
        )
