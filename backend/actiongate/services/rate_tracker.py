"""Per-tenant, per-action-type daily counters backing ``maxPerDay``.

The day key is computed once by the caller from the tenant's timezone and
treated as an opaque partition key here. Reservations are conditional
``UPDATE ... SET count = count + 1 WHERE count < :limit`` statements, so
concurrent callers racing for the last unit see exactly one success.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Tuple
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo

from sqlalchemy import update
from sqlalchemy.orm import Session

from actiongate.db.models.rate_counter import RateCounter
from actiongate.db.upsert import insert_ignore
from actiongate.errors import CapacityExceeded
from actiongate.observability.metrics import log_metric

logger = logging.getLogger(__name__)


def day_key_for(tz_name: str, now: datetime) -> date:
    """Calendar day of ``now`` in the tenant's timezone."""
    return now.astimezone(ZoneInfo(tz_name or "UTC")).date()


def window_for(tz_name: str, day: date) -> Tuple[datetime, datetime]:
    """UTC instants bounding ``day`` in the tenant's timezone (DST aware)."""
    zone = ZoneInfo(tz_name or "UTC")
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def reserve(
    db: Session,
    tenant_id: UUID,
    action_type: str,
    day: date,
    limit: int | None,
    *,
    tz_name: str = "UTC",
) -> None:
    """Atomically take one unit of capacity and commit it.

    Raises CapacityExceeded when the day's limit is already used up.
    """
    try:
        _ensure_counter(db, tenant_id, action_type, day, tz_name)
        stmt = update(RateCounter).where(*_key(tenant_id, action_type, day))
        if limit is not None:
            stmt = stmt.where(RateCounter.count < limit)
        result = db.execute(
            stmt.values(count=RateCounter.count + 1).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            log_metric("rate.reserve.rejected", 1, metadata={"action_type": action_type})
            raise CapacityExceeded(f"Daily limit of {limit} reached for {action_type}")
        db.commit()
    except CapacityExceeded:
        raise
    except Exception:
        db.rollback()
        raise
    logger.debug("Reserved %s capacity for tenant %s on %s", action_type, tenant_id, day)


def try_reserve(
    db: Session,
    tenant_id: UUID,
    action_type: str,
    day: date,
    limit: int | None,
    *,
    tz_name: str = "UTC",
) -> bool:
    try:
        reserve(db, tenant_id, action_type, day, limit, tz_name=tz_name)
    except CapacityExceeded:
        return False
    return True


def release(db: Session, tenant_id: UUID, action_type: str, day: date) -> None:
    """Give back one reserved unit; staged in the caller's unit of work."""
    db.execute(
        update(RateCounter)
        .where(*_key(tenant_id, action_type, day), RateCounter.count > 0)
        .values(count=RateCounter.count - 1)
        .execution_options(synchronize_session=False)
    )


def record_usage(
    db: Session,
    tenant_id: UUID,
    action_type: str,
    day: date,
    *,
    tz_name: str = "UTC",
) -> None:
    """Count a human-approved dispatch; staged in the caller's unit of work."""
    _ensure_counter(db, tenant_id, action_type, day, tz_name)
    db.execute(
        update(RateCounter)
        .where(*_key(tenant_id, action_type, day))
        .values(count=RateCounter.count + 1)
        .execution_options(synchronize_session=False)
    )


def current_count(db: Session, tenant_id: UUID, action_type: str, day: date) -> int:
    value = (
        db.query(RateCounter.count)
        .filter(*_key(tenant_id, action_type, day))
        .scalar()
    )
    return int(value or 0)


def _ensure_counter(db: Session, tenant_id: UUID, action_type: str, day: date, tz_name: str) -> None:
    window_start, window_end = window_for(tz_name, day)
    insert_ignore(
        db,
        RateCounter,
        values={
            "id": uuid4(),
            "tenant_id": tenant_id,
            "action_type": action_type,
            "day": day,
            "count": 0,
            "window_start": window_start,
            "window_end": window_end,
        },
        conflict_columns=["tenant_id", "action_type", "day"],
    )


def _key(tenant_id: UUID, action_type: str, day: date):
    return (
        RateCounter.tenant_id == tenant_id,
        RateCounter.action_type == action_type,
        RateCounter.day == day,
    )
