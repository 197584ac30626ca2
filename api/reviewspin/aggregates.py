"""Per-venue daily play/win counters, derived from the participation ledger."""
import logging
from datetime import date, timedelta
from typing import List

from sqlalchemy import case, delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from .config import settings
from .errors import InvalidDateRange
from .models import DailyAggregate, Participation
from .schemas import DailyStat

logger = logging.getLogger(__name__)

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _dialect_insert(db: Session):
    dialect = db.get_bind().dialect.name
    try:
        return _INSERTS[dialect]
    except KeyError:
        raise RuntimeError(f"atomic upsert not supported on {dialect!r}")


def increment(db: Session, tenant_id: int, day: date, won: bool) -> None:
    """
    Create-or-increment the (tenant, day) row in one statement.

    Runs inside the caller's transaction; the caller commits. Never a
    read-modify-write from Python, so concurrent plays cannot lose updates.
    """
    stmt = _dialect_insert(db)(DailyAggregate).values(tenant_id=tenant_id, day=day, plays=1, wins=int(won))
    stmt = stmt.on_conflict_do_update(
        index_elements=["tenant_id", "day"],
        set_={
            "plays": DailyAggregate.plays + 1,
            "wins": DailyAggregate.wins + stmt.excluded.wins,
        },
    )
    db.execute(stmt)


def _check_range(start: date, end: date) -> None:
    if start > end:
        raise InvalidDateRange("Start date must not be after end date.")
    if (end - start).days + 1 > settings.stats_max_days:
        raise InvalidDateRange(
            f"Date range is limited to {settings.stats_max_days} days.",
            details={"max_days": settings.stats_max_days},
        )


def _fill(start: date, end: date, counts: dict) -> List[DailyStat]:
    out = []
    day = start
    while day <= end:
        plays, wins = counts.get(day, (0, 0))
        out.append(DailyStat(date=day, plays=plays, wins=wins))
        day += timedelta(days=1)
    return out


def daily_stats(db: Session, tenant_id: int, start: date, end: date) -> List[DailyStat]:
    """One row per day in ``[start, end]``; days without plays read as zero."""
    _check_range(start, end)
    rows = db.execute(
        select(DailyAggregate.day, DailyAggregate.plays, DailyAggregate.wins).where(
            DailyAggregate.tenant_id == tenant_id,
            DailyAggregate.day >= start,
            DailyAggregate.day <= end,
        )
    ).all()
    return _fill(start, end, {d: (p, w) for d, p, w in rows})


def count_from_ledger(db: Session, tenant_id: int, start: date, end: date) -> dict:
    rows = db.execute(
        select(
            Participation.play_day,
            func.count(Participation.id),
            func.sum(case((Participation.is_win == True, 1), else_=0)),
        )
        .where(
            Participation.tenant_id == tenant_id,
            Participation.play_day >= start,
            Participation.play_day <= end,
        )
        .group_by(Participation.play_day)
    ).all()
    return {d: (int(p), int(w or 0)) for d, p, w in rows}


def rebuild(db: Session, tenant_id: int, start: date, end: date) -> List[DailyStat]:
    """
    Overwrite the stored counters in the range with a recount of the ledger.

    Meant for a quiet venue. A play committed between the recount and the
    write is missing from the result until the next rebuild; it never fails
    the rebuild.
    """
    _check_range(start, end)
    counts = count_from_ledger(db, tenant_id, start, end)
    db.execute(
        delete(DailyAggregate).where(
            DailyAggregate.tenant_id == tenant_id,
            DailyAggregate.day >= start,
            DailyAggregate.day <= end,
            DailyAggregate.day.not_in(list(counts)),
        )
    )
    if counts:
        stmt = _dialect_insert(db)(DailyAggregate).values(
            [{"tenant_id": tenant_id, "day": d, "plays": p, "wins": w} for d, (p, w) in counts.items()]
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["tenant_id", "day"],
            set_={"plays": stmt.excluded.plays, "wins": stmt.excluded.wins},
        )
        db.execute(stmt)
    db.commit()
    db.expire_all()
    logger.info("rebuilt daily aggregates tenant=%s days=%s..%s rows=%s", tenant_id, start, end, len(counts))
    return _fill(start, end, counts)
