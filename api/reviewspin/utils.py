import random
import secrets
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional, Protocol, Sequence, Tuple, TypeVar

from .errors import MisconfiguredRewardSet


class Weighted(Protocol):
    weight: float


W = TypeVar("W", bound=Weighted)


def utcnow() -> datetime:
    """UTC-aware 'now' to keep comparisons consistent with timestamptz from Postgres."""
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values (SQLite) and convert aware ones to UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def local_day(now: datetime, tz: tzinfo) -> date:
    """Calendar day of ``now`` in the venue's timezone."""
    return as_utc(now).astimezone(tz).date()


def validity_window(now: datetime, validity_days: int, tz: tzinfo) -> Tuple[datetime, datetime]:
    """
    Return ``(valid_from, expires_at)`` for a reward won at ``now``.

    ``valid_from`` is local midnight of the day after ``now`` so a prize is
    never usable the day it was won. ``expires_at`` is local midnight
    ``validity_days`` calendar days later. Both carry ``tz``, so their
    difference is exactly ``validity_days`` days even across a DST change.

    ``validity_days == 0`` yields an empty window (``expires_at == valid_from``);
    rejecting that is the configuration layer's job.
    """
    if validity_days < 0:
        raise ValueError("validity_days must be >= 0")
    tomorrow = local_day(now, tz) + timedelta(days=1)
    valid_from = datetime.combine(tomorrow, time.min, tzinfo=tz)
    expires_at = datetime.combine(tomorrow + timedelta(days=validity_days), time.min, tzinfo=tz)
    return valid_from, expires_at


def weighted_choice(rewards: Sequence[W], rng: Optional[random.Random] = None) -> W:
    """
    Pick one reward with probability ``weight / sum(weights)``.

    Walks the sequence in order and returns the first reward whose cumulative
    normalised weight reaches ``r`` in ``[0, 1)``; ties at a boundary go to the
    earlier reward. Zero-weight rewards hold no probability mass and are
    skipped. ``rng`` defaults to a fresh OS-seeded generator per call.
    """
    if not rewards:
        raise MisconfiguredRewardSet()
    if any(r.weight < 0 for r in rewards):
        raise MisconfiguredRewardSet("Reward weights must not be negative.")
    total = sum(r.weight for r in rewards)
    if total <= 0:
        raise MisconfiguredRewardSet("Every active reward has zero weight. Please ask the staff.")

    r = (rng or secrets.SystemRandom()).random()
    cumulative = 0.0
    last = None
    for reward in rewards:
        if reward.weight == 0:
            continue
        cumulative += reward.weight / total
        last = reward
        if cumulative >= r:
            return reward
    # float drift left the walk short of r
    return last


def gen_token(nbytes: int = 24) -> str:
    """Unguessable, URL-safe redemption token (fits in a QR code link)."""
    return secrets.token_urlsafe(nbytes)
