"""Eligibility gate: duplicate action, daily cap, then the opt-in replay cooldown."""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import DailyLimitReached, DuplicateAction, ReplayTooSoon
from .models import Participation
from .schemas import PlatformAction, TenantConfig
from .utils import as_utc, local_day

logger = logging.getLogger(__name__)


def has_used_action(db: Session, tenant_id: int, email: str, action: PlatformAction) -> bool:
    stmt = select(Participation.id).where(
        Participation.tenant_id == tenant_id,
        Participation.customer_email == email,
        Participation.platform_action == action.value,
    ).limit(1)
    return db.execute(stmt).first() is not None


def plays_today(db: Session, config: TenantConfig, email: str, now: datetime) -> int:
    stmt = select(func.count(Participation.id)).where(
        Participation.tenant_id == config.tenant_id,
        Participation.customer_email == email,
        Participation.play_day == local_day(now, config.tz),
    )
    return db.execute(stmt).scalar() or 0


def latest_replay_eligible_at(db: Session, tenant_id: int, email: str) -> Optional[datetime]:
    stmt = select(func.max(Participation.replay_eligible_at)).where(
        Participation.tenant_id == tenant_id,
        Participation.customer_email == email,
    )
    return as_utc(db.execute(stmt).scalar())


def check_eligibility(
    db: Session,
    config: TenantConfig,
    email: Optional[str],
    action: PlatformAction,
    now: datetime,
) -> None:
    """Raise the first applicable rejection; return None when the play may proceed."""
    if not email:
        return

    if has_used_action(db, config.tenant_id, email, action):
        logger.warning("play rejected: duplicate action tenant=%s action=%s", config.tenant_id, action.value)
        raise DuplicateAction(action.value)

    if plays_today(db, config, email, now) >= config.max_plays_per_day:
        logger.warning("play rejected: daily cap tenant=%s cap=%s", config.tenant_id, config.max_plays_per_day)
        raise DailyLimitReached(config.max_plays_per_day)

    if config.enforce_replay_delay:
        eligible_at = latest_replay_eligible_at(db, config.tenant_id, email)
        if eligible_at and as_utc(now) < eligible_at:
            logger.warning("play rejected: cooldown tenant=%s until=%s", config.tenant_id, eligible_at.isoformat())
            raise ReplayTooSoon(eligible_at)
