"""Participation ledger: plays and the PENDING -> VERIFIED -> REDEEMED state machine."""
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from pydantic import ValidationError
from sqlalchemy.orm import Session

from . import aggregates
from .db import store_guard
from .eligibility import check_eligibility, has_used_action
from .errors import (
    DuplicateAction, Forbidden, InvalidTransition, MisconfiguredRewardSet, MisconfiguredTenant, NotFound,
)
from .models import Participation, ParticipationStatus, Tenant
from .schemas import Customer, PlatformAction, RewardConfig, TenantConfig, WheelSegment
from .security import verify_tenant_token
from .utils import as_utc, gen_token, local_day, utcnow, validity_window, weighted_choice
from .wheel import build_segments, locate_segment, segments_version

logger = logging.getLogger(__name__)


@dataclass
class PlayResult:
    participation: Participation
    segments: List[WheelSegment]
    segments_version: str
    wedge_index: int


@dataclass
class RedemptionResult:
    status: str  # "redeemed" | "already_redeemed"
    participation: Participation

    @property
    def redeemed_at(self) -> datetime:
        return as_utc(self.participation.redeemed_at)


def load_tenant(db: Session, tenant_id: int) -> Tenant:
    with store_guard(db):
        tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFound("Venue")
    return tenant


def load_tenant_config(db: Session, tenant_id: int) -> TenantConfig:
    tenant = load_tenant(db, tenant_id)
    try:
        with store_guard(db):
            return TenantConfig.from_tenant(tenant)
    except ValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
        logger.error("venue %s has invalid settings: %s", tenant_id, ", ".join(fields))
        if exc.title == RewardConfig.__name__:
            raise MisconfiguredRewardSet("A reward of this venue is not set up correctly. Please ask the staff.")
        raise MisconfiguredTenant(fields)


def record_play(
    db: Session,
    config: TenantConfig,
    customer: Customer,
    platform_action,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> PlayResult:
    """
    Gate, draw, stamp the validity window, persist a PENDING participation
    and bump the daily counters, all in one commit.
    """
    action = PlatformAction.parse(platform_action)
    now = as_utc(now or utcnow())
    email = customer.email_key

    with store_guard(db):
        check_eligibility(db, config, email, action, now)

        rewards = config.active_rewards
        reward = weighted_choice(rewards, rng)
        valid_from, expires_at = validity_window(now, config.reward_validity_days, config.tz)
        day = local_day(now, config.tz)

        p = Participation(
            tenant_id=config.tenant_id,
            customer_name=customer.name.strip(),
            customer_email=email,
            platform_action=action.value,
            reward_id=reward.id,
            is_win=reward.is_win,
            play_day=day,
            status=ParticipationStatus.PENDING,
            created_at=now,
            valid_from=as_utc(valid_from),
            expires_at=as_utc(expires_at),
            replay_eligible_at=now + timedelta(hours=config.replay_delay_hours),
            redeem_token=gen_token(),
        )
        db.add(p)
        try:
            db.flush()
            aggregates.increment(db, config.tenant_id, day, reward.is_win)
            db.commit()
        except IntegrityError:
            db.rollback()
            # lost the race against a concurrent play with the same action
            if email and has_used_action(db, config.tenant_id, email, action):
                logger.warning("play rejected: duplicate action on insert tenant=%s", config.tenant_id)
                raise DuplicateAction(action.value)
            raise

    segments = build_segments(rewards)
    logger.info(
        "play recorded tenant=%s participation=%s reward=%s win=%s",
        config.tenant_id, p.id, reward.id, reward.is_win,
    )
    return PlayResult(
        participation=p,
        segments=segments,
        segments_version=segments_version(segments),
        wedge_index=locate_segment(segments, reward.id),
    )


def _match_key(key: str):
    # tokens are 32 chars, ids are 36-char UUIDs; the two never collide
    return or_(Participation.redeem_token == key, Participation.id == key)


def get_participation(db: Session, key: str) -> Participation:
    with store_guard(db):
        p = db.execute(
            select(Participation).where(_match_key(key)).execution_options(populate_existing=True)
        ).scalar_one_or_none()
    if p is None:
        raise NotFound()
    return p


def verify(db: Session, participation_id: str, tenant_token: str, now: Optional[datetime] = None) -> Participation:
    """Staff confirms a win: PENDING -> VERIFIED, guarded by the venue's token."""
    now = as_utc(now or utcnow())
    with store_guard(db):
        p = db.get(Participation, participation_id)
        if p is None:
            raise NotFound()
        tenant = db.get(Tenant, p.tenant_id)
        if tenant is None or not verify_tenant_token(tenant_token, tenant.admin_token_hash):
            raise Forbidden()

        result = db.execute(
            update(Participation)
            .where(Participation.id == participation_id, Participation.status == ParticipationStatus.PENDING)
            .values(status=ParticipationStatus.VERIFIED, verified_at=now)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(p)

    if result.rowcount != 1:
        raise InvalidTransition(p.status.value, ParticipationStatus.VERIFIED.value)
    logger.info("participation verified id=%s tenant=%s", p.id, p.tenant_id)
    return p


def redeem(db: Session, key: str, now: Optional[datetime] = None) -> RedemptionResult:
    """
    PENDING|VERIFIED -> REDEEMED, exactly once.

    A second attempt is not an error: it returns ``already_redeemed`` with the
    original ``redeemed_at``. The validity window is not checked here; the
    presentation layer decides when to offer redemption.
    """
    now = as_utc(now or utcnow())
    with store_guard(db):
        result = db.execute(
            update(Participation)
            .where(_match_key(key), Participation.status != ParticipationStatus.REDEEMED)
            .values(status=ParticipationStatus.REDEEMED, redeemed_at=now)
            .execution_options(synchronize_session=False)
        )
        db.commit()

    p = get_participation(db, key)
    if result.rowcount == 1:
        logger.info("participation redeemed id=%s tenant=%s", p.id, p.tenant_id)
        return RedemptionResult(status="redeemed", participation=p)
    logger.warning("participation already redeemed id=%s tenant=%s", p.id, p.tenant_id)
    return RedemptionResult(status="already_redeemed", participation=p)


def completed_actions(db: Session, tenant_id: int, email: Optional[str]) -> List[PlatformAction]:
    """Actions this customer already spent at the venue."""
    if not email:
        return []
    with store_guard(db):
        rows = db.execute(
            select(Participation.platform_action).where(
                Participation.tenant_id == tenant_id,
                Participation.customer_email == email.strip().lower(),
            )
        ).scalars().all()
    return [PlatformAction(a) for a in sorted(set(rows))]
