import enum
import uuid
from datetime import date, datetime, timezone

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from .db import Base

utcnow = lambda: datetime.now(timezone.utc)


class ParticipationStatus(str, enum.Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REDEEMED = "REDEEMED"


class Tenant(Base):
    __tablename__ = "tenants"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    max_plays_per_day: Mapped[int] = mapped_column(Integer, default=1)
    replay_delay_hours: Mapped[int] = mapped_column(Integer, default=24)
    reward_validity_days: Mapped[int] = mapped_column(Integer, default=30)
    enforce_replay_delay: Mapped[bool] = mapped_column(Boolean, default=False)
    # bcrypt hash of the staff token, never the token itself
    admin_token_hash: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    rewards: Mapped[list["Reward"]] = relationship(back_populates="tenant")


class Reward(Base):
    __tablename__ = "rewards"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    label: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    weight: Mapped[float] = mapped_column(Float, default=1.0)
    is_win: Mapped[bool] = mapped_column(Boolean, default=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    color: Mapped[str | None] = mapped_column(String(16), nullable=True)
    icon: Mapped[str | None] = mapped_column(String, nullable=True)

    tenant: Mapped[Tenant] = relationship(back_populates="rewards")


class Participation(Base):
    __tablename__ = "participations"
    __table_args__ = (
        # one play per (venue, customer, action), ever; NULL emails never collide
        UniqueConstraint("tenant_id", "customer_email", "platform_action", name="uq_participation_action"),
        Index("ix_participation_customer_day", "tenant_id", "customer_email", "play_day"),
    )
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenants.id"), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(120), nullable=False)
    customer_email: Mapped[str | None] = mapped_column(String, nullable=True)
    platform_action: Mapped[str] = mapped_column(String(32), nullable=False)
    reward_id: Mapped[int] = mapped_column(Integer, ForeignKey("rewards.id"), nullable=False)
    # win flag as drawn; later reward edits must not rewrite history
    is_win: Mapped[bool] = mapped_column(Boolean, nullable=False)
    play_day: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[ParticipationStatus] = mapped_column(
        Enum(ParticipationStatus, native_enum=False, length=16),
        default=ParticipationStatus.PENDING,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    redeemed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    replay_eligible_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    redeem_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    reward: Mapped[Reward] = relationship(lazy="joined")
    tenant: Mapped[Tenant] = relationship()


class DailyAggregate(Base):
    __tablename__ = "daily_aggregates"
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenants.id"), primary_key=True)
    day: Mapped[date] = mapped_column(Date, primary_key=True)
    plays: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    wins: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
