import enum
from datetime import date, datetime
from typing import Literal, Optional, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, EmailStr, Field, field_validator

from .config import settings
from .errors import UnknownPlatformAction
from .models import ParticipationStatus
from .utils import as_utc


class PlatformAction(str, enum.Enum):
    GOOGLE_REVIEW = "GOOGLE_REVIEW"
    TRIPADVISOR_REVIEW = "TRIPADVISOR_REVIEW"
    INSTAGRAM_FOLLOW = "INSTAGRAM_FOLLOW"
    TIKTOK_FOLLOW = "TIKTOK_FOLLOW"
    FACEBOOK_LIKE = "FACEBOOK_LIKE"

    @classmethod
    def parse(cls, value) -> "PlatformAction":
        """Strict lookup; an unrecognised action is rejected, never defaulted."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        raise UnknownPlatformAction(value)


# --- tenant configuration (read from tenant management, threaded explicitly) ---

class RewardConfig(BaseModel):
    id: int
    label: str
    weight: float = Field(ge=0)
    is_win: bool
    active: bool = True
    position: int = 0
    color: Optional[str] = None
    icon: Optional[str] = None
    class Config:
        from_attributes = True


class TenantConfig(BaseModel):
    tenant_id: int
    timezone: str = settings.default_timezone
    max_plays_per_day: int = Field(ge=1)
    replay_delay_hours: int = Field(ge=0)
    reward_validity_days: int = Field(ge=1)
    enforce_replay_delay: bool = False
    rewards: List[RewardConfig] = []

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone {v!r}")
        return v

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def active_rewards(self) -> List[RewardConfig]:
        """Active rewards in wheel order; the draw and the wheel both use this list."""
        return sorted((r for r in self.rewards if r.active), key=lambda r: (r.position, r.id))

    @classmethod
    def from_tenant(cls, tenant) -> "TenantConfig":
        return cls(
            tenant_id=tenant.id,
            timezone=tenant.timezone or settings.default_timezone,
            max_plays_per_day=tenant.max_plays_per_day,
            replay_delay_hours=tenant.replay_delay_hours,
            reward_validity_days=tenant.reward_validity_days,
            enforce_replay_delay=tenant.enforce_replay_delay,
            # inactive rewards never reach the draw or the wheel
            rewards=[RewardConfig.model_validate(r) for r in tenant.rewards if r.active],
        )


class Customer(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    email: Optional[EmailStr] = None

    @property
    def email_key(self) -> Optional[str]:
        return self.email.strip().lower() if self.email else None


# --- play ---

class PlayRequest(BaseModel):
    tenant_id: int
    customer_name: str = Field(min_length=1, max_length=120)
    customer_email: Optional[EmailStr] = None
    platform_action: str
    segments_version: Optional[str] = None


class RewardOut(BaseModel):
    id: int
    label: str
    description: Optional[str] = None
    is_win: bool
    color: Optional[str] = None
    icon: Optional[str] = None
    class Config:
        from_attributes = True


class ParticipationOut(BaseModel):
    id: str
    tenant_id: int
    customer_name: str
    customer_email: Optional[str] = None
    platform_action: str
    status: ParticipationStatus
    is_win: bool
    reward: RewardOut
    created_at: datetime
    valid_from: datetime
    expires_at: datetime
    verified_at: Optional[datetime] = None
    redeemed_at: Optional[datetime] = None
    replay_eligible_at: datetime
    redeem_token: str
    class Config:
        from_attributes = True

    @field_validator("created_at", "valid_from", "expires_at", "verified_at", "redeemed_at", "replay_eligible_at")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # SQLite hands back naive values; everything is stored as UTC
        return as_utc(v)


class PlayResponse(BaseModel):
    participation: ParticipationOut
    reward_id: int
    wedge_index: int
    wedges_count: int
    segments_version: str
    wheel_in_sync: bool = True


# --- verify / redeem ---

class VerifyRequest(BaseModel):
    token: str = Field(min_length=1)


class RedeemRequest(BaseModel):
    key: str = Field(min_length=1, description="redemption token or participation id")


class RedeemResponse(BaseModel):
    status: Literal["redeemed", "already_redeemed"]
    participation_id: str
    redeemed_at: datetime
    message: str


# --- wheel ---

class WheelSegment(BaseModel):
    index: int
    reward_id: int
    label: str
    color: Optional[str] = None
    icon: Optional[str] = None


class WheelOut(BaseModel):
    segments: List[WheelSegment]
    segments_version: str


class ActionsOut(BaseModel):
    available: List[PlatformAction]
    completed: List[PlatformAction]


# --- stats ---

class DailyStat(BaseModel):
    date: date
    plays: int
    wins: int
