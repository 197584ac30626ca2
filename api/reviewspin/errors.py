"""Engine error taxonomy; the API renders each as its own code and status."""
from datetime import datetime
from http import HTTPStatus
from typing import Any, Dict, List, Optional


class EngineError(Exception):
    """
    Base class for engine failures.

    Attributes:
        message: customer- or staff-facing text
        code: machine-readable error code
        status_code: HTTP status the API layer responds with
        details: extra JSON-serialisable fields for the response body
    """

    status_code: int = HTTPStatus.BAD_REQUEST
    code: str = "ENGINE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code, **self.details}

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class DuplicateAction(EngineError):
    status_code = HTTPStatus.CONFLICT
    code = "DUPLICATE_ACTION"

    def __init__(self, platform_action: str):
        super().__init__(
            "You have already played with this action.",
            details={"platform_action": platform_action},
        )


class DailyLimitReached(EngineError):
    status_code = HTTPStatus.TOO_MANY_REQUESTS
    code = "DAILY_LIMIT_REACHED"

    def __init__(self, max_plays_per_day: int):
        super().__init__(
            f"Daily limit of {max_plays_per_day} plays reached. Come back tomorrow!",
            details={"max_plays_per_day": max_plays_per_day},
        )


class ReplayTooSoon(EngineError):
    status_code = HTTPStatus.TOO_MANY_REQUESTS
    code = "REPLAY_TOO_SOON"

    def __init__(self, replay_eligible_at: datetime):
        self.replay_eligible_at = replay_eligible_at
        super().__init__(
            "You can play again a little later.",
            details={"replay_eligible_at": replay_eligible_at.isoformat()},
        )


class MisconfiguredRewardSet(EngineError):
    """No active rewards, or every active reward weighs zero."""

    status_code = HTTPStatus.SERVICE_UNAVAILABLE
    code = "MISCONFIGURED_REWARD_SET"

    def __init__(self, reason: str = "No active rewards available. Please ask the staff."):
        super().__init__(reason)


class MisconfiguredTenant(EngineError):
    status_code = HTTPStatus.SERVICE_UNAVAILABLE
    code = "MISCONFIGURED_TENANT"

    def __init__(self, fields: List[str]):
        super().__init__(
            "This venue is not set up correctly. Please ask the staff.",
            details={"fields": fields},
        )


class InvalidTransition(EngineError):
    status_code = HTTPStatus.CONFLICT
    code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot move participation from {current} to {target}.",
            details={"current_status": current, "target_status": target},
        )


class NotFound(EngineError):
    status_code = HTTPStatus.NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, what: str = "Participation"):
        super().__init__(f"{what} not found.")


class Forbidden(EngineError):
    status_code = HTTPStatus.FORBIDDEN
    code = "FORBIDDEN"

    def __init__(self, message: str = "This token does not belong to the venue."):
        super().__init__(message)


class UnknownPlatformAction(EngineError):
    status_code = HTTPStatus.UNPROCESSABLE_ENTITY
    code = "UNKNOWN_PLATFORM_ACTION"

    def __init__(self, value: Any):
        super().__init__(
            f"Unknown platform action: {value!r}.",
            details={"platform_action": value},
        )


class InvalidDateRange(EngineError):
    status_code = HTTPStatus.UNPROCESSABLE_ENTITY
    code = "INVALID_DATE_RANGE"


class WheelOutOfSync(EngineError):
    """The drawn reward has no matching segment on the client's wheel."""

    status_code = HTTPStatus.CONFLICT
    code = "WHEEL_OUT_OF_SYNC"

    def __init__(self, reward_id: int, message: str = "The wheel is out of date. Please reload the page."):
        super().__init__(message, details={"reward_id": reward_id})


class StoreUnavailable(EngineError):
    """Transient storage failure; safe for the caller to retry with backoff."""

    status_code = HTTPStatus.SERVICE_UNAVAILABLE
    code = "STORE_UNAVAILABLE"
    retry_after_seconds = 2

    def __init__(self, message: str = "Service temporarily unavailable, please retry."):
        super().__init__(message, details={"retryable": True})
