import logging
import os
from pathlib import Path
from pydantic import BaseModel
from dotenv import load_dotenv

ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
if ENV_PATH.exists():
    # ensure .env values override empty/previous env
    load_dotenv(ENV_PATH, override=True)
    # BOM-safe fallback: if key was \ufeffDATABASE_URL
    if not os.getenv("DATABASE_URL"):
        for line in ENV_PATH.read_text(encoding="utf-8").splitlines():
            line = line.lstrip("\ufeff")
            if line.startswith("DATABASE_URL="):
                os.environ["DATABASE_URL"] = line.split("=", 1)[1].strip()
                break


def normalize_database_url(url: str) -> str:
    """Point bare postgres URLs at the psycopg 3 driver."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


class Settings(BaseModel):
    database_url: str = normalize_database_url(os.getenv("DATABASE_URL", "sqlite:///./reviewspin.db"))
    store_timeout_seconds: float = float(os.getenv("STORE_TIMEOUT_SECONDS", "5"))
    default_timezone: str = os.getenv("DEFAULT_TIMEZONE", "Europe/Paris")
    jwt_secret: str = os.getenv("JWT_SECRET", "dev_change_me")
    allowed_origins: list[str] = [
        o.strip() for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()
    ]
    allowed_origin_regex: str | None = os.getenv("ALLOWED_ORIGIN_REGEX") or None
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    stats_max_days: int = int(os.getenv("STATS_MAX_DAYS", "366"))

settings = Settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=level or settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
