# outreach/core/config.py
"""
Application configuration - loads from environment variables.
Single source of truth for all settings.
"""
import os
from decimal import Decimal
from typing import Optional
from urllib.parse import quote_plus
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

# Load environment variables FIRST
BASE_DIR = Path(__file__).resolve().parent.parent.parent
env_path = BASE_DIR / '.env'
load_dotenv(dotenv_path=env_path)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() not in ("0", "false", "no", "")


# ────────────────────────────────────────────
# Database Configuration
# ────────────────────────────────────────────
DB_USER = os.getenv("DB_USER", "postgres")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")
DB_HOST = os.getenv("DB_HOST")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "outreach_db")
DATABASE_URL = os.getenv("DATABASE_URL")

# Build DATABASE_URL
if not DATABASE_URL:
    if DB_HOST:
        encoded_password = quote_plus(DB_PASSWORD)
        DATABASE_URL = f"postgresql://{DB_USER}:{encoded_password}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
    else:
        DATABASE_URL = f"sqlite:///{BASE_DIR / 'outreach.db'}"

DB_STATEMENT_TIMEOUT_MS: int = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "15000"))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# ────────────────────────────────────────────
# Campaign Engine
# ────────────────────────────────────────────
CAMPAIGN_TEST_MODE: bool = _env_bool("CAMPAIGN_TEST_MODE")
SMS_COST_PER_SEGMENT: str = os.getenv("SMS_COST_PER_SEGMENT", "0.04")
EMAIL_COST_PER_MESSAGE: str = os.getenv("EMAIL_COST_PER_MESSAGE", "0.01")

SMS_SEGMENT_SIZE: int = int(os.getenv("SMS_SEGMENT_SIZE", "160"))
SMS_SEGMENT_SIZE_CONCAT: int = int(os.getenv("SMS_SEGMENT_SIZE_CONCAT", "153"))
SMS_UNICODE_SEGMENT_SIZE: int = int(os.getenv("SMS_UNICODE_SEGMENT_SIZE", "67"))
SMS_UNICODE_SEGMENT_SIZE_CONCAT: int = int(os.getenv("SMS_UNICODE_SEGMENT_SIZE_CONCAT", "67"))
SMS_MAX_LENGTH: int = int(os.getenv("SMS_MAX_LENGTH", "1000"))

SEND_TIMEOUT_SECONDS: float = float(os.getenv("SEND_TIMEOUT_SECONDS", "10"))
DEFAULT_CHECK_INTERVAL_MINUTES: int = int(os.getenv("DEFAULT_CHECK_INTERVAL_MINUTES", "60"))
CAMPAIGN_TIMEZONE: str = os.getenv("CAMPAIGN_TIMEZONE", "UTC")
COOLDOWN_RETENTION_DAYS: int = int(os.getenv("COOLDOWN_RETENTION_DAYS", "90"))

# ────────────────────────────────────────────
# Channel Providers
# ────────────────────────────────────────────
SMS_GATEWAY_URL: str = os.getenv("SMS_GATEWAY_URL", "")
SMS_GATEWAY_LOGIN: str = os.getenv("SMS_GATEWAY_LOGIN", "")
SMS_GATEWAY_PASSWORD: str = os.getenv("SMS_GATEWAY_PASSWORD", "")

EMAIL_API_URL: str = os.getenv("EMAIL_API_URL", "")
EMAIL_API_KEY: Optional[str] = os.getenv("EMAIL_API_KEY")

if not CAMPAIGN_TEST_MODE and not SMS_GATEWAY_URL:
    import warnings
    warnings.warn("SMS_GATEWAY_URL not set - real SMS sends will fail!")


# ────────────────────────────────────────────
# Settings Class
# ────────────────────────────────────────────
class Settings:
    DATABASE_URL: str = DATABASE_URL
    DB_STATEMENT_TIMEOUT_MS: int = DB_STATEMENT_TIMEOUT_MS
    LOG_LEVEL: str = LOG_LEVEL
    CAMPAIGN_TEST_MODE: bool = CAMPAIGN_TEST_MODE
    SMS_GATEWAY_URL: str = SMS_GATEWAY_URL
    EMAIL_API_URL: str = EMAIL_API_URL
    COOLDOWN_RETENTION_DAYS: int = COOLDOWN_RETENTION_DAYS
    CAMPAIGN_TIMEZONE: str = CAMPAIGN_TIMEZONE

settings = Settings()


class EngineConfig(BaseModel):
    """
    Explicit configuration passed to the campaign engine, renderer and senders.

    Services never read the module constants directly; build one of these
    with `EngineConfig.from_env()` (or construct it by hand in tests).
    """
    test_mode: bool = False
    sms_cost_per_segment: Decimal = Decimal("0.04")
    email_cost_per_message: Decimal = Decimal("0.01")

    sms_segment_size: int = Field(160, gt=0)
    sms_segment_size_concat: int = Field(153, gt=0)
    sms_unicode_segment_size: int = Field(67, gt=0)
    sms_unicode_segment_size_concat: int = Field(67, gt=0)
    sms_max_length: int = Field(1000, gt=0)

    send_timeout_seconds: float = Field(10.0, gt=0)
    default_check_interval_minutes: int = Field(60, gt=0)
    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @classmethod
    def from_env(cls) -> "EngineConfig":
        return cls(
            test_mode=CAMPAIGN_TEST_MODE,
            sms_cost_per_segment=Decimal(SMS_COST_PER_SEGMENT),
            email_cost_per_message=Decimal(EMAIL_COST_PER_MESSAGE),
            sms_segment_size=SMS_SEGMENT_SIZE,
            sms_segment_size_concat=SMS_SEGMENT_SIZE_CONCAT,
            sms_unicode_segment_size=SMS_UNICODE_SEGMENT_SIZE,
            sms_unicode_segment_size_concat=SMS_UNICODE_SEGMENT_SIZE_CONCAT,
            sms_max_length=SMS_MAX_LENGTH,
            send_timeout_seconds=SEND_TIMEOUT_SECONDS,
            default_check_interval_minutes=DEFAULT_CHECK_INTERVAL_MINUTES,
            timezone=CAMPAIGN_TIMEZONE,
        )
