# backend/coachdesk/core/config.py
import logging
import os
from pathlib import Path
from typing import Annotated, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
import pytz


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


DEFAULT_SESSION_LENGTHS: Dict[str, int] = {
    "vod-review": 60,
    "live-coaching": 60,
}


class Settings(BaseSettings):
    environment: str = Field(default="development", description="Deployment environment name")
    is_testing: bool = Field(default=False, description="Set by the test suite")
    log_level: str = Field(default="INFO")

    database_url: str = Field(
        default="sqlite:///./coachdesk.db",
        description="SQLAlchemy URL for the booking database",
    )
    test_database_url: str = Field(default="sqlite://", description="Database used by tests")
    database_pool_size: int = Field(default=5, ge=1)
    database_max_overflow: int = Field(default=10, ge=0)

    # Scheduling
    business_timezone: str = Field(
        default="America/New_York",
        description="Zone in which availability rules are written",
    )
    slot_lead_time_minutes: int = Field(
        default=15,
        ge=0,
        description="A slot must start more than this many minutes from now to be offered",
    )
    session_length_minutes: Dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_SESSION_LENGTHS),
        description="Occupied interval length per session type, used for overlap checks",
    )
    default_slot_duration: int = Field(default=60, ge=1, le=24 * 60)

    # Payments
    friend_codes: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Comma-separated codes that reserve a session without payment",
    )
    stripe_secret_key: Optional[SecretStr] = Field(default=None)
    stripe_webhook_secret: Optional[SecretStr] = Field(
        default=None, description="Signing secret for /webhooks/stripe"
    )

    # Admin API
    admin_api_token: Optional[SecretStr] = Field(
        default=None, description="Shared token required in X-Admin-Token"
    )

    # Cross-process slot mutex
    slot_lock_enabled: bool = Field(default=False)
    redis_url: Optional[str] = Field(default=None)
    slot_lock_ttl_seconds: int = Field(default=30, ge=1)

    # Rate limiting
    rate_limit_enabled: bool = Field(default=True)
    reservation_rate_per_min: float = Field(default=6.0, gt=0)
    reservation_burst: int = Field(default=3, ge=1)
    friend_code_rate_per_hour: int = Field(default=5, ge=1)

    # Background events
    event_job_max_attempts: int = Field(default=5, ge=1)
    event_worker_enabled: bool = Field(
        default=False, description="Poll background_jobs in a thread alongside the API"
    )
    event_poll_interval_seconds: int = Field(default=30, ge=1)
    event_batch_size: int = Field(default=25, ge=1)

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("friend_codes", mode="before")
    @classmethod
    def _parse_friend_codes(cls, value: object) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [token.strip() for token in value.split(",") if token.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(token).strip() for token in value if str(token).strip()]
        raise ValueError("friend_codes must be a comma-separated string or list")

    @field_validator("business_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            pytz.timezone(value)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @field_validator("session_length_minutes")
    @classmethod
    def _validate_session_lengths(cls, value: Dict[str, int]) -> Dict[str, int]:
        for session_type, minutes in value.items():
            if minutes <= 0:
                raise ValueError(f"Session length for {session_type} must be positive")
        return value

    @model_validator(mode="after")
    def _default_missing_session_lengths(self) -> "Settings":
        for session_type, minutes in DEFAULT_SESSION_LENGTHS.items():
            self.session_length_minutes.setdefault(session_type, minutes)
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in {"prod", "production"}

    def session_length_for(self, session_type: str) -> int:
        """Occupied minutes for a session type (defaults to one hour)."""
        return self.session_length_minutes.get(session_type, 60)

    def is_friend_code(self, code: Optional[str]) -> bool:
        if not code:
            return False
        return code.strip() in self.friend_codes

    def get_database_url(self) -> str:
        """Get the appropriate database URL based on context."""
        if self.is_testing or is_running_tests():
            return self.test_database_url
        return self.database_url


settings = Settings()
