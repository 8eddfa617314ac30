"""Configuration management."""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class LLMConfig:
    """LLM API configuration."""
    provider: str = "openai"      # "openai" or "generic_http"
    api_key: Optional[str] = None  # no key means fallback text only
    model: str = "gpt-3.5-turbo"
    base_url: Optional[str] = None  # allow custom endpoint
    max_tokens: int = 60
    temperature: float = 0.7
    timeout_seconds: float = 10.0


@dataclass
class CacheConfig:
    """Alert content cache configuration."""
    fuzzy_tolerance: int = 15     # combined quantization units
    fuzzy_candidates: int = 3     # rows considered for a fuzzy match
    expiry_hours: int = 24
    sweep_max_age_days: int = 2


@dataclass
class NotificationConfig:
    """Notification content and refresh configuration."""
    char_limit: int = 178         # push notification body ceiling
    refresh_lead_minutes: int = 30


@dataclass
class SnapshotConfig:
    """Environmental snapshot provider configuration."""
    api_url: Optional[str] = None  # e.g. "https://api.example.com/v1"
    timeout_seconds: float = 10.0


@dataclass
class TwilioConfig:
    """Twilio SMS configuration."""
    account_sid: str
    auth_token: str
    from_number: str
    to_number: str


@dataclass
class AppConfig:
    """Complete application configuration."""
    db_path: str = "aqi_alerts.db"
    llm: LLMConfig = field(default_factory=LLMConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    notification: NotificationConfig = field(default_factory=NotificationConfig)
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    twilio: Optional[TwilioConfig] = None


def _parse_int_env(key: str, default: int, errors: List[str], minimum: int = 0) -> int:
    """Parse an integer environment variable, recording invalid values."""
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        parsed = int(value)
    except ValueError:
        errors.append(f"{key}={value!r} is not an integer")
        return default
    if parsed < minimum:
        errors.append(f"{key}={parsed} must be >= {minimum}")
        return default
    return parsed


def _parse_float_env(key: str, default: float, errors: List[str]) -> float:
    """Parse a positive float environment variable, recording invalid values."""
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        parsed = float(value)
    except ValueError:
        errors.append(f"{key}={value!r} is not a number")
        return default
    if parsed <= 0:
        errors.append(f"{key}={parsed} must be > 0")
        return default
    return parsed


def load_config() -> AppConfig:
    """
    Load configuration from environment variables.

    Every setting has a default; an absent LLM_API_KEY simply means every alert
    uses fallback text, and Twilio delivery is enabled only when all four
    TWILIO_* variables are present.

    Raises:
        ValueError: If a numeric configuration value is malformed.
    """
    errors: List[str] = []

    # Database
    db_path = os.getenv("DB_PATH", "aqi_alerts.db")

    # LLM configuration
    llm_temperature_raw = os.getenv("LLM_TEMPERATURE", "0.7")
    try:
        llm_temperature = float(llm_temperature_raw)
    except ValueError:
        errors.append(f"LLM_TEMPERATURE={llm_temperature_raw!r} is not a number")
        llm_temperature = 0.7

    llm = LLMConfig(
        provider=os.getenv("LLM_PROVIDER", "openai"),
        api_key=os.getenv("LLM_API_KEY") or None,
        model=os.getenv("LLM_MODEL", "gpt-3.5-turbo"),
        base_url=os.getenv("LLM_BASE_URL") or None,
        max_tokens=_parse_int_env("LLM_MAX_TOKENS", 60, errors, minimum=1),
        temperature=llm_temperature,
        timeout_seconds=_parse_float_env("LLM_TIMEOUT_SECONDS", 10.0, errors),
    )

    # Cache configuration
    cache = CacheConfig(
        fuzzy_tolerance=_parse_int_env("CACHE_FUZZY_TOLERANCE", 15, errors),
        fuzzy_candidates=_parse_int_env("CACHE_FUZZY_CANDIDATES", 3, errors, minimum=1),
        expiry_hours=_parse_int_env("CACHE_EXPIRY_HOURS", 24, errors, minimum=1),
        sweep_max_age_days=_parse_int_env("CACHE_SWEEP_MAX_AGE_DAYS", 2, errors),
    )

    # Notification configuration
    notification = NotificationConfig(
        char_limit=_parse_int_env("ALERT_CHAR_LIMIT", 178, errors, minimum=10),
        refresh_lead_minutes=_parse_int_env("REFRESH_LEAD_MINUTES", 30, errors),
    )

    # Snapshot provider
    snapshot = SnapshotConfig(
        api_url=os.getenv("SNAPSHOT_API_URL") or None,
        timeout_seconds=_parse_float_env("SNAPSHOT_TIMEOUT_SECONDS", 10.0, errors),
    )

    # Twilio configuration (optional)
    twilio = None
    twilio_values = {
        "TWILIO_ACCOUNT_SID": os.getenv("TWILIO_ACCOUNT_SID"),
        "TWILIO_AUTH_TOKEN": os.getenv("TWILIO_AUTH_TOKEN"),
        "TWILIO_FROM_NUMBER": os.getenv("TWILIO_FROM_NUMBER"),
        "TWILIO_TO_NUMBER": os.getenv("TWILIO_TO_NUMBER"),
    }
    if all(twilio_values.values()):
        twilio = TwilioConfig(
            account_sid=twilio_values["TWILIO_ACCOUNT_SID"],
            auth_token=twilio_values["TWILIO_AUTH_TOKEN"],
            from_number=twilio_values["TWILIO_FROM_NUMBER"],
            to_number=twilio_values["TWILIO_TO_NUMBER"],
        )
    elif any(twilio_values.values()):
        missing = [key for key, value in twilio_values.items() if not value]
        errors.append(f"Incomplete Twilio configuration, missing: {', '.join(missing)}")

    if errors:
        raise ValueError(f"Invalid configuration: {'; '.join(errors)}")

    return AppConfig(
        db_path=db_path,
        llm=llm,
        cache=cache,
        notification=notification,
        snapshot=snapshot,
        twilio=twilio,
    )
