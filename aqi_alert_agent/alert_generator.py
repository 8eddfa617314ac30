"""LLM generation of short air quality alert messages."""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Optional

from .config import LLMConfig, NotificationConfig
from .llm_client import LLMClient
from .models import CUSTOM, EVENING, MORNING, EnvironmentalSnapshot, variant_kind

logger = logging.getLogger(__name__)

ELLIPSIS = "..."

FALLBACK_MESSAGES = {
    MORNING: "Morning air quality check: Review conditions before outdoor activities. Have a great day! \u2600\ufe0f",
    EVENING: "Evening air quality summary: Today's conditions logged. Rest well and plan for tomorrow! \U0001F319",
    CUSTOM: "Air quality check: Current conditions available. Review and plan your activities! \U0001F324\ufe0f",
}

DEFAULT_ALERT_NAMES = {
    MORNING: "Morning Report",
    EVENING: "Evening Report",
    CUSTOM: "Air Quality Update",
}


def fallback_message(variant: str) -> str:
    """Static message used whenever generation is unavailable."""
    return FALLBACK_MESSAGES[variant_kind(variant)]


def aqi_category(aqi: int) -> str:
    """US EPA category for an AQI value."""
    if aqi <= 50:
        return "Good"
    if aqi <= 100:
        return "Moderate"
    if aqi <= 150:
        return "Unhealthy for Sensitive Groups"
    if aqi <= 200:
        return "Unhealthy"
    if aqi <= 300:
        return "Very Unhealthy"
    return "Hazardous"


def pollen_category(index: int) -> str:
    if index <= 2:
        return "Low"
    if index <= 5:
        return "Moderate"
    if index <= 8:
        return "High"
    return "Very High"


def truncate_message(message: str, char_limit: int) -> str:
    """Clip message to char_limit, marking the cut with an ellipsis."""
    if len(message) <= char_limit:
        return message
    return message[:char_limit - len(ELLIPSIS)].rstrip() + ELLIPSIS


def _clean_response(text: Optional[str]) -> str:
    cleaned = (text or "").strip()
    # Models sometimes wrap the answer in quotes despite instructions
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in "\"'":
        cleaned = cleaned[1:-1].strip()
    return cleaned


def build_system_prompt(char_limit: int) -> str:
    return (
        "You are an air quality expert creating brief, helpful push notification alerts. "
        f"Keep responses under {char_limit} characters and focus on actionable advice."
    )


def build_alert_prompt(
    snapshot: EnvironmentalSnapshot,
    variant: str,
    display_name: Optional[str],
    char_limit: int,
) -> str:
    """
    Build the user prompt for one alert.

    Readings the provider could not supply are left out of the conditions list.
    """
    kind = variant_kind(variant)
    alert_name = display_name or DEFAULT_ALERT_NAMES[kind]
    place = snapshot.location_name or "this location"

    conditions = []
    if snapshot.aqi is not None and snapshot.aqi >= 0:
        conditions.append(f"Air Quality: {snapshot.aqi} ({aqi_category(snapshot.aqi)})")
    if snapshot.pollen is not None and snapshot.pollen >= 0:
        conditions.append(f"Pollen: {pollen_category(snapshot.pollen)} ({snapshot.pollen})")
    if snapshot.storm_probability is not None and snapshot.storm_probability >= 0:
        conditions.append(f"Storm risk: {snapshot.storm_probability}%")
    if not conditions:
        conditions.append("Current readings are unavailable")

    if kind == MORNING:
        time_context = "starting your day"
        focus_area = "outdoor planning and activities ahead"
        focus_details = "Focus: Help plan outdoor activities, commute, exercise"
    elif kind == EVENING:
        time_context = "wrapping up your day"
        focus_area = "reflection on today and preparation for tomorrow"
        focus_details = "Focus: Summarize the day, suggest tomorrow preparation"
    else:
        time_context = "checking in"
        focus_area = "current conditions and actionable advice"
        focus_details = "Focus: Provide helpful insights based on current air quality, pollen, and weather conditions"

    condition_lines = "\n".join(conditions)
    return f"""Generate a concise air quality alert titled "{alert_name}" for {place} for someone {time_context}.

Current conditions:
{condition_lines}

Requirements:
- Maximum {char_limit} characters (for push notification)
- Focus on {focus_area}
- Be actionable and helpful
- Use a friendly, encouraging tone
- Match the tone/theme of the alert name "{alert_name}"

{focus_details}

Respond with just the alert message, no extra formatting.
Do not include quotes around the message."""


class AlertGenerator:
    """
    Produces alert messages that always fit a push notification.

    generate() never raises: a missing client, an error, a timeout or an empty
    response all yield the variant's fallback message. Timed-out calls are
    abandoned, not retried.
    """

    def __init__(
        self,
        client: Optional[LLMClient],
        config: Optional[LLMConfig] = None,
        notification_config: Optional[NotificationConfig] = None,
    ):
        self.client = client
        self.config = config or LLMConfig()
        self.char_limit = (notification_config or NotificationConfig()).char_limit
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="alert-llm")

    def _call_backend(self, system_prompt: str, prompt: str) -> str:
        future = self._executor.submit(
            self.client.complete,
            system_prompt,
            prompt,
            self.config.max_tokens,
            self.config.temperature,
        )
        try:
            return future.result(timeout=self.config.timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            raise

    def generate(self, snapshot: EnvironmentalSnapshot, variant: str, display_name: Optional[str] = None) -> str:
        """
        Generate an alert message for a snapshot and variant.

        Returns:
            A non-empty message no longer than the configured character limit.
        """
        fallback = truncate_message(fallback_message(variant), self.char_limit)
        if self.client is None:
            logger.warning(f"No LLM client configured, using fallback {variant} alert")
            return fallback

        prompt = build_alert_prompt(snapshot, variant, display_name, self.char_limit)
        try:
            content = _clean_response(self._call_backend(build_system_prompt(self.char_limit), prompt))
        except FutureTimeoutError:
            logger.warning(
                f"LLM call for {variant} alert timed out after {self.config.timeout_seconds}s, using fallback"
            )
            return fallback
        except Exception as e:
            logger.error(f"Error calling LLM for {variant} alert: {e}")
            return fallback

        if not content:
            logger.warning(f"LLM returned empty {variant} alert, using fallback")
            return fallback
        return truncate_message(content, self.char_limit)

    def is_fallback(self, message: str, variant: str) -> bool:
        """True if message is the static fallback for variant."""
        return message == truncate_message(fallback_message(variant), self.char_limit)

    def close(self) -> None:
        self._executor.shutdown(wait=False)
