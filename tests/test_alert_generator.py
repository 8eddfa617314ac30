"""Tests for alert message generation and its fallbacks."""

import pytest

from aqi_alert_agent.alert_generator import (
    FALLBACK_MESSAGES,
    AlertGenerator,
    aqi_category,
    build_alert_prompt,
    fallback_message,
    truncate_message,
)
from aqi_alert_agent.config import LLMConfig
from aqi_alert_agent.models import EnvironmentalSnapshot

from .conftest import FakeLLMClient, make_snapshot

CHAR_LIMIT = 178


def _generator(client, **llm_kwargs):
    llm_kwargs.setdefault("timeout_seconds", 2.0)
    return AlertGenerator(client, LLMConfig(api_key="test-key", **llm_kwargs))


class TestFallbackMessages:

    @pytest.mark.parametrize("variant,kind", [
        ("morning", "morning"),
        ("evening", "evening"),
        ("custom:123", "custom"),
        ("something-else", "custom"),
    ])
    def test_variant_appropriate_text(self, variant, kind):
        assert fallback_message(variant) == FALLBACK_MESSAGES[kind]

    def test_all_fallbacks_fit_a_notification(self):
        for message in FALLBACK_MESSAGES.values():
            assert 0 < len(message) <= CHAR_LIMIT


class TestTruncateMessage:

    def test_short_message_untouched(self):
        assert truncate_message("hello", CHAR_LIMIT) == "hello"

    def test_long_message_clipped_with_ellipsis(self):
        clipped = truncate_message("x" * 300, CHAR_LIMIT)
        assert len(clipped) == CHAR_LIMIT
        assert clipped.endswith("...")


class TestBuildAlertPrompt:

    def test_includes_conditions_and_alert_name(self):
        prompt = build_alert_prompt(make_snapshot(aqi=120, pollen=6, storm=40), "morning", "Run Club", CHAR_LIMIT)
        assert 'titled "Run Club"' in prompt
        assert "Springfield" in prompt
        assert "Air Quality: 120 (Unhealthy for Sensitive Groups)" in prompt
        assert "Pollen: High (6)" in prompt
        assert "Storm risk: 40%" in prompt
        assert "starting your day" in prompt
        assert f"Maximum {CHAR_LIMIT} characters" in prompt

    def test_unknown_readings_are_omitted(self):
        prompt = build_alert_prompt(EnvironmentalSnapshot.unknown("loc-1"), "evening", None, CHAR_LIMIT)
        assert "Air Quality:" not in prompt
        assert "Current readings are unavailable" in prompt
        assert 'titled "Evening Report"' in prompt
        assert "wrapping up your day" in prompt

    def test_custom_variant_focus(self):
        prompt = build_alert_prompt(make_snapshot(), "custom:abc", None, CHAR_LIMIT)
        assert 'titled "Air Quality Update"' in prompt
        assert "checking in" in prompt

    @pytest.mark.parametrize("aqi,category", [
        (0, "Good"), (50, "Good"), (51, "Moderate"), (151, "Unhealthy"), (250, "Very Unhealthy"), (400, "Hazardous"),
    ])
    def test_aqi_category(self, aqi, category):
        assert aqi_category(aqi) == category


class TestAlertGenerator:

    def test_returns_backend_text(self):
        client = FakeLLMClient(response="  Great air today, get outside!  ")
        gen = _generator(client, max_tokens=60, temperature=0.5)
        assert gen.generate(make_snapshot(), "morning", "Morning Report") == "Great air today, get outside!"

        call = client.calls[0]
        assert call["max_tokens"] == 60
        assert call["temperature"] == 0.5
        assert "178 characters" in call["system_prompt"]
        gen.close()

    def test_strips_wrapping_quotes(self):
        gen = _generator(FakeLLMClient(response='"Masks off, skies clear!"'))
        assert gen.generate(make_snapshot(), "morning") == "Masks off, skies clear!"
        gen.close()

    def test_long_output_is_truncated(self):
        gen = _generator(FakeLLMClient(response="Air " * 100))
        message = gen.generate(make_snapshot(), "evening")
        assert len(message) <= CHAR_LIMIT
        assert message.endswith("...")
        gen.close()

    @pytest.mark.parametrize("variant", ["morning", "evening", "custom:42"])
    def test_backend_error_falls_back(self, variant):
        gen = _generator(FakeLLMClient(error=RuntimeError("503 Service Unavailable")))
        message = gen.generate(make_snapshot(), variant)
        assert message == fallback_message(variant)
        assert 0 < len(message) <= CHAR_LIMIT
        assert gen.is_fallback(message, variant)
        gen.close()

    def test_empty_response_falls_back(self):
        gen = _generator(FakeLLMClient(response="   "))
        assert gen.generate(make_snapshot(), "morning") == fallback_message("morning")
        gen.close()

    def test_timeout_falls_back(self):
        client = FakeLLMClient(delay=0.5)
        gen = _generator(client, timeout_seconds=0.05)
        assert gen.generate(make_snapshot(), "evening") == fallback_message("evening")
        assert len(client.calls) == 1
        gen.close()

    def test_no_client_uses_fallback(self):
        gen = AlertGenerator(None)
        assert gen.generate(make_snapshot(), "morning") == fallback_message("morning")
        gen.close()

    def test_generated_text_is_not_a_fallback(self):
        gen = _generator(FakeLLMClient(response="Sunny and clean"))
        assert not gen.is_fallback(gen.generate(make_snapshot(), "morning"), "morning")
        gen.close()
