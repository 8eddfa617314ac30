"""OpenAI LLM client implementations."""

import logging

import requests

from .config import LLMConfig
from .llm_client import LLMClient

logger = logging.getLogger(__name__)

try:
    from openai import OpenAI
    OPENAI_AVAILABLE = True
except ImportError:
    OPENAI_AVAILABLE = False
    logger.warning("OpenAI library not installed. Install with: pip install openai")


def _messages(system_prompt: str, prompt: str) -> list:
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": prompt},
    ]


class OpenAILLMClient(LLMClient):
    """OpenAI API client for LLM completion."""

    def __init__(self, config: LLMConfig):
        """
        Initialize the OpenAI client.

        Args:
            config: LLM configuration.
        """
        if not OPENAI_AVAILABLE:
            raise ImportError(
                "OpenAI library not installed. Install with: pip install openai"
            )

        self.config = config
        # No SDK retries: a slow alert falls back instead of waiting
        self.client = OpenAI(
            api_key=config.api_key,
            base_url=config.base_url if config.base_url else None,
            timeout=config.timeout_seconds,
            max_retries=0,
        )

    def complete(self, system_prompt: str, prompt: str, max_tokens: int, temperature: float) -> str:
        """
        Complete a prompt using OpenAI's chat completions API.

        Returns:
            The LLM's response text (trimmed, possibly empty).
        """
        try:
            response = self.client.chat.completions.create(
                model=self.config.model,
                messages=_messages(system_prompt, prompt),
                temperature=temperature,
                max_tokens=max_tokens,
            )
            content = response.choices[0].message.content if response.choices else None
            return (content or "").strip()
        except Exception as e:
            logger.error(f"OpenAI API error: {e}")
            raise


class GenericHTTPLLMClient(LLMClient):
    """Generic HTTP client for OpenAI-compatible LLM APIs."""

    def __init__(self, config: LLMConfig):
        self.config = config
        self.base_url = (config.base_url or "https://api.openai.com/v1").rstrip("/")
        self.api_key = config.api_key
        self.model = config.model
        self.session = requests.Session()

    def complete(self, system_prompt: str, prompt: str, max_tokens: int, temperature: float) -> str:
        """
        Complete a prompt using a generic HTTP API (OpenAI-compatible).

        Returns:
            The LLM's response text (trimmed, possibly empty).
        """
        url = f"{self.base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        payload = {
            "model": self.model,
            "messages": _messages(system_prompt, prompt),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        try:
            response = self.session.post(
                url, json=payload, headers=headers, timeout=self.config.timeout_seconds
            )
            response.raise_for_status()
            data = response.json()
            choices = data.get("choices") or []
            if not choices:
                return ""
            content = (choices[0].get("message") or {}).get("content")
            return (content or "").strip()
        except Exception as e:
            logger.error(f"HTTP LLM API error: {e}")
            raise


def create_llm_client(config: LLMConfig):
    """Create an LLM client based on configuration, or None without an API key."""
    if not config.api_key:
        logger.warning("LLM API key not configured; alerts will use fallback text")
        return None
    if config.provider == "openai":
        return OpenAILLMClient(config)
    return GenericHTTPLLMClient(config)
