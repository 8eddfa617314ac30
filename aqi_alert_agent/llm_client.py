"""Abstract LLM client interface."""

from abc import ABC, abstractmethod


class LLMClient(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    def complete(self, system_prompt: str, prompt: str, max_tokens: int, temperature: float) -> str:
        """
        Complete a prompt using the LLM.

        Args:
            system_prompt: Instructions sent as the system message.
            prompt: The user prompt to send to the LLM.
            max_tokens: Maximum number of tokens in the response.
            temperature: Sampling temperature (0.0-1.0).

        Returns:
            The LLM's response text (trimmed).
        """
        pass
