"""
Abstract base class for LLM providers.
Enrichment only ever sees generate(system_prompt, user_prompt) -> text.
"""

from abc import ABC, abstractmethod

from content_triage.config import settings


class LLMProvider(ABC):
    """
    Abstract base class for all LLM providers.

    Every provider must:
    1. Accept a system prompt and a user prompt
    2. Return the raw completion text (parsing is the caller's job)
    3. Report its name
    4. Raise ProviderError on any failure: quota, rate limit, timeout,
       network, malformed envelope
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique identifier: 'openai_compatible', 'stub'"""
        ...

    @abstractmethod
    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        """Return completion text. Must raise ProviderError on failure."""
        ...

    @property
    def call_deadline(self) -> float:
        """Seconds the caller waits for one generate() before giving up."""
        return settings.LLM_TIMEOUT_SECONDS

    async def health_check(self) -> bool:
        return True
