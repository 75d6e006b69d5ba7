"""
Stub LLM provider for testing enrichment plumbing.
Replays scripted responses in order, or returns empty suggestion sets -
validates end-to-end flow without calling a real model.
"""

import asyncio
from typing import Optional, Sequence, Union

from content_triage.errors import ProviderError
from content_triage.llm.base import LLMProvider

EMPTY_ENRICHMENT = '{"descriptionUpdates": [], "logEntries": [], "relationships": []}'
EMPTY_NEW_ENTITIES = '{"new_entities": []}'

ScriptedResponse = Union[str, Exception]


class StubProvider(LLMProvider):
    """Fake provider that returns scripted responses."""

    def __init__(self, responses: Optional[Sequence[ScriptedResponse]] = None, delay: float = 0.0):
        self._responses = list(responses or [])
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    @property
    def provider_name(self) -> str:
        return "stub"

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        if self.delay:
            await asyncio.sleep(self.delay)

        if self._responses:
            response = self._responses.pop(0)
            if isinstance(response, ProviderError):
                raise response
            if isinstance(response, Exception):
                raise ProviderError(self.provider_name, str(response)) from response
            return response

        # Unscripted: valid but empty output for whichever prompt was sent
        if "new_entities" in system_prompt:
            return EMPTY_NEW_ENTITIES
        return EMPTY_ENRICHMENT
