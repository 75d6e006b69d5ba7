"""
Chat-completions provider for OpenAI-compatible endpoints (OpenRouter,
OpenAI, local gateways). Retries 429/5xx/timeouts with exponential backoff;
every failure surfaces as ProviderError.
"""

import asyncio
from typing import Any, Optional

import httpx
import structlog

from content_triage.config import settings
from content_triage.errors import ProviderError
from content_triage.llm.base import LLMProvider

logger = structlog.get_logger(__name__)


class OpenAICompatibleProvider(LLMProvider):

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.LLM_API_KEY
        self.base_url = base_url or settings.LLM_BASE_URL
        self.model = model or settings.LLM_MODEL
        self.timeout = timeout if timeout is not None else settings.LLM_TIMEOUT_SECONDS
        self.max_retries = max(1, max_retries if max_retries is not None else settings.LLM_MAX_RETRIES)
        self.retry_delay = retry_delay if retry_delay is not None else settings.LLM_RETRY_DELAY_SECONDS
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "openai_compatible"

    @property
    def call_deadline(self) -> float:
        """Upper bound for one generate() including retries and backoff."""
        backoff = sum(self.retry_delay * (2 ** attempt) for attempt in range(self.max_retries - 1))
        return self.timeout * self.max_retries + backoff

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        if not self.api_key:
            raise ProviderError(self.provider_name, "LLM service is not configured")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": settings.LLM_MAX_TOKENS,
            "temperature": settings.LLM_TEMPERATURE,
        }
        data = await self._post(payload)
        return self._extract_text(data)

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(self.max_retries):
                last = attempt == self.max_retries - 1
                try:
                    response = await client.post(self.base_url, headers=headers, json=payload)
                    response.raise_for_status()
                    return response.json()
                except httpx.HTTPStatusError as e:
                    status_code = e.response.status_code
                    logger.warning(
                        "llm_http_error",
                        status_code=status_code,
                        attempt=attempt + 1,
                        body=e.response.text[:500],
                    )
                    if status_code == 429:
                        if last:
                            raise ProviderError(self.provider_name, "rate limit or quota exceeded") from e
                    elif 400 <= status_code < 500:
                        raise ProviderError(self.provider_name, f"request rejected ({status_code})") from e
                    elif last:
                        raise ProviderError(self.provider_name, f"service unavailable ({status_code})") from e
                except httpx.TimeoutException as e:
                    logger.warning("llm_timeout", attempt=attempt + 1)
                    if last:
                        raise ProviderError(self.provider_name, "request timed out") from e
                except (httpx.TransportError, ValueError) as e:
                    logger.warning("llm_transport_error", attempt=attempt + 1, error=str(e))
                    if last:
                        raise ProviderError(self.provider_name, "network error") from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

        raise ProviderError(self.provider_name, "no response")

    def _extract_text(self, data: dict[str, Any]) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(self.provider_name, "unexpected response envelope") from e
        if not isinstance(content, str):
            raise ProviderError(self.provider_name, "unexpected response envelope")
        return content
