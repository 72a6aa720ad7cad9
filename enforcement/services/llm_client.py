"""JSON-mode chat completions through the OpenAI API."""

import json
import logging
from typing import Any

from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    RateLimitError,
)

from enforcement.config import get_settings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = (408, 409, 429, 500, 502, 503, 504)


class LLMProviderError(RuntimeError):
    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class LLMResponseFormatError(LLMProviderError):
    """The completion succeeded but its content is not a JSON object."""


class LLMClient:
    """Thin wrapper returning parsed JSON objects from chat completions."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float = 30.0,
        client: AsyncOpenAI | None = None,
    ):
        settings = get_settings()
        self.model = model or settings.openai_model
        api_key = api_key if api_key is not None else settings.openai_api_key
        if client is not None:
            self._client = client
        elif api_key:
            self._client = AsyncOpenAI(api_key=api_key, timeout=timeout)
        else:
            self._client = None

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def complete_json(
        self,
        system: str,
        user: str,
        temperature: float = 0.2,
        max_tokens: int = 200,
    ) -> dict[str, Any]:
        """Run one completion and parse its content as a JSON object.

        Raises:
            LLMProviderError: on API failure or a response that is not a JSON object
        """
        if self._client is None:
            raise LLMProviderError("OPENAI_API_KEY not configured", retryable=False)

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
            )
        except (RateLimitError, APITimeoutError, APIConnectionError) as e:
            raise LLMProviderError(str(e), retryable=True) from e
        except APIStatusError as e:
            raise LLMProviderError(str(e), retryable=e.status_code in RETRYABLE_STATUS_CODES) from e
        except APIError as e:
            raise LLMProviderError(str(e), retryable=False) from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LLMProviderError("Empty response from LLM", retryable=True)

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning(f"LLM returned non-JSON content: {content[:200]}")
            raise LLMResponseFormatError(f"Invalid JSON from LLM: {e}", retryable=False) from e
        if not isinstance(data, dict):
            raise LLMResponseFormatError("LLM response is not a JSON object", retryable=False)
        return data
