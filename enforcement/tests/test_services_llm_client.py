"""Tests for the JSON-mode completion wrapper."""

import json

import httpx
import pytest
import respx
from openai import AsyncOpenAI

from enforcement.services.llm_client import LLMClient, LLMProviderError, LLMResponseFormatError

BASE_URL = "https://llm.test/v1"
COMPLETIONS_URL = f"{BASE_URL}/chat/completions"


def completion(content: str | None) -> dict:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "gpt-test",
        "choices": [{
            "index": 0,
            "message": {"role": "assistant", "content": content},
            "finish_reason": "stop",
        }],
    }


@pytest.fixture
def llm():
    client = AsyncOpenAI(api_key="test-key", base_url=BASE_URL, max_retries=0)
    return LLMClient(model="gpt-test", client=client)


class TestLLMClient:
    """Tests for parsing and error mapping."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_returns_parsed_object(self, llm):
        route = respx.post(COMPLETIONS_URL).mock(
            return_value=httpx.Response(200, json=completion('{"is_infringement": true}'))
        )

        data = await llm.complete_json("system", "user", temperature=0.4, max_tokens=50)

        assert data == {"is_infringement": True}
        sent = json.loads(route.calls.last.request.content)
        assert sent["model"] == "gpt-test"
        assert sent["temperature"] == 0.4
        assert sent["max_tokens"] == 50
        assert sent["response_format"] == {"type": "json_object"}
        assert [m["role"] for m in sent["messages"]] == ["system", "user"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_json_content(self, llm):
        respx.post(COMPLETIONS_URL).mock(return_value=httpx.Response(200, json=completion("not json")))
        with pytest.raises(LLMResponseFormatError) as exc_info:
            await llm.complete_json("s", "u")
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    @respx.mock
    async def test_json_array_rejected(self, llm):
        respx.post(COMPLETIONS_URL).mock(return_value=httpx.Response(200, json=completion("[1, 2]")))
        with pytest.raises(LLMResponseFormatError):
            await llm.complete_json("s", "u")

    @pytest.mark.asyncio
    @respx.mock
    async def test_empty_content_is_retryable(self, llm):
        respx.post(COMPLETIONS_URL).mock(return_value=httpx.Response(200, json=completion(None)))
        with pytest.raises(LLMProviderError) as exc_info:
            await llm.complete_json("s", "u")
        assert not isinstance(exc_info.value, LLMResponseFormatError)
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,retryable", [(429, True), (503, True), (400, False), (401, False)])
    async def test_status_errors(self, llm, status, retryable):
        with respx.mock:
            respx.post(COMPLETIONS_URL).mock(
                return_value=httpx.Response(status, json={"error": {"message": "nope", "type": "error"}})
            )
            with pytest.raises(LLMProviderError) as exc_info:
                await llm.complete_json("s", "u")
        assert exc_info.value.retryable is retryable

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        llm = LLMClient(api_key="")
        assert llm.configured is False
        with pytest.raises(LLMProviderError, match="OPENAI_API_KEY not configured"):
            await llm.complete_json("s", "u")
