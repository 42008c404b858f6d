"""Tests for the LLM client (puzzlecraft/core/llm_client.py).

Covers: retry classification, backoff, with_retry, OpenRouterClient
request/response handling, MockLLMClient, get_llm_client.
"""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from pydantic import BaseModel

from puzzlecraft.config import Settings
from puzzlecraft.core.errors import LLMError, LLMResponseError
from puzzlecraft.core.llm_client import (
    MockLLMClient,
    OpenRouterClient,
    backoff_delay,
    get_llm_client,
    is_retryable_error,
    with_retry,
)


def _settings(**overrides) -> Settings:
    values = {"openrouter_api_key": "test-key", "llm_retry_base_delay": 0.01, "llm_retry_max_delay": 0.05}
    values.update(overrides)
    return Settings(**values)


def _completion(content) -> dict:
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 3},
    }


class _Question(BaseModel):
    central_question: str


# ---------------------------------------------------------------------------
# Retry classification
# ---------------------------------------------------------------------------


class TestIsRetryable:

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_retryable_status_codes(self, status: int) -> None:
        assert is_retryable_error(LLMError("upstream", status_code=status))

    def test_client_errors_are_not_retryable(self) -> None:
        assert not is_retryable_error(LLMError("bad request", status_code=400))
        assert not is_retryable_error(ValueError("boom"))

    @pytest.mark.parametrize("message", ["RESOURCE_EXHAUSTED", "Daily quota exceeded", "Rate limit hit"])
    def test_rate_limit_messages(self, message: str) -> None:
        assert is_retryable_error(RuntimeError(message))

    def test_flagged_llm_error(self) -> None:
        assert is_retryable_error(LLMError("whatever", retryable=True))

    def test_httpx_status_error(self) -> None:
        request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")
        response = httpx.Response(503, request=request)
        error = httpx.HTTPStatusError("overloaded", request=request, response=response)
        assert is_retryable_error(error)


class TestBackoff:

    @patch("puzzlecraft.core.llm_client.random.uniform", return_value=0.0)
    def test_exponential_without_jitter(self, _uniform) -> None:
        assert backoff_delay(0) == 1.0
        assert backoff_delay(1) == 2.0
        assert backoff_delay(2) == 4.0

    @patch("puzzlecraft.core.llm_client.random.uniform", return_value=0.0)
    def test_capped(self, _uniform) -> None:
        assert backoff_delay(6) == 10.0

    def test_jitter_stays_in_range(self) -> None:
        for _ in range(20):
            assert 1.0 <= backoff_delay(0) <= 2.0


# ---------------------------------------------------------------------------
# with_retry
# ---------------------------------------------------------------------------


class TestWithRetry:

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self) -> None:
        operation = AsyncMock(side_effect=[
            LLMError("429", status_code=429),
            LLMError("RESOURCE_EXHAUSTED"),
            "ok",
        ])
        sleep = AsyncMock()

        result = await with_retry(operation, sleep=sleep)

        assert result == "ok"
        assert operation.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self) -> None:
        operation = AsyncMock(side_effect=LLMError("bad", status_code=400))
        sleep = AsyncMock()

        with pytest.raises(LLMError, match="bad"):
            await with_retry(operation, sleep=sleep)

        assert operation.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self) -> None:
        operation = AsyncMock(side_effect=LLMError("overloaded", status_code=503))
        sleep = AsyncMock()

        with pytest.raises(LLMError, match="overloaded"):
            await with_retry(operation, max_retries=3, sleep=sleep)

        assert operation.await_count == 4
        assert sleep.await_count == 3
        for call in sleep.await_args_list:
            assert call.args[0] <= 10.0


# ---------------------------------------------------------------------------
# OpenRouterClient
# ---------------------------------------------------------------------------


class TestOpenRouterClient:

    def test_requires_api_key(self) -> None:
        with pytest.raises(ValueError, match="not configured"):
            OpenRouterClient(settings=Settings(openrouter_api_key=None))

    def test_parse_plain_content(self) -> None:
        client = OpenRouterClient(settings=_settings())
        assert client._parse_response(_completion("  hello  ")) == "hello"

    def test_parse_content_parts(self) -> None:
        client = OpenRouterClient(settings=_settings())
        content = [{"type": "text", "text": "one "}, {"type": "text", "text": "two"}]
        assert client._parse_response(_completion(content)) == "one two"

    def test_parse_provider_error(self) -> None:
        client = OpenRouterClient(settings=_settings())
        with pytest.raises(LLMError) as exc_info:
            client._parse_response({"error": {"message": "Quota exceeded for model"}})
        assert exc_info.value.retryable is True

    def test_parse_no_choices(self) -> None:
        client = OpenRouterClient(settings=_settings())
        with pytest.raises(LLMResponseError):
            client._parse_response({"choices": []})
        with pytest.raises(LLMResponseError):
            client._parse_response(_completion(""))

    @pytest.mark.asyncio
    async def test_generate_retries_over_http(self) -> None:
        calls: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(json.loads(request.content))
            if len(calls) == 1:
                return httpx.Response(429, text="rate limited")
            return httpx.Response(200, json=_completion('{"central_question": "Why warm?"}'))

        sleep = AsyncMock()
        client = OpenRouterClient(settings=_settings(), sleep=sleep)
        client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        result = await client.generate_structured("prompt", _Question)
        await client.close()

        assert isinstance(result, _Question)
        assert result.central_question == "Why warm?"
        assert len(calls) == 2
        assert sleep.await_count == 1
        assert calls[0]["response_format"]["type"] == "json_schema"
        assert calls[0]["messages"] == [{"role": "user", "content": "prompt"}]

    @pytest.mark.asyncio
    async def test_bad_request_is_not_retried(self) -> None:
        handler_calls: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            handler_calls.append(1)
            return httpx.Response(400, text="invalid model")

        client = OpenRouterClient(settings=_settings(), sleep=AsyncMock())
        client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        with pytest.raises(LLMError) as exc_info:
            await client.generate("prompt")
        await client.close()

        assert exc_info.value.status_code == 400
        assert len(handler_calls) == 1

    @pytest.mark.asyncio
    async def test_images_are_sent_as_content_parts(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=_completion("seen"))

        client = OpenRouterClient(settings=_settings())
        client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        assert await client.generate_with_images("look", ["https://img/1.png"]) == "seen"
        await client.close()

        parts = bodies[0]["messages"][0]["content"]
        assert parts[0] == {"type": "text", "text": "look"}
        assert parts[1]["image_url"]["url"] == "https://img/1.png"

    @pytest.mark.asyncio
    async def test_structured_response_that_is_not_json(self) -> None:
        client = OpenRouterClient(settings=_settings())
        client._post = AsyncMock(return_value=_completion("not json at all"))
        with pytest.raises(LLMResponseError, match="not JSON"):
            await client.generate_structured("prompt", {"type": "object"})


# ---------------------------------------------------------------------------
# MockLLMClient / factory
# ---------------------------------------------------------------------------


class TestMockLLMClient:

    @pytest.mark.asyncio
    async def test_records_prompts_and_counts_calls(self) -> None:
        llm = MockLLMClient()
        await llm.generate("You are the Central Question Agent.\n...")
        await llm.generate("You are the FORM Quadrant Agent\nMODE: FORM - shapes")

        assert len(llm.prompts) == 2
        assert llm.calls_matching("Central Question Agent") == 1
        assert llm.calls_matching("Quadrant Agent") == 1

    @pytest.mark.asyncio
    async def test_answers_are_deterministic_and_mode_aware(self) -> None:
        llm = MockLLMClient()
        motion = json.loads(await llm.generate("You are the MOTION Quadrant Agent\nMODE: MOTION - x"))
        again = json.loads(await llm.generate("You are the MOTION Quadrant Agent\nMODE: MOTION - x"))
        assert motion == again
        assert motion["pieces"][0]["text"] == "Slow drift instead of snaps"

    @pytest.mark.asyncio
    async def test_responses_override_builtin_table(self) -> None:
        llm = MockLLMClient(responses={"Central Question Agent": "not json"})
        assert await llm.generate("You are the Central Question Agent.") == "not json"

    @pytest.mark.asyncio
    async def test_structured_with_images(self) -> None:
        llm = MockLLMClient()
        result = await llm.generate_structured_with_images(
            "You are the Central Question Agent.", ["https://img/1.png"], _Question
        )
        assert result.central_question == 'What makes "analog warmth" worth keeping here?'

    @pytest.mark.asyncio
    async def test_unknown_prompt_yields_empty_object(self) -> None:
        assert await MockLLMClient().generate("hello") == "{}"


class TestGetLLMClient:

    def test_mock_without_key(self) -> None:
        client = get_llm_client(Settings(openrouter_api_key=None))
        assert isinstance(client, MockLLMClient)
        assert client.is_mock

    def test_openrouter_with_key(self) -> None:
        client = get_llm_client(_settings(llm_model="google/gemini-2.5-pro"))
        assert isinstance(client, OpenRouterClient)
        assert client.model == "google/gemini-2.5-pro"
        assert not client.is_mock
