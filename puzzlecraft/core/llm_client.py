"""
LLM Client for puzzlecraft.

Provides one interface for every agent:
- ``generate`` / ``generate_with_images`` return raw text
- ``generate_structured`` / ``generate_structured_with_images`` return
  parsed JSON (or a validated pydantic model)
- transient provider errors (429, RESOURCE_EXHAUSTED, quota, 500, 503)
  are retried with capped exponential backoff plus jitter
- ``MockLLMClient`` answers deterministically when no key is configured
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import re
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence, Type, TypeVar, Union

import httpx
from pydantic import BaseModel, ValidationError

from puzzlecraft.config import Settings, settings as default_settings
from puzzlecraft.core.errors import LLMError, LLMResponseError
from puzzlecraft.core.llm_output import parse_json_object

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

JsonSchema = Union[dict[str, Any], Type[BaseModel]]


class LLMProvider(str, Enum):
    """Supported LLM provider (OpenRouter only)."""
    OPENROUTER = "openrouter"


# =============================================================================
# Retry policy
# =============================================================================

RETRYABLE_STATUS_CODES = frozenset({429, 500, 503})
_RATE_LIMIT_MARKERS = ("resource_exhausted", "quota", "rate limit")


def is_retryable_error(exc: BaseException) -> bool:
    """Rate-limit, quota and overloaded-upstream failures are worth retrying."""
    if isinstance(exc, LLMError):
        if exc.retryable:
            return True
        if exc.status_code in RETRYABLE_STATUS_CODES:
            return True
    if isinstance(exc, httpx.HTTPStatusError):
        if exc.response.status_code in RETRYABLE_STATUS_CODES:
            return True
    message = str(exc).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 10.0) -> float:
    """Seconds to wait before retry ``attempt`` (0-based), jitter included."""
    return min(max_delay, base_delay * (2 ** attempt) + random.uniform(0, base_delay))


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    label: str = "LLM",
) -> T:
    """Run ``operation``, retrying retryable failures up to ``max_retries`` times.

    Non-retryable errors propagate immediately; the last retryable error
    propagates once retries are exhausted.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= max_retries or not is_retryable_error(e):
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            attempt += 1
            logger.warning(f"⏳ {label} retry {attempt}/{max_retries} after {delay:.1f}s: {e}")
            await sleep(delay)


def _schema_payload(schema: JsonSchema) -> dict[str, Any]:
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return schema.model_json_schema()
    return dict(schema)


def _coerce_structured(raw: str, schema: JsonSchema) -> Any:
    parsed = parse_json_object(raw)
    if not parsed.ok:
        raise LLMResponseError(f"Structured response was not JSON: {parsed.reason}")
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        try:
            return schema.model_validate(parsed.value)
        except ValidationError as e:
            raise LLMResponseError(f"Structured response did not match schema: {e.error_count()} error(s)") from e
    return parsed.value


# =============================================================================
# Clients
# =============================================================================

class BaseLLMClient:
    """
    Shared surface for every LLM backend.

    Subclasses implement ``_complete``; prompt/image packing and structured
    parsing live here so every backend behaves the same.
    """

    is_mock: bool = False

    def __init__(self, model: str, tier: str, temperature: float = 0.4):
        self.model = model
        self.tier = tier
        self.default_temperature = temperature

    async def generate(self, prompt: str, temperature: Optional[float] = None) -> str:
        return await self._complete(self._messages(prompt), temperature)

    async def generate_with_images(
        self,
        prompt: str,
        image_urls: Sequence[str],
        temperature: Optional[float] = None,
    ) -> str:
        return await self._complete(self._messages(prompt, image_urls), temperature)

    async def generate_structured(
        self,
        prompt: str,
        schema: JsonSchema,
        temperature: Optional[float] = None,
    ) -> Any:
        """Return parsed JSON, or a validated model when ``schema`` is a model class.

        Raises ``LLMResponseError`` when the answer does not parse or validate.
        """
        raw = await self._complete(self._messages(prompt), temperature, _schema_payload(schema))
        return _coerce_structured(raw, schema)

    async def generate_structured_with_images(
        self,
        prompt: str,
        image_urls: Sequence[str],
        schema: JsonSchema,
        temperature: Optional[float] = None,
    ) -> Any:
        raw = await self._complete(
            self._messages(prompt, image_urls), temperature, _schema_payload(schema)
        )
        return _coerce_structured(raw, schema)

    async def close(self) -> None:
        """Release network resources (no-op by default)."""

    @staticmethod
    def _messages(prompt: str, image_urls: Sequence[str] = ()) -> list[dict[str, Any]]:
        if not image_urls:
            return [{"role": "user", "content": prompt}]
        parts: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        parts.extend({"type": "image_url", "image_url": {"url": url}} for url in image_urls)
        return [{"role": "user", "content": parts}]

    async def _complete(
        self,
        messages: list[dict[str, Any]],
        temperature: Optional[float],
        json_schema: Optional[dict[str, Any]] = None,
    ) -> str:
        raise NotImplementedError


class OpenRouterClient(BaseLLMClient):
    """OpenAI-compatible chat completions over OpenRouter."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[int] = None,
        *,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or default_settings
        super().__init__(
            model=model or self.settings.llm_model,
            tier=self.settings.llm_tier,
            temperature=self.settings.llm_temperature,
        )
        self.provider = LLMProvider(self.settings.llm_provider)
        self.api_key = api_key or self._get_api_key()
        self.timeout = timeout or self.settings.llm_timeout
        self.base_url = "https://openrouter.ai/api"
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None

    def _get_api_key(self) -> str:
        key = self.settings.openrouter_api_key
        if key is None:
            raise ValueError("OpenRouter API key not configured")
        return key

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {
                "Authorization": f"Bearer {self.api_key}",
                "X-Title": self.settings.app_name,
            }
            self._client = httpx.AsyncClient(timeout=self.timeout, headers=headers)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _complete(
        self,
        messages: list[dict[str, Any]],
        temperature: Optional[float],
        json_schema: Optional[dict[str, Any]] = None,
    ) -> str:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature if temperature is not None else self.default_temperature,
            "max_tokens": self.settings.llm_max_tokens,
        }
        if json_schema is not None:
            payload["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "response", "strict": False, "schema": json_schema},
            }

        data = await with_retry(
            lambda: self._post(payload),
            max_retries=self.settings.llm_max_retries,
            base_delay=self.settings.llm_retry_base_delay,
            max_delay=self.settings.llm_retry_max_delay,
            sleep=self._sleep,
            label=f"LLM {self.model}",
        )
        return self._parse_response(data)

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        start = time.time()
        try:
            response = await self.client.post(f"{self.base_url}/v1/chat/completions", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            body = e.response.text[:300]
            if status == 400:
                logger.error(f"400 Bad Request: {body}")
            raise LLMError(
                f"LLM request failed with {status}: {body}",
                status_code=status,
                retryable=status in RETRYABLE_STATUS_CODES
                or any(m in body.lower() for m in _RATE_LIMIT_MARKERS),
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"LLM transport error: {e}") from e

        data = response.json()
        usage = data.get("usage", {})
        logger.info(
            f"LLM: {time.time() - start:.2f}s, {usage.get('prompt_tokens', 0)} prompt, "
            f"{usage.get('completion_tokens', 0)} completion tokens"
        )
        return data

    def _parse_response(self, data: dict[str, Any]) -> str:
        """Extract message text from an OpenAI-compatible response."""
        choices = data.get("choices") or []
        if not choices:
            error = data.get("error")
            if error:
                message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
                raise LLMError(message, retryable=is_retryable_error(Exception(message)))
            raise LLMResponseError("LLM response had no choices")
        content = choices[0].get("message", {}).get("content")
        if isinstance(content, list):
            content = "".join(part.get("text", "") for part in content if isinstance(part, dict))
        if not content:
            raise LLMResponseError("LLM response had empty content")
        return content.strip()


# =============================================================================
# Mock client
# =============================================================================

_MODE_RE = re.compile(r"MODE:\s*(FORM|MOTION|EXPRESSION|FUNCTION)")

_MOCK_QUADRANT_PIECES: dict[str, list[dict[str, Any]]] = {
    "FORM": [
        {"text": "Rounded silhouettes with soft edges", "priority": 1},
        {"text": "Warm grain over clean geometry", "priority": 3},
        {"text": "Muted palette anchors the frame", "priority": 5},
    ],
    "MOTION": [
        {"text": "Slow drift instead of snaps", "priority": 1},
        {"text": "Ease-out pacing between beats", "priority": 3},
        {"text": "Subtle flicker as texture", "priority": 5},
    ],
    "EXPRESSION": [
        {"text": "Calm confidence over excitement", "priority": 1},
        {"text": "Nostalgia without sentimentality", "priority": 3},
        {"text": "Quiet wonder at machines", "priority": 5},
    ],
    "FUNCTION": [
        {"text": "Hook viewers in ten seconds", "priority": 1},
        {"text": "Readable on small screens", "priority": 3},
        {"text": "Loops cleanly for social", "priority": 5},
    ],
}

_MOCK_PIECE_STATEMENTS: dict[str, list[str]] = {
    "FORM": ["Soft analog textures over crisp vectors", "Warm palette framing cool highlights"],
    "MOTION": ["Gentle drift with occasional glitches", "Breathing rhythm between scenes"],
    "EXPRESSION": ["Calm confidence over excitement", "Professional warmth balanced with clarity"],
    "FUNCTION": ["Explain the premise in one shot", "Invite viewers to linger"],
}


def _mock_response(prompt: str) -> str:
    """Deterministic, schema-shaped answer keyed by the agent named in the prompt."""
    mode_match = _MODE_RE.search(prompt)
    mode = mode_match.group(1) if mode_match else "EXPRESSION"

    if "Fragment & Context Agent" in prompt:
        return json.dumps({"fragments": [], "clusters": []})
    if "Mascot Agent (self)" in prompt:
        return json.dumps({
            "central_question": "What is the core feeling we want to preserve?",
            "puzzle_type": "CLARIFY",
            "primary_modes": ["EXPRESSION"],
            "rationale": "User brief mentions analog warmth; clarify feeling first.",
        })
    if "Mascot Agent (suggest)" in prompt:
        return json.dumps({
            "should_suggest": True,
            "central_question": "Which analog textures should carry the digital story?",
            "puzzle_type": "EXPAND",
            "primary_modes": ["FORM", "MOTION"],
            "rationale": "Several fragments circle analog texture without committing.",
        })
    if "Puzzle Designer Agent" in prompt and 'task: "summarize"' in prompt:
        return json.dumps({
            "title": "Analog Warmth",
            "one_line": "Warm analog textures carry a calm digital story.",
            "direction_statement": "Analog-warm direction with calm motion.",
            "reasons": [
                "Process aim favors analog warmth",
                "Fragments lean retro",
                "Motion should stay calm",
            ],
            "open_questions": ["Confirm channel and audience"],
            "tags": ["analog", "warmth", "calm"],
        })
    if "Puzzle Designer Agent" in prompt:
        return json.dumps({
            "central_question": "How do we keep analog warmth without losing clarity?",
            "anchors": {"starting": "Analog warmth as the emotional hook", "solution": ""},
            "seed_pieces": [],
        })
    if "Central Question Agent" in prompt:
        return json.dumps({"central_question": 'What makes "analog warmth" worth keeping here?'})
    if "Quadrant Piece Agent" in prompt:
        return json.dumps({"pieces": [{"mode": mode, "text": text} for text in _MOCK_PIECE_STATEMENTS[mode]]})
    if "Quadrant Agent" in prompt:
        return json.dumps({"pieces": _MOCK_QUADRANT_PIECES[mode]})
    return "{}"


class MockLLMClient(BaseLLMClient):
    """
    Deterministic stand-in used whenever no credential is configured.

    ``responses`` maps prompt substrings to canned answers and takes
    precedence over the built-in table. Every prompt is recorded in
    ``prompts`` so tests can count calls per agent.
    """

    is_mock = True

    def __init__(
        self,
        responses: Optional[dict[str, str]] = None,
        *,
        model: str = "mock",
        tier: str = "mock",
    ):
        super().__init__(model=model, tier=tier)
        self.responses = dict(responses or {})
        self.prompts: list[str] = []

    def calls_matching(self, marker: str) -> int:
        return sum(1 for p in self.prompts if marker in p)

    async def _complete(
        self,
        messages: list[dict[str, Any]],
        temperature: Optional[float],
        json_schema: Optional[dict[str, Any]] = None,
    ) -> str:
        content = messages[-1]["content"]
        if isinstance(content, list):
            content = "".join(part.get("text", "") for part in content)
        self.prompts.append(content)
        for marker, answer in self.responses.items():
            if marker in content:
                return answer
        return _mock_response(content)


def get_llm_client(settings: Optional[Settings] = None) -> BaseLLMClient:
    """Configured client: OpenRouter with a key, the mock without one."""
    settings = settings or default_settings
    if not settings.openrouter_api_key:
        logger.info("🧪 No OpenRouter key configured; using MockLLMClient")
        return MockLLMClient()
    return OpenRouterClient(settings=settings)
