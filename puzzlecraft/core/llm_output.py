"""
Parsing LLM text into validated models.

Parsing never raises: every helper returns a ``ParseResult`` that is either
ok (carrying the value) or a failure (carrying a short reason). Callers
decide which fallback tier to use from there.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Generic, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    value: Optional[T] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.reason is None

    @classmethod
    def success(cls, value: T) -> ParseResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, reason: str) -> ParseResult[T]:
        return cls(reason=reason)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok and self.value is not None else default


def strip_code_fences(raw: str) -> str:
    """Remove a surrounding Markdown code fence, if any."""
    return _FENCE_RE.sub("", raw.strip()).strip()


def _extract_object(text: str) -> Optional[str]:
    """Outermost ``{...}`` span, for answers wrapped in prose."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def parse_json_object(raw: Optional[str]) -> ParseResult[dict[str, Any]]:
    """Parse the first JSON object in an LLM answer."""
    if not raw or not raw.strip():
        return ParseResult.failure("empty response")
    text = strip_code_fences(raw)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        candidate = _extract_object(text)
        if candidate is None:
            return ParseResult.failure("no JSON object in response")
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as e:
            return ParseResult.failure(f"invalid JSON: {e.msg}")
    if not isinstance(data, dict):
        return ParseResult.failure(f"expected a JSON object, got {type(data).__name__}")
    return ParseResult.success(data)


def parse_model(raw: Optional[str], model: Type[M]) -> ParseResult[M]:
    """Parse an LLM answer and validate it against ``model``."""
    parsed = parse_json_object(raw)
    if not parsed.ok:
        return ParseResult.failure(parsed.reason or "unparseable")
    return validate_model(parsed.value or {}, model)


def validate_model(data: dict[str, Any], model: Type[M]) -> ParseResult[M]:
    try:
        return ParseResult.success(model.model_validate(data))
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        return ParseResult.failure(f"schema mismatch at {location or 'root'}: {first.get('msg')}")
