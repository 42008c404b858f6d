"""Shared Pydantic base with camelCase wire-format serialization."""
from __future__ import annotations

import time
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict


def to_camel(name: str) -> str:
    """Convert snake_case to camelCase for JSON serialization."""
    parts = name.split("_")
    return parts[0] + "".join(w.capitalize() for w in parts[1:])


def new_id() -> str:
    """Generate a fresh entity id."""
    return str(uuid.uuid4())


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds, the unit every timestamp uses."""
    return int(time.time() * 1000)


class CamelModel(BaseModel):
    """Base model that serializes to camelCase on the wire.

    - Python code uses snake_case field names (PEP 8)
    - snapshots and event payloads use camelCase when dumped ``by_alias``
    - either spelling is accepted on input
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """JSON-compatible camelCase dict."""
        return self.model_dump(mode="json", by_alias=True)
