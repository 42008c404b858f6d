"""Exception hierarchy shared across puzzlecraft."""
from __future__ import annotations

from typing import Optional


class PuzzlecraftError(Exception):
    """Base class for all puzzlecraft errors."""


class LLMError(PuzzlecraftError):
    """An LLM provider call failed.

    ``retryable`` is set by the client when the failure was classified as
    transient (rate limit, quota, overloaded upstream).
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class LLMResponseError(LLMError):
    """The provider answered, but the payload had no usable content."""


class StorageError(PuzzlecraftError):
    """A storage adapter could not load or save a snapshot."""


class StoreInvariantError(PuzzlecraftError):
    """A store command would break a data-model invariant.

    Raised before anything is committed; the pending draft is discarded.
    """

    def __init__(self, message: str, *, entity_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.entity_id = entity_id
