"""
Puzzlecraft Configuration

Environment-based configuration for the puzzle backbone.
"""
import logging
from functools import lru_cache
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Models the OpenRouter client accepts without a warning.
# Slugs must match OpenRouter IDs exactly.
KNOWN_MODEL_IDS: list[str] = [
    "google/gemini-2.5-flash",
    "google/gemini-2.5-pro",
    "anthropic/claude-sonnet-4.6",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service Info
    app_name: str = "Puzzlecraft"
    debug: bool = False
    log_level: str = "INFO"

    # Cloud LLM Configuration (OpenRouter only)
    llm_provider: str = "openrouter"
    llm_model: str = "google/gemini-2.5-flash"
    llm_tier: str = "standard"  # reported to callers, e.g. "free" vs "standard"
    llm_timeout: int = 60  # seconds, per HTTP request
    llm_temperature: float = 0.4
    llm_max_tokens: int = 2048

    # API Keys for Cloud Providers. Without a key the mock client is used.
    openrouter_api_key: Optional[str] = None

    # Retry policy for rate-limited / overloaded providers
    llm_max_retries: int = 3
    llm_retry_base_delay: float = 1.0  # seconds
    llm_retry_max_delay: float = 10.0  # seconds

    # Orchestrator
    fragment_debounce_seconds: float = 0.5

    # Puzzle sessions
    quadrant_timeout_seconds: float = 15.0
    pieces_per_quadrant: int = 5
    central_question_fragment_limit: int = 8
    central_question_summary_limit: int = 3

    # Context store. 0 keeps every snapshot.
    history_limit: int = 0

    # Snapshot file for the JSON storage adapter (None = memory only)
    storage_path: Optional[str] = None

    @model_validator(mode="after")
    def _normalise(self) -> "Settings":
        """Upper-case the log level and reject non-positive timeouts."""
        self.log_level = self.log_level.upper()
        if self.quadrant_timeout_seconds <= 0:
            raise ValueError("quadrant_timeout_seconds must be positive")
        if self.llm_timeout <= 0:
            raise ValueError("llm_timeout must be positive")
        if self.llm_model not in KNOWN_MODEL_IDS:
            logging.getLogger(__name__).warning(
                f"LLM model {self.llm_model!r} is not in the known model list; "
                "structured output support is not guaranteed."
            )
        return self

    model_config = SettingsConfigDict(
        env_prefix="PUZZLECRAFT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience access
settings = get_settings()
