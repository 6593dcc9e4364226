"""Environment configuration and validation.

This module defines strongly-typed application settings loaded from environment variables
(optionally via a local `.env` file).

The resolver's confidence threshold is read raw on purpose: an invalid value must not stop the
process, it falls back to the default when the resolver is built.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from intent_router.intent.feedback import DEFAULT_CORRECTION_TRIGGERS

DEFAULT_DYNAMIC_PARAM_FIELDS: tuple[str, ...] = (
    "party_name",
    "date_from",
    "date_to",
    "invoice_number",
    "company_name",
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    telegram_bot_token: str | None = Field(default=None, alias="TELEGRAM_BOT_TOKEN")

    llm_fallback_enabled: bool = Field(default=True, alias="LLM_FALLBACK_ENABLED")
    llm_api_key: str | None = Field(default=None, alias="LLM_API_KEY")
    llm_model: str = Field(default="gpt-4o-mini", alias="LLM_MODEL")
    llm_api_base: str = Field(default="https://api.openai.com/v1", alias="LLM_API_BASE")
    llm_timeout_s: float = Field(default=30.0, gt=0, alias="LLM_TIMEOUT_S")

    confidence_threshold: Any = Field(default=None, alias="RESOLVER_CONFIDENCE_THRESHOLD")
    pattern_store_path: str = Field(default="data/intent-patterns.json", alias="PATTERN_STORE_PATH")
    pattern_persist_delay_s: float = Field(default=5.0, ge=0, alias="PATTERN_PERSIST_DELAY_S")
    knowledge_path: str = Field(default="config/knowledge.md", alias="KNOWLEDGE_PATH")
    skills_path: str = Field(default="config/skills.json", alias="SKILLS_PATH")

    correction_triggers: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CORRECTION_TRIGGERS),
        alias="CORRECTION_TRIGGERS",
    )
    context_patterns: list[str] = Field(default_factory=list, alias="CONTEXT_PATTERNS")
    dynamic_param_fields: list[str] = Field(
        default_factory=lambda: list(DEFAULT_DYNAMIC_PARAM_FIELDS),
        alias="DYNAMIC_PARAM_FIELDS",
    )

    history_max_turns: int = Field(default=10, ge=0, alias="HISTORY_MAX_TURNS")

    @field_validator("correction_triggers", "context_patterns", "dynamic_param_fields")
    @classmethod
    def drop_blank_items(cls, value: list[str]) -> list[str]:
        """Remove empty strings from list settings."""

        return [item for item in value if item and item.strip()]

    def require_bot_config(self) -> None:
        """Validate the settings needed to run the chat bot.

        Raises:
            RuntimeError: If the bot token is missing, or the LLM fallback is enabled without a key.
        """

        if not self.telegram_bot_token:
            raise RuntimeError("TELEGRAM_BOT_TOKEN is required to run the bot")
        if self.llm_fallback_enabled and not self.llm_api_key:
            raise RuntimeError("LLM_API_KEY is required when LLM_FALLBACK_ENABLED=true")


def load_settings(**overrides: Any) -> Settings:
    """Load and validate settings from environment variables.

    Raises:
        RuntimeError: If the environment configuration is invalid.
    """

    try:
        return Settings(**overrides)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid environment configuration: {exc}") from exc
