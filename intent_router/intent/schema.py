"""Intent and pattern-store schema (Pydantic models).

These models are the contract between the resolver, the pattern store file on disk and the external
fallback. Python attributes are snake_case; the JSON form keeps the camelCase keys used by the
persisted pattern-store file (`skillId`, `suggestedReply`, `hitCount`, ...).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNKNOWN_ACTION = "unknown"

Tier = Literal[1, 2, 3]


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""

    return datetime.now(UTC)


class Intent(BaseModel):
    """A resolved application intent: which skill to run, which action, and with what parameters."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    skill_id: str | None = Field(default=None, alias="skillId")
    action: str = UNKNOWN_ACTION
    params: dict[str, Any] = Field(default_factory=dict)
    suggested_reply: str | None = Field(default=None, alias="suggestedReply")

    @field_validator("skill_id", mode="before")
    @classmethod
    def coerce_skill_id(cls, value: Any) -> str | None:
        if value is None:
            return None
        return str(value)

    @field_validator("action", mode="before")
    @classmethod
    def coerce_action(cls, value: Any) -> str:
        return value if isinstance(value, str) else UNKNOWN_ACTION

    @field_validator("params", mode="before")
    @classmethod
    def coerce_params(cls, value: Any) -> dict[str, Any]:
        # Collaborators sometimes return `null` or a positional array; neither is usable.
        return value if isinstance(value, dict) else {}

    @field_validator("suggested_reply", mode="before")
    @classmethod
    def coerce_suggested_reply(cls, value: Any) -> str | None:
        if not isinstance(value, str):
            return None
        return value.strip() or None


class Actionable(BaseModel):
    """An intent the application can execute."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["actionable"] = "actionable"
    skill_id: str
    action: str
    params: dict[str, Any] = Field(default_factory=dict)


class Unknown(BaseModel):
    """An intent that maps to no skill; carries the reply to show the user instead."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["unknown"] = "unknown"
    suggested_reply: str | None = None


def classify_intent(intent: Intent) -> Actionable | Unknown:
    """Tag an intent as `Actionable` (known skill and action) or `Unknown`."""

    if intent.skill_id is not None and intent.action != UNKNOWN_ACTION:
        return Actionable(skill_id=intent.skill_id, action=intent.action, params=intent.params)
    return Unknown(suggested_reply=intent.suggested_reply)


class LearningEntry(BaseModel):
    """A cached resolution plus its usage statistics."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    intent: Intent
    hit_count: int = Field(default=1, ge=1, alias="hitCount")
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    last_used_at: datetime = Field(default_factory=utc_now, alias="lastUsedAt")

    @field_validator("created_at", "last_used_at")
    @classmethod
    def as_utc(cls, value: datetime) -> datetime:
        # Backups may carry timestamps without an offset; those are read as UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class PatternStoreFile(BaseModel):
    """Persisted form of the pattern store."""

    model_config = ConfigDict(extra="ignore")

    version: int = 1
    entries: dict[str, LearningEntry] = Field(default_factory=dict)


class ResolutionResult(BaseModel):
    """Resolver output for a single chat message."""

    model_config = ConfigDict(populate_by_name=True)

    skill_id: str | None = Field(default=None, alias="skillId")
    action: str = UNKNOWN_ACTION
    params: dict[str, Any] = Field(default_factory=dict)
    suggested_reply: str | None = Field(default=None, alias="suggestedReply")
    tier: Tier
    confidence: float = Field(ge=0.0, le=1.0)

    @classmethod
    def from_intent(cls, intent: Intent, *, tier: Tier, confidence: float) -> ResolutionResult:
        return cls(
            skill_id=intent.skill_id,
            action=intent.action,
            params=dict(intent.params),
            suggested_reply=intent.suggested_reply,
            tier=tier,
            confidence=confidence,
        )

    @classmethod
    def unknown(cls, suggested_reply: str | None = None, *, tier: Tier = 3) -> ResolutionResult:
        return cls(suggested_reply=suggested_reply, tier=tier, confidence=0.0)


class ChatTurn(BaseModel):
    """One message of recent conversation history, passed to the fallback for context."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str


class MetricsSnapshot(BaseModel):
    """Point-in-time resolver counters."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    total: int = 0
    tier1_hits: int = Field(default=0, alias="tier1Hits")
    tier2_hits: int = Field(default=0, alias="tier2Hits")
    tier3_hits: int = Field(default=0, alias="tier3Hits")
    corrections: int = 0
    pattern_count: int = Field(default=0, alias="patternCount")
