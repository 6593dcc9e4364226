"""Tiered intent resolution pipeline.

Each message goes through, strictly in order, stopping at the first success:
    1) Correction trigger ("wrong"): forget the previously resolved pattern.
    2) Context-dependent message ("5", "more", "his"): skip the cache, ask the fallback.
    3) Normalize the message into a pattern-store key.
    4) Tier 1: exact match in the pattern store.
    5) Tier 2: fuzzy (Jaccard) match over all stored patterns.
    6) Tier 3: external fallback; actionable answers without per-query parameters are memorized.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from numbers import Real
from typing import Any

from intent_router.config.settings import DEFAULT_DYNAMIC_PARAM_FIELDS, Settings
from intent_router.config.skills import SkillCatalog
from intent_router.intent.context import compile_context_patterns, is_context_dependent
from intent_router.intent.fallback import (
    FallbackError,
    FallbackTimeoutError,
    IntentFallback,
    LLMConfig,
    LLMFallback,
)
from intent_router.intent.feedback import DEFAULT_CORRECTION_TRIGGERS, is_correction_trigger
from intent_router.intent.fuzzy import find_best_match
from intent_router.intent.metrics import Metrics
from intent_router.intent.normalize import Normalizer
from intent_router.intent.pattern_store import DEFAULT_PERSIST_DELAY_S, PatternStore
from intent_router.intent.schema import (
    Actionable,
    ChatTurn,
    Intent,
    MetricsSnapshot,
    ResolutionResult,
    classify_intent,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_THRESHOLD = 0.7

CORRECTION_ACTION = "correction"
CORRECTION_REPLY = "Got it, I'll forget that last response. Please try again."
CONTEXT_UNAVAILABLE_REPLY = (
    "This query requires conversation context that is not available locally. "
    "Please rephrase your question."
)
UNRESOLVED_REPLY = "I could not understand your query locally. Please try rephrasing."

_LOG_TEXT_LIMIT = 50


def validate_threshold(value: Any) -> float:
    """Return `value` as a similarity threshold, or the 0.7 default if it is unusable.

    Accepts finite numbers (or numeric strings) in [0.0, 1.0]. Anything else, including a missing
    value, NaN, booleans and out-of-range numbers, gives the default; invalid values log a warning.
    """

    if value is None:
        return DEFAULT_CONFIDENCE_THRESHOLD

    number: float | None = None
    if isinstance(value, Real) and not isinstance(value, bool):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            number = None

    if number is None or not math.isfinite(number) or not 0.0 <= number <= 1.0:
        logger.warning(
            "confidence threshold %r is not a number in [0.0, 1.0], using default %.1f",
            value,
            DEFAULT_CONFIDENCE_THRESHOLD,
        )
        return DEFAULT_CONFIDENCE_THRESHOLD
    return number


def _truncate(text: str) -> str:
    return text if len(text) <= _LOG_TEXT_LIMIT else text[:_LOG_TEXT_LIMIT] + "..."


@dataclass(frozen=True)
class ResolverConfig:
    """Resolver tuning and wiring options."""

    pattern_store_path: str = "data/intent-patterns.json"
    confidence_threshold: Any = DEFAULT_CONFIDENCE_THRESHOLD
    fallback_enabled: bool = True
    fallback_timeout_s: float | None = 30.0
    correction_triggers: tuple[str, ...] = DEFAULT_CORRECTION_TRIGGERS
    context_patterns: tuple[str, ...] = ()
    dynamic_param_fields: tuple[str, ...] = DEFAULT_DYNAMIC_PARAM_FIELDS
    persist_delay_s: float = DEFAULT_PERSIST_DELAY_S
    knowledge_path: str | None = None
    transliterations: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Settings) -> ResolverConfig:
        return cls(
            pattern_store_path=settings.pattern_store_path,
            confidence_threshold=settings.confidence_threshold,
            fallback_enabled=settings.llm_fallback_enabled,
            fallback_timeout_s=settings.llm_timeout_s,
            correction_triggers=tuple(settings.correction_triggers),
            context_patterns=tuple(settings.context_patterns),
            dynamic_param_fields=tuple(settings.dynamic_param_fields),
            persist_delay_s=settings.pattern_persist_delay_s,
            knowledge_path=settings.knowledge_path,
        )


class IntentResolver:
    """Resolves chat messages to intents, learning from fallback answers.

    One instance owns its pattern store, normalizer and metrics; independent instances share no
    state. `last_resolved_key` is the pattern a following correction trigger would remove.
    """

    def __init__(
            self,
            config: ResolverConfig | None = None,
            *,
            fallback: IntentFallback | None = None,
            store: PatternStore | None = None,
            normalizer: Normalizer | None = None,
    ) -> None:
        self.config = config or ResolverConfig()
        self.threshold = validate_threshold(self.config.confidence_threshold)

        if normalizer is None:
            if self.config.transliterations or not self.config.knowledge_path:
                normalizer = Normalizer(self.config.transliterations)
            else:
                normalizer = Normalizer.from_knowledge_file(self.config.knowledge_path)
        self.normalizer = normalizer

        if store is None:
            store = PatternStore(
                self.config.pattern_store_path,
                persist_delay_s=self.config.persist_delay_s,
            )
            store.load()
        self.store = store

        self._fallback = fallback
        self._correction_triggers = self.config.correction_triggers
        self._context_patterns = compile_context_patterns(self.config.context_patterns)
        self._dynamic_fields = frozenset(self.config.dynamic_param_fields)
        self.metrics = Metrics()
        self.last_resolved_key: str | None = None

    @property
    def fallback_enabled(self) -> bool:
        return self.config.fallback_enabled and self._fallback is not None

    async def resolve_intent(
            self,
            text: str,
            external_config: SkillCatalog | None = None,
            external_auth: str | None = None,
            history: Sequence[ChatTurn] | None = None,
    ) -> ResolutionResult:
        """Resolve one chat message.

        Args:
            text: Raw user message.
            external_config: Skill catalog offered to the fallback.
            external_auth: Credential for the fallback service.
            history: Recent conversation turns, used only by the fallback.

        Raises:
            FallbackError: Propagated from the fallback (including timeouts).
        """

        if not text or not text.strip():
            return ResolutionResult.unknown()

        if is_correction_trigger(text, self._correction_triggers):
            return self._apply_correction()

        catalog = external_config or SkillCatalog()
        turns = list(history or ())

        if is_context_dependent(text, self._context_patterns):
            return await self._resolve_with_context(text, catalog, external_auth, turns)

        key = self.normalizer.normalize(text)
        if not key:
            return ResolutionResult.unknown()

        entry = self.store.get(key)
        if entry is not None:
            self.store.record_hit(key)
            self.metrics.record(1)
            self.last_resolved_key = key
            logger.info("resolved tier=1 confidence=1.00 text=%r", _truncate(text))
            return ResolutionResult.from_intent(entry.intent, tier=1, confidence=1.0)

        match = find_best_match(key, self.store.get_all(), self.threshold)
        if match is not None:
            self.store.record_hit(match.key)
            self.metrics.record(2)
            self.last_resolved_key = match.key
            logger.info(
                "resolved tier=2 confidence=%.2f key=%r text=%r",
                match.confidence,
                match.key,
                _truncate(text),
            )
            return ResolutionResult.from_intent(match.entry.intent, tier=2, confidence=match.confidence)

        if not self.fallback_enabled:
            self.last_resolved_key = None
            return ResolutionResult.unknown(UNRESOLVED_REPLY)

        intent = await self._call_fallback(text, catalog, external_auth, turns)
        self.metrics.record(3)
        logger.info("resolved tier=3 confidence=1.00 text=%r", _truncate(text))

        if isinstance(classify_intent(intent), Actionable) and not self._has_dynamic_params(intent):
            self.store.put(key, intent)
            self.last_resolved_key = key
        else:
            self.last_resolved_key = None

        return ResolutionResult.from_intent(intent, tier=3, confidence=1.0)

    def get_metrics(self) -> MetricsSnapshot:
        return self.metrics.snapshot(self.store.size())

    def export_patterns(self) -> str:
        return self.store.export_json()

    def import_patterns(self, payload: str | bytes) -> int:
        """Merge a pattern backup into the store (see `PatternStore.import_json`)."""

        return self.store.import_json(payload)

    def close(self) -> None:
        """Persist pending store changes; call at shutdown."""

        self.store.flush()

    def _apply_correction(self) -> ResolutionResult:
        self.metrics.record_correction()
        key = self.last_resolved_key
        if key is not None:
            if self.store.remove(key):
                self.store.flush()
                logger.info("correction removed pattern key=%r", key)
            self.last_resolved_key = None
        return ResolutionResult(
            action=CORRECTION_ACTION,
            suggested_reply=CORRECTION_REPLY,
            tier=1,
            confidence=1.0,
        )

    async def _resolve_with_context(
            self,
            text: str,
            catalog: SkillCatalog,
            auth: str | None,
            history: list[ChatTurn],
    ) -> ResolutionResult:
        if not self.fallback_enabled:
            return ResolutionResult.unknown(CONTEXT_UNAVAILABLE_REPLY)

        intent = await self._call_fallback(text, catalog, auth, history)
        self.metrics.record(3)
        # Context answers depend on the conversation; never cache them or allow correcting them.
        self.last_resolved_key = None
        logger.info("resolved tier=3 context=true confidence=1.00 text=%r", _truncate(text))
        return ResolutionResult.from_intent(intent, tier=3, confidence=1.0)

    async def _call_fallback(
            self,
            text: str,
            catalog: SkillCatalog,
            auth: str | None,
            history: list[ChatTurn],
    ) -> Intent:
        if self._fallback is None:
            raise FallbackError("no fallback is configured")
        call = self._fallback.resolve(text, catalog, auth, history)
        timeout = self.config.fallback_timeout_s
        if timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise FallbackTimeoutError(f"fallback did not answer within {timeout:.1f}s") from exc

    def _has_dynamic_params(self, intent: Intent) -> bool:
        return any(intent.params.get(name) for name in self._dynamic_fields)


def create_resolver(
        settings: Settings,
        *,
        fallback: IntentFallback | None = None,
        transliterations: dict[str, str] | None = None,
) -> IntentResolver:
    """Build a resolver from settings, using the LLM fallback unless another one is injected."""

    config = ResolverConfig.from_settings(settings)
    if transliterations is not None:
        config = replace(config, transliterations=dict(transliterations))

    if fallback is None and config.fallback_enabled:
        fallback = LLMFallback(
            LLMConfig(
                model=settings.llm_model,
                api_base=settings.llm_api_base,
                timeout_s=settings.llm_timeout_s,
            )
        )
    return IntentResolver(config, fallback=fallback)

