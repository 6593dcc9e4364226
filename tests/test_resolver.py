"""Tests for the tiered intent resolution pipeline."""

from __future__ import annotations

import json
import logging
import math
import random
from pathlib import Path

import pytest

from conftest import RecordingFallback
from intent_router.config.skills import Skill, SkillCatalog
from intent_router.intent.fallback import FallbackError, FallbackTimeoutError
from intent_router.intent.pattern_store import PatternImportError, PatternStore
from intent_router.intent.resolver import (
    CONTEXT_UNAVAILABLE_REPLY,
    CORRECTION_REPLY,
    UNRESOLVED_REPLY,
    IntentResolver,
    ResolverConfig,
    validate_threshold,
)
from intent_router.intent.schema import ChatTurn, Intent

LEDGER = Intent(skill_id="tally", action="get_ledger", params={})
COMPANIES = Intent(skill_id="tally", action="list_companies", params={})


@pytest.fixture
def make_resolver(store_path: Path):
    created: list[IntentResolver] = []

    def _make(fallback: RecordingFallback | None = None, **overrides) -> IntentResolver:
        options = {"pattern_store_path": str(store_path), "persist_delay_s": 60, **overrides}
        resolver = IntentResolver(ResolverConfig(**options), fallback=fallback)
        created.append(resolver)
        return resolver

    yield _make
    for resolver in created:
        resolver.close()


@pytest.mark.asyncio
async def test_tier1_exact_match_skips_fallback(make_resolver) -> None:
    fallback = RecordingFallback(COMPANIES)
    resolver = make_resolver(fallback)
    resolver.store.put("ledger meril", LEDGER)

    result = await resolver.resolve_intent("Ledger Meril?")

    assert result.tier == 1
    assert result.confidence == 1.0
    assert result.skill_id == "tally"
    assert result.action == "get_ledger"
    assert result.params == {}
    assert not fallback.invoked
    assert resolver.last_resolved_key == "ledger meril"
    entry = resolver.store.get("ledger meril")
    assert entry is not None and entry.hit_count == 2


@pytest.mark.asyncio
async def test_tier2_fuzzy_match(make_resolver) -> None:
    fallback = RecordingFallback(COMPANIES)
    resolver = make_resolver(fallback, confidence_threshold=0.5)
    resolver.store.put("ledger meril", LEDGER)

    result = await resolver.resolve_intent("ledger for meril")

    assert result.tier == 2
    assert result.confidence == pytest.approx(2 / 3)
    assert result.action == "get_ledger"
    assert not fallback.invoked
    assert resolver.last_resolved_key == "ledger meril"
    entry = resolver.store.get("ledger meril")
    assert entry is not None and entry.hit_count == 2
    assert resolver.store.get("ledger for meril") is None


@pytest.mark.asyncio
async def test_tier3_fallback_when_nothing_matches(make_resolver) -> None:
    fallback = RecordingFallback(Intent(skill_id=None, action="unknown", suggested_reply="Sunny!"))
    resolver = make_resolver(fallback, confidence_threshold=0.5)
    resolver.store.put("ledger meril", LEDGER)
    catalog = SkillCatalog(skills=[Skill(id="tally")])
    history = [ChatTurn(role="user", content="hi")]

    result = await resolver.resolve_intent("weather forecast", catalog, "secret", history)

    assert result.tier == 3
    assert result.confidence == 1.0
    assert result.suggested_reply == "Sunny!"
    assert fallback.calls == [("weather forecast", catalog, "secret", history)]
    assert resolver.store.size() == 1
    assert resolver.last_resolved_key is None


@pytest.mark.asyncio
async def test_tier3_actionable_result_is_learned(make_resolver) -> None:
    fallback = RecordingFallback(COMPANIES)
    resolver = make_resolver(fallback)

    first = await resolver.resolve_intent("Show companies")
    second = await resolver.resolve_intent("show companies!")

    assert first.tier == 3
    assert second.tier == 1
    assert second.action == "list_companies"
    assert len(fallback.calls) == 1
    assert resolver.last_resolved_key == "show companies"


@pytest.mark.asyncio
async def test_tier3_dynamic_params_are_not_learned(make_resolver) -> None:
    fallback = RecordingFallback(Intent(skill_id="tally", action="get_ledger", params={"party_name": "Meril"}))
    resolver = make_resolver(fallback)

    result = await resolver.resolve_intent("ledger of meril")

    assert result.tier == 3
    assert result.params == {"party_name": "Meril"}
    assert resolver.store.size() == 0
    assert resolver.last_resolved_key is None


@pytest.mark.asyncio
async def test_empty_dynamic_param_values_do_not_block_learning(make_resolver) -> None:
    fallback = RecordingFallback(
        Intent(skill_id="tally", action="get_vouchers", params={"date_from": None, "limit": 10})
    )
    resolver = make_resolver(fallback)

    await resolver.resolve_intent("last vouchers")

    assert resolver.store.get("last vouchers") is not None


@pytest.mark.asyncio
async def test_dynamic_param_fields_are_configurable(make_resolver) -> None:
    fallback = RecordingFallback(Intent(skill_id="crm", action="get_deal", params={"deal_id": "D-1"}))
    resolver = make_resolver(fallback, dynamic_param_fields=("deal_id",))

    await resolver.resolve_intent("deal status")

    assert resolver.store.size() == 0


@pytest.mark.asyncio
async def test_unknown_fallback_result_is_not_learned(make_resolver) -> None:
    fallback = RecordingFallback(Intent(skill_id="tally", action="unknown", suggested_reply="?"))
    resolver = make_resolver(fallback)

    await resolver.resolve_intent("blah blah")

    assert resolver.store.size() == 0
    assert resolver.last_resolved_key is None


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["5", "more", "next page", "haan", "Page 2", "their"])
async def test_context_messages_bypass_cache(make_resolver, text: str) -> None:
    fallback = RecordingFallback(LEDGER)
    resolver = make_resolver(fallback)
    key = resolver.normalizer.normalize(text)
    resolver.store.put(key, COMPANIES)
    history = [ChatTurn(role="user", content="ledger for meril"), ChatTurn(role="assistant", content="1. Meril")]

    result = await resolver.resolve_intent(text, None, None, history)

    assert result.tier == 3
    assert result.action == "get_ledger"
    assert fallback.calls[0][3] == history
    entry = resolver.store.get(key)
    assert entry is not None and entry.hit_count == 1
    assert resolver.store.size() == 1
    assert resolver.last_resolved_key is None


@pytest.mark.asyncio
async def test_context_message_without_fallback(make_resolver) -> None:
    fallback = RecordingFallback(LEDGER)
    resolver = make_resolver(fallback, fallback_enabled=False)

    result = await resolver.resolve_intent("more")

    assert result.tier == 3
    assert result.action == "unknown"
    assert result.confidence == 0.0
    assert result.suggested_reply == CONTEXT_UNAVAILABLE_REPLY
    assert not fallback.invoked


@pytest.mark.asyncio
async def test_fallback_disabled_returns_unknown(make_resolver) -> None:
    fallback = RecordingFallback(COMPANIES)
    resolver = make_resolver(fallback, fallback_enabled=False)

    result = await resolver.resolve_intent("weather forecast")

    assert result.tier == 3
    assert result.action == "unknown"
    assert result.confidence == 0.0
    assert result.suggested_reply == UNRESOLVED_REPLY
    assert not fallback.invoked
    assert resolver.store.size() == 0


@pytest.mark.asyncio
async def test_no_fallback_injected_behaves_as_disabled(make_resolver) -> None:
    resolver = make_resolver(None)

    result = await resolver.resolve_intent("weather forecast")
    context = await resolver.resolve_intent("5")

    assert result.suggested_reply == UNRESOLVED_REPLY
    assert context.suggested_reply == CONTEXT_UNAVAILABLE_REPLY


@pytest.mark.asyncio
async def test_fallback_call_without_fallback_raises_fallback_error(make_resolver) -> None:
    resolver = make_resolver(None)

    with pytest.raises(FallbackError, match="no fallback"):
        await resolver._call_fallback("weather forecast", SkillCatalog(), None, [])


@pytest.mark.asyncio
async def test_correction_removes_previous_entry(make_resolver, store_path: Path) -> None:
    fallback = RecordingFallback(COMPANIES)
    resolver = make_resolver(fallback)
    resolver.store.put("ledger meril", LEDGER)
    await resolver.resolve_intent("show companies")
    assert resolver.store.size() == 2

    result = await resolver.resolve_intent("Wrong")

    assert result.action == "correction"
    assert result.tier == 1
    assert result.confidence == 1.0
    assert result.suggested_reply == CORRECTION_REPLY
    assert resolver.store.size() == 1
    assert resolver.store.get("show companies") is None
    assert resolver.last_resolved_key is None
    assert resolver.get_metrics().corrections == 1

    # Removal is flushed to disk immediately.
    on_disk = PatternStore(store_path)
    on_disk.load()
    assert on_disk.get("show companies") is None
    assert on_disk.get("ledger meril") is not None


@pytest.mark.asyncio
async def test_correction_without_prior_resolution_is_noop(make_resolver) -> None:
    fallback = RecordingFallback(COMPANIES)
    resolver = make_resolver(fallback)
    resolver.store.put("ledger meril", LEDGER)

    result = await resolver.resolve_intent("galat")

    assert result.action == "correction"
    assert resolver.store.size() == 1
    assert not fallback.invoked
    assert resolver.get_metrics().total == 0


@pytest.mark.asyncio
async def test_second_correction_does_not_remove_more(make_resolver) -> None:
    resolver = make_resolver(RecordingFallback(COMPANIES))
    resolver.store.put("ledger meril", LEDGER)
    resolver.store.put("trial balance", LEDGER)
    await resolver.resolve_intent("ledger meril")

    await resolver.resolve_intent("wrong")
    await resolver.resolve_intent("wrong")

    assert resolver.store.size() == 1
    assert resolver.get_metrics().corrections == 2


@pytest.mark.asyncio
async def test_correction_after_context_message_removes_nothing(make_resolver) -> None:
    resolver = make_resolver(RecordingFallback(LEDGER))
    resolver.store.put("ledger meril", LEDGER)
    await resolver.resolve_intent("ledger meril")
    await resolver.resolve_intent("2")

    await resolver.resolve_intent("wrong")

    assert resolver.store.get("ledger meril") is not None


@pytest.mark.asyncio
async def test_custom_correction_triggers(make_resolver) -> None:
    resolver = make_resolver(RecordingFallback(COMPANIES), correction_triggers=("nope",))
    resolver.store.put("ledger meril", LEDGER)
    await resolver.resolve_intent("ledger meril")

    result = await resolver.resolve_intent("NOPE")

    assert result.action == "correction"
    assert resolver.store.size() == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   ", "?!?", "...", "()"])
async def test_empty_input_or_normalization_returns_unknown(make_resolver, text: str) -> None:
    fallback = RecordingFallback(COMPANIES)
    resolver = make_resolver(fallback)

    result = await resolver.resolve_intent(text)

    assert result.action == "unknown"
    assert result.confidence == 0.0
    assert not fallback.invoked
    assert resolver.store.size() == 0


@pytest.mark.asyncio
async def test_fallback_errors_propagate_unchanged(make_resolver) -> None:
    error = FallbackError("LLM HTTP error: 401")
    resolver = make_resolver(RecordingFallback(exc=error))

    with pytest.raises(FallbackError) as exc_info:
        await resolver.resolve_intent("weather forecast")

    assert exc_info.value is error
    assert resolver.get_metrics().total == 0
    assert resolver.store.size() == 0


@pytest.mark.asyncio
async def test_unexpected_fallback_errors_propagate(make_resolver) -> None:
    resolver = make_resolver(RecordingFallback(exc=ConnectionResetError("reset")))

    with pytest.raises(ConnectionResetError):
        await resolver.resolve_intent("more")


@pytest.mark.asyncio
async def test_fallback_timeout(make_resolver) -> None:
    resolver = make_resolver(RecordingFallback(COMPANIES, delay_s=5), fallback_timeout_s=0.05)

    with pytest.raises(FallbackTimeoutError):
        await resolver.resolve_intent("weather forecast")

    assert resolver.store.size() == 0


@pytest.mark.asyncio
async def test_transliteration_feeds_exact_match(make_resolver) -> None:
    fallback = RecordingFallback(COMPANIES)
    resolver = make_resolver(fallback, transliterations={"khata": "ledger"})
    resolver.store.put("ledger meril", LEDGER)

    result = await resolver.resolve_intent("Khata Meril")

    assert result.tier == 1
    assert not fallback.invoked


def test_knowledge_file_builds_transliterations(make_resolver, tmp_path: Path) -> None:
    knowledge = tmp_path / "knowledge.md"
    knowledge.write_text('- "hisab" = ledger (get_ledger)\n', encoding="utf-8")

    resolver = make_resolver(None, knowledge_path=str(knowledge))
    other = make_resolver(None)

    assert resolver.normalizer.normalize("hisab") == "ledger"
    assert other.normalizer.normalize("hisab") == "hisab"


@pytest.mark.asyncio
async def test_metrics_snapshot(make_resolver) -> None:
    resolver = make_resolver(RecordingFallback(COMPANIES), confidence_threshold=0.5)
    resolver.store.put("ledger meril", LEDGER)

    await resolver.resolve_intent("ledger meril")
    await resolver.resolve_intent("ledger for meril")
    await resolver.resolve_intent("show companies")
    await resolver.resolve_intent("more")
    await resolver.resolve_intent("wrong")

    snap = resolver.get_metrics()
    assert snap.total == 4
    assert (snap.tier1_hits, snap.tier2_hits, snap.tier3_hits) == (1, 1, 2)
    assert snap.corrections == 1
    assert snap.pattern_count == 2


@pytest.mark.asyncio
async def test_export_and_import_patterns(make_resolver, tmp_path: Path) -> None:
    source = make_resolver(RecordingFallback(COMPANIES))
    source.store.put("ledger meril", LEDGER)
    backup = source.export_patterns()

    target = make_resolver(RecordingFallback(COMPANIES), pattern_store_path=str(tmp_path / "t.json"))
    assert target.import_patterns(backup) == 1
    assert json.loads(target.export_patterns())["entries"].keys() == {"ledger meril"}

    with pytest.raises(PatternImportError):
        target.import_patterns("{broken")
    assert target.store.size() == 1


@pytest.mark.asyncio
async def test_resolver_loads_existing_store(make_resolver, store_path: Path) -> None:
    seed = PatternStore(store_path)
    seed.put("ledger meril", LEDGER)
    seed.flush()

    resolver = make_resolver(RecordingFallback(COMPANIES))
    result = await resolver.resolve_intent("ledger meril")

    assert result.tier == 1


@pytest.mark.asyncio
async def test_stored_entries_without_timezone_still_resolve(make_resolver, store_path: Path) -> None:
    entry = {
        "intent": {"skillId": "tally", "action": "get_ledger", "params": {}},
        "hitCount": 2,
        "createdAt": "2025-01-01T00:00:00",
        "lastUsedAt": "2025-01-01T00:00:00",
    }
    store_path.parent.mkdir(parents=True)
    store_path.write_text(json.dumps({"version": 1, "entries": {"ledger meril": entry}}), encoding="utf-8")

    fallback = RecordingFallback(COMPANIES)
    resolver = make_resolver(fallback, confidence_threshold=0.5)
    exact = await resolver.resolve_intent("ledger meril")
    fuzzy = await resolver.resolve_intent("ledger for meril")

    assert (exact.tier, exact.action) == (1, "get_ledger")
    assert (fuzzy.tier, fuzzy.action) == (2, "get_ledger")
    assert not fallback.invoked
    stored = resolver.store.get("ledger meril")
    assert stored is not None and stored.hit_count == 4


_WORDS = ["show", "get", "ledger", "balance", "report", "sales", "purchase", "meril", "party",
          "stock", "invoice", "cash", "bank", "profit", "loss", "expense", "list", "items"]


def _safe_messages(seed: int, count: int) -> list[str]:
    rng = random.Random(seed)
    return [" ".join(rng.choices(_WORDS, k=rng.randint(1, 4))) for _ in range(count)]


@pytest.mark.asyncio
@pytest.mark.parametrize("message", _safe_messages(seed=11, count=25))
async def test_exact_stored_key_never_calls_fallback(make_resolver, message: str) -> None:
    fallback = RecordingFallback(COMPANIES)
    resolver = make_resolver(fallback)
    resolver.store.put(resolver.normalizer.normalize(message), LEDGER)

    result = await resolver.resolve_intent(message)

    assert result.tier == 1
    assert not fallback.invoked


@pytest.mark.asyncio
@pytest.mark.parametrize("message", _safe_messages(seed=12, count=25))
async def test_unmatched_message_always_calls_fallback(make_resolver, message: str) -> None:
    fallback = RecordingFallback(COMPANIES)
    resolver = make_resolver(fallback)
    resolver.store.put("weather forecast today", LEDGER)

    result = await resolver.resolve_intent(message)

    assert result.tier == 3
    assert len(fallback.calls) == 1


@pytest.mark.parametrize("value", [0.0, 0.25, 0.5, 0.7, 1.0, 1, 0])
def test_validate_threshold_passes_valid_values(value: float) -> None:
    assert validate_threshold(value) == float(value)


def test_validate_threshold_accepts_numeric_strings() -> None:
    assert validate_threshold(" 0.35 ") == 0.35


@pytest.mark.parametrize(
    "value",
    [math.nan, math.inf, -math.inf, -0.1, 1.5, 70, "abc", "", True, [], {}, object()],
)
def test_validate_threshold_rejects_invalid_values(value: object, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        assert validate_threshold(value) == 0.7
    assert any("confidence threshold" in r.getMessage() for r in caplog.records)


def test_validate_threshold_missing_value() -> None:
    assert validate_threshold(None) == 0.7


def test_resolver_uses_default_threshold_for_invalid_config(make_resolver) -> None:
    assert make_resolver(None, confidence_threshold="high").threshold == 0.7
    assert make_resolver(None, confidence_threshold=0.4).threshold == 0.4
