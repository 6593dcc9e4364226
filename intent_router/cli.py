"""Command-line tools for the learned pattern store.

Usage:
    python -m intent_router.cli export [--out FILE]
    python -m intent_router.cli import FILE
    python -m intent_router.cli stats [--top N]
    python -m intent_router.cli resolve TEXT...
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

from intent_router.config.logging import configure_logging
from intent_router.config.settings import Settings, load_settings
from intent_router.intent.pattern_store import PatternImportError, PatternStore
from intent_router.intent.resolver import create_resolver


def _open_store(settings: Settings) -> PatternStore:
    store = PatternStore(settings.pattern_store_path, persist_delay_s=settings.pattern_persist_delay_s)
    store.load()
    return store


def export_patterns(settings: Settings, *, out: str | None) -> int:
    payload = _open_store(settings).export_json()
    if out:
        Path(out).write_text(payload, encoding="utf-8")
    else:
        print(payload)
    return 0


def import_patterns(settings: Settings, *, path: str) -> int:
    store = _open_store(settings)
    try:
        merged = store.import_json(Path(path).read_bytes())
    except (OSError, PatternImportError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    if not store.flush():
        print(f"error: could not write {store.path}", file=sys.stderr)
        return 1
    print(f"merged {merged} pattern(s); store now has {store.size()}")
    return 0


def pattern_stats(settings: Settings, *, top: int) -> int:
    store = _open_store(settings)
    ranked = sorted(store.get_all(), key=lambda item: item[1].hit_count, reverse=True)
    stats = {
        "patternCount": store.size(),
        "topPatterns": [
            {
                "key": key,
                "hitCount": entry.hit_count,
                "skillId": entry.intent.skill_id,
                "action": entry.intent.action,
                "lastUsedAt": entry.last_used_at.isoformat(),
            }
            for key, entry in ranked[:top]
        ],
    }
    print(json.dumps(stats, ensure_ascii=False, indent=2))
    return 0


def resolve_locally(settings: Settings, *, text: str) -> int:
    """Resolve with tiers 1-2 only; the LLM fallback is never called."""

    resolver = create_resolver(settings.model_copy(update={"llm_fallback_enabled": False}))
    try:
        result = asyncio.run(resolver.resolve_intent(text))
    finally:
        resolver.close()
    print(result.model_dump_json(by_alias=True, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for pattern-store maintenance."""

    parser = argparse.ArgumentParser(description="Inspect, back up and restore learned intent patterns.")
    sub = parser.add_subparsers(dest="command", required=True)

    export_cmd = sub.add_parser("export", help="Print (or write) the pattern store as JSON.")
    export_cmd.add_argument("--out", help="Write the backup to this file instead of stdout.")

    import_cmd = sub.add_parser("import", help="Merge a JSON backup into the pattern store.")
    import_cmd.add_argument("path", help="Backup file produced by `export`.")

    stats_cmd = sub.add_parser("stats", help="Show pattern count and most used patterns.")
    stats_cmd.add_argument("--top", type=int, default=10, help="Number of patterns to list.")

    resolve_cmd = sub.add_parser("resolve", help="Resolve a message locally (no LLM fallback).")
    resolve_cmd.add_argument("text", nargs="+", help="Message text.")

    args = parser.parse_args(argv)

    load_dotenv(".env")
    configure_logging()
    try:
        settings = load_settings()
    except RuntimeError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    if args.command == "export":
        return export_patterns(settings, out=args.out)
    if args.command == "import":
        return import_patterns(settings, path=args.path)
    if args.command == "stats":
        return pattern_stats(settings, top=args.top)
    return resolve_locally(settings, text=" ".join(args.text))


if __name__ == "__main__":
    raise SystemExit(main())
