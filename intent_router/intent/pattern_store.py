"""Persistent store of learned message patterns.

Maps a normalized message to the intent it previously resolved to, with usage statistics. The store
lives in memory and is written to a JSON file on disk with debounced writes: the first mutation
schedules a write after `persist_delay_s`, and later mutations inside that window are absorbed by the
pending write. `flush()` writes immediately.

All mutations and the write timer share one lock, so a `flush()` can never race a firing timer into
a duplicate or lost write. The file is assumed to have a single writer process.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from pydantic import ValidationError

from intent_router.intent.schema import Intent, LearningEntry, PatternStoreFile, utc_now

logger = logging.getLogger(__name__)

DEFAULT_PERSIST_DELAY_S = 5.0


class PatternImportError(ValueError):
    """Raised when an imported pattern backup is malformed; the store is left unchanged."""


class PatternStore:
    """Normalized-text -> `LearningEntry` mapping backed by a JSON file."""

    def __init__(self, path: str | Path, *, persist_delay_s: float = DEFAULT_PERSIST_DELAY_S) -> None:
        self._path = Path(path)
        self._persist_delay_s = persist_delay_s
        self._entries: dict[str, LearningEntry] = {}
        self._version = 1
        self._lock = threading.RLock()
        self._timer: threading.Timer | None = None
        self._timer_generation = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def has_pending_write(self) -> bool:
        with self._lock:
            return self._timer is not None

    def load(self) -> None:
        """Load entries from disk.

        A missing file gives an empty store; an unreadable or malformed file gives an empty store and
        a warning. Never raises.
        """

        with self._lock:
            self._entries = {}
            if not self._path.exists():
                logger.info("pattern store not found path=%s starting empty", self._path)
                return

            try:
                data = PatternStoreFile.model_validate_json(self._path.read_bytes())
            except (OSError, ValidationError) as exc:
                logger.warning(
                    "pattern store load failed path=%s reason=%s starting empty",
                    self._path,
                    exc,
                )
                return

            self._entries = dict(data.entries)
            self._version = data.version
            logger.info("pattern store loaded path=%s entries=%d", self._path, len(self._entries))

    def get(self, key: str) -> LearningEntry | None:
        """Exact lookup by normalized key."""

        with self._lock:
            entry = self._entries.get(key)
            return entry.model_copy(deep=True) if entry is not None else None

    def get_all(self) -> list[tuple[str, LearningEntry]]:
        """Snapshot of every `(key, entry)` pair, in insertion order."""

        with self._lock:
            return [(key, entry.model_copy(deep=True)) for key, entry in self._entries.items()]

    def put(self, key: str, intent: Intent) -> None:
        """Insert a new entry, or replace the intent of an existing one and count a hit."""

        now = utc_now()
        with self._lock:
            existing = self._entries.get(key)
            if existing is None:
                self._entries[key] = LearningEntry(
                    intent=intent.model_copy(deep=True),
                    hit_count=1,
                    created_at=now,
                    last_used_at=now,
                )
            else:
                existing.intent = intent.model_copy(deep=True)
                existing.hit_count += 1
                existing.last_used_at = max(existing.last_used_at, now)
            self._schedule_persist()

    def record_hit(self, key: str) -> None:
        """Count a hit on an existing entry; unknown keys are ignored."""

        now = utc_now()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return
            entry.hit_count += 1
            entry.last_used_at = max(entry.last_used_at, now)
            self._schedule_persist()

    def remove(self, key: str) -> bool:
        """Delete an entry. Returns whether it existed."""

        with self._lock:
            if self._entries.pop(key, None) is None:
                return False
            self._schedule_persist()
            return True

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def export_json(self) -> str:
        """Serialize the whole store in the on-disk file format."""

        with self._lock:
            return self._serialize()

    def import_json(self, payload: str | bytes) -> int:
        """Merge a backup produced by `export_json` into the store.

        On a key collision the entry with the higher hit count wins.

        Returns:
            Number of entries added or replaced.

        Raises:
            PatternImportError: If the payload is not valid JSON or not a pattern-store document.
        """

        try:
            raw = json.loads(payload)
        except (TypeError, ValueError) as exc:
            raise PatternImportError(f"Import failed: malformed JSON: {exc}") from exc

        if not isinstance(raw, dict) or not isinstance(raw.get("entries"), dict):
            raise PatternImportError('Import failed: missing or invalid "entries" field')

        try:
            data = PatternStoreFile.model_validate(raw)
        except ValidationError as exc:
            raise PatternImportError(f"Import failed: invalid entry: {exc}") from exc

        applied = 0
        with self._lock:
            for key, imported in data.entries.items():
                existing = self._entries.get(key)
                if existing is None or imported.hit_count > existing.hit_count:
                    self._entries[key] = imported
                    applied += 1
            if applied:
                self._schedule_persist()

        logger.info("pattern import merged=%d total=%d", applied, len(data.entries))
        return applied

    def flush(self) -> bool:
        """Cancel any pending write and write to disk now.

        Returns:
            Whether the write succeeded (failures are logged).
        """

        with self._lock:
            self._cancel_timer()
            return self._write()

    def close(self) -> None:
        self.flush()

    def _schedule_persist(self) -> None:
        # Caller holds the lock.
        if self._timer is not None:
            return
        self._timer_generation += 1
        timer = threading.Timer(
            self._persist_delay_s,
            self._persist_scheduled,
            args=(self._timer_generation,),
        )
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _persist_scheduled(self, generation: int) -> None:
        with self._lock:
            # A flush (or a newer schedule) already took over this write.
            if self._timer is None or generation != self._timer_generation:
                return
            self._timer = None
            self._write()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _serialize(self) -> str:
        return PatternStoreFile(version=self._version, entries=self._entries).model_dump_json(
            by_alias=True,
            indent=2,
        )

    def _write(self) -> bool:
        # Caller holds the lock. Write-to-temp then rename, so readers never see a partial file.
        temp_path: str | None = None
        try:
            content = self._serialize()
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
            Path(temp_path).replace(self._path)
            return True
        except OSError as exc:
            logger.error("pattern store persist failed path=%s reason=%s", self._path, exc)
            if temp_path:
                Path(temp_path).unlink(missing_ok=True)
            return False
