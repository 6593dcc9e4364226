"""Pytest configuration and shared fixtures.

The repository uses a flat layout without an installed package. This conftest ensures tests can
import `intent_router.*` when running `pytest` from a checkout.
"""

from __future__ import annotations

import sys
from collections.abc import Sequence
from pathlib import Path

# Ensure `import intent_router...` works when running pytest without installing the package.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

import asyncio  # noqa: E402

import pytest  # noqa: E402

from intent_router.config.skills import SkillCatalog  # noqa: E402
from intent_router.intent.schema import ChatTurn, Intent  # noqa: E402


class RecordingFallback:
    """`IntentFallback` double that records every call."""

    def __init__(
            self,
            intent: Intent | None = None,
            *,
            exc: BaseException | None = None,
            delay_s: float = 0.0,
    ) -> None:
        self.intent = intent or Intent(skill_id=None, action="unknown", suggested_reply="Hi!")
        self.exc = exc
        self.delay_s = delay_s
        self.calls: list[tuple[str, SkillCatalog, str | None, list[ChatTurn]]] = []

    @property
    def invoked(self) -> bool:
        return bool(self.calls)

    async def resolve(
            self,
            text: str,
            skills: SkillCatalog,
            auth_token: str | None,
            history: Sequence[ChatTurn],
    ) -> Intent:
        self.calls.append((text, skills, auth_token, list(history)))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.exc is not None:
            raise self.exc
        return self.intent


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "patterns" / "intent-patterns.json"
