"""Application composition root.

This module wires together configuration, the skill catalog, the intent resolver and per-chat
conversation history for the bot runtime.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

from intent_router.config.settings import Settings
from intent_router.config.skills import SkillCatalog, load_skill_catalog
from intent_router.intent.fallback import IntentFallback
from intent_router.intent.resolver import IntentResolver, create_resolver
from intent_router.intent.schema import ChatTurn


@dataclass
class ConversationHistory:
    """Bounded recent turns per chat, passed to the fallback for reference resolution."""

    max_turns: int = 10
    _chats: dict[int, deque[ChatTurn]] = field(default_factory=dict)

    def get(self, chat_id: int) -> list[ChatTurn]:
        return list(self._chats.get(chat_id, ()))

    def append(self, chat_id: int, role: str, content: str) -> None:
        if self.max_turns <= 0:
            return
        turns = self._chats.setdefault(chat_id, deque(maxlen=self.max_turns))
        turns.append(ChatTurn(role=role, content=content))


@dataclass(frozen=True)
class App:
    """Shared application dependencies for handlers."""

    settings: Settings
    resolver: IntentResolver
    catalog: SkillCatalog
    history: ConversationHistory

    def close(self) -> None:
        self.resolver.close()


def create_app(settings: Settings, *, fallback: IntentFallback | None = None) -> App:
    """Create the application container.

    Note:
        The resolver loads its pattern store here. Call `app.close()` at shutdown to flush it.
    """

    return App(
        settings=settings,
        resolver=create_resolver(settings, fallback=fallback),
        catalog=load_skill_catalog(settings.skills_path),
        history=ConversationHistory(max_turns=settings.history_max_turns),
    )
