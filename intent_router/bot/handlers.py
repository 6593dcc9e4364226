"""aiogram message handlers.

Every text message is resolved to an intent and answered with exactly one reply: the intent's
suggested reply, or a one-line summary of the resolved skill action. Fallback failures are reported
to the user as a generic apology and logged internally.
"""

from __future__ import annotations

import logging
from time import monotonic

from aiogram.types import Message

from intent_router.app import App
from intent_router.config.skills import capabilities_hint
from intent_router.intent.fallback import FallbackError
from intent_router.intent.schema import Actionable, Intent, ResolutionResult, classify_intent

logger = logging.getLogger(__name__)

FALLBACK_FAILED_REPLY = "Sorry, I couldn't reach the language service. Please try again in a moment."
INTERNAL_ERROR_REPLY = "Sorry, something went wrong while handling your message."


def _is_command_text(text: str) -> bool:
    return text.lstrip().startswith("/")


def help_text(app: App) -> str:
    return f"You can ask me about: {capabilities_hint(app.catalog)}."


def format_reply(result: ResolutionResult, app: App) -> str:
    """Render a resolution result as a single chat reply."""

    if result.suggested_reply:
        return result.suggested_reply

    intent = Intent(skill_id=result.skill_id, action=result.action, params=result.params)
    tagged = classify_intent(intent)
    if isinstance(tagged, Actionable):
        args = ", ".join(f"{k}={v!r}" for k, v in tagged.params.items() if v is not None)
        return f"{tagged.skill_id}.{tagged.action}({args})"
    return f"Sorry, I didn't understand that. {help_text(app)}"


async def handle_message(message: Message, app: App) -> None:
    """Handle an incoming chat message and reply once."""

    raw_text = message.text or message.caption or ""
    if not raw_text.strip():
        return

    if _is_command_text(raw_text):
        await message.answer(help_text(app))
        return

    chat_id = message.chat.id
    started = monotonic()

    # noinspection PyBroadException
    try:
        result = await app.resolver.resolve_intent(
            raw_text,
            app.catalog,
            app.settings.llm_api_key,
            app.history.get(chat_id),
        )
        reply = format_reply(result, app)

        latency_ms = int((monotonic() - started) * 1000)
        logger.info(
            "handled tier=%d confidence=%.2f skill=%s action=%s latency_ms=%d",
            result.tier,
            result.confidence,
            result.skill_id,
            result.action,
            latency_ms,
        )
    except FallbackError as exc:
        latency_ms = int((monotonic() - started) * 1000)
        logger.warning("fallback failed reason=%s latency_ms=%d", exc, latency_ms)
        reply = FALLBACK_FAILED_REPLY
    except Exception:
        # Handler boundary: never leak internal details to the chat.
        logger.exception("handler failed")
        reply = INTERNAL_ERROR_REPLY

    app.history.append(chat_id, "user", raw_text)
    app.history.append(chat_id, "assistant", reply)
    await message.answer(reply)
