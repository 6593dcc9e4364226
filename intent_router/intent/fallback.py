"""External LLM fallback (tier 3).

Only called when neither the pattern store nor fuzzy matching can answer. The LLM is asked to return
strict Intent JSON for one of the configured skill actions, or an `unknown` intent with a short
reply. The fallback is an injected collaborator: anything implementing `IntentFallback` can replace
the OpenAI-style client below (tests use recording doubles).
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from intent_router.config.skills import SkillCatalog, capabilities_hint
from intent_router.intent.schema import ChatTurn, Intent

logger = logging.getLogger(__name__)


class FallbackError(RuntimeError):
    """Raised when the external fallback cannot produce an intent (network, auth, bad output)."""


class FallbackTimeoutError(FallbackError):
    """Raised when the external fallback does not answer in time."""


class IntentFallback(Protocol):
    """Tier-3 resolver: turns a message into an intent using an external service."""

    async def resolve(
            self,
            text: str,
            skills: SkillCatalog,
            auth_token: str | None,
            history: Sequence[ChatTurn],
    ) -> Intent:
        ...


@dataclass(frozen=True)
class LLMConfig:
    """Configuration for the OpenAI-style Chat Completions API call."""

    model: str = "gpt-4o-mini"
    api_base: str = "https://api.openai.com/v1"
    timeout_s: float = 30.0


def build_system_prompt(catalog: SkillCatalog, *, today: date | None = None) -> str:
    """Build the system prompt listing every enabled skill action and its parameters."""

    today = today or date.today()
    lines = [
        "You are a helpful assistant that runs commands across connected services "
        "(e.g. accounting, CRM, tools). The user sends a message.",
        "Return ONLY valid JSON, no markdown or explanation.",
        "",
        "You will receive recent conversation history. Use it to resolve references like "
        '"his", "their", "that party", "same" or a bare number.',
        "If the previous reply listed numbered suggestions and the user answers with a number or a "
        "name from that list, REPEAT the originally requested action with that name as party_name.",
        "",
        "If the message matches one of the actions below, return: "
        '{"skillId":"<id>","action":"<action>","params":{"param_name":"value"}}',
        'params MUST be a JSON object with named keys, NOT an array.',
        "If the message does NOT match any action (greeting, question, unclear, or off-topic), return:",
        '{"skillId":null,"action":"unknown","params":{},"suggestedReply":"Your brief friendly reply here."}',
        "",
        "For suggestedReply: write 1-2 short sentences. If unclear, politely say what you can do "
        f"and mention they can ask about: {capabilities_hint(catalog)}.",
        "",
        "Available actions (skillId, action, parameters):",
    ]
    for skill, action in catalog.iter_actions():
        params = ", ".join(action.parameters) if action.parameters else "none"
        lines.append(
            f'- skillId="{skill.id}", action="{action.id}", params: [{params}]. {action.description}'.rstrip()
        )
    lines += [
        "",
        f"Today's date is {today.isoformat()}. Resolve relative dates (yesterday, last week, this "
        "month) into YYYY-MM-DD values for date_from and date_to.",
        "Use null for missing optional params. For limit use a number.",
    ]
    return "\n".join(lines)


def _strip_code_fences(text: str) -> str:
    value = (text or "").strip()
    if value.startswith("```"):
        value = value.strip("`")
        value = value.removeprefix("json").strip()
    return value


def parse_intent_response(content: str) -> Intent:
    """Parse the LLM message content into an `Intent`.

    Raises:
        FallbackError: If the content is not a JSON object.
    """

    try:
        obj = json.loads(_strip_code_fences(content))
    except json.JSONDecodeError as exc:
        raise FallbackError("LLM did not return valid JSON") from exc
    if not isinstance(obj, dict):
        raise FallbackError("LLM did not return a JSON object")
    return Intent.model_validate(obj)


def _chat_completions_url(api_base: str) -> str:
    return api_base.rstrip("/") + "/chat/completions"


def build_messages(
        user_text: str,
        *,
        catalog: SkillCatalog,
        history: Sequence[ChatTurn] = (),
) -> list[dict[str, str]]:
    messages = [{"role": "system", "content": build_system_prompt(catalog)}]
    messages += [{"role": turn.role, "content": turn.content} for turn in history]
    messages.append({"role": "user", "content": user_text})
    return messages


def request_intent_via_llm(
        user_text: str,
        *,
        catalog: SkillCatalog,
        api_key: str | None,
        history: Sequence[ChatTurn] = (),
        config: LLMConfig = LLMConfig(),
) -> Intent:
    """Call an OpenAI-compatible `/chat/completions` API and return the parsed intent."""

    if not api_key:
        raise FallbackError("LLM_API_KEY is required for the LLM fallback")

    payload: dict[str, Any] = {
        "model": config.model,
        "temperature": 0,
        "messages": build_messages(user_text, catalog=catalog, history=history),
    }

    req = Request(
        _chat_completions_url(config.api_base),
        method="POST",
        headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        },
        data=json.dumps(payload).encode(),
    )

    try:
        with urlopen(req, timeout=config.timeout_s) as resp:  # noqa: S310 (configured API base)
            body = resp.read()
    except HTTPError as exc:
        raise FallbackError(f"LLM HTTP error: {exc.code}") from exc
    except TimeoutError as exc:
        raise FallbackTimeoutError("LLM request timed out") from exc
    except URLError as exc:
        if isinstance(exc.reason, TimeoutError):
            raise FallbackTimeoutError("LLM request timed out") from exc
        raise FallbackError("LLM connection error") from exc

    try:
        decoded = json.loads(body)
        content = decoded["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError) as exc:
        raise FallbackError("Unexpected LLM response format") from exc

    return parse_intent_response(content)


class LLMFallback:
    """`IntentFallback` backed by an OpenAI-compatible chat completions endpoint.

    The blocking HTTP call runs in a worker thread so the event loop stays responsive.
    """

    def __init__(self, config: LLMConfig | None = None) -> None:
        self.config = config or LLMConfig()

    async def resolve(
            self,
            text: str,
            skills: SkillCatalog,
            auth_token: str | None,
            history: Sequence[ChatTurn],
    ) -> Intent:
        logger.debug("llm fallback request model=%s history=%d", self.config.model, len(history))
        return await asyncio.to_thread(
            request_intent_via_llm,
            text,
            catalog=skills,
            api_key=auth_token,
            history=list(history),
            config=self.config,
        )
