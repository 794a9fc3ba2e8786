"""Sales coach: a chat assistant grounded in the current pipeline.

Each user turn is one round trip to the language model. The model sees a
system prompt carrying a compact JSON snapshot of the deals plus the prior
chat turns. Provider failures never reach the caller: the coach answers with
a fixed apology instead.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Iterable

from dealflow.config import get_settings
from dealflow.schemas import ChatTurn, Deal

log = logging.getLogger(__name__)

GREETING = (
    "Hi! I'm your automated Sales Coach. I've analyzed your pipeline. "
    "How can I help you close more deals today?"
)
CLEARED = "Chat cleared. What's next?"
APOLOGY = (
    "I'm having trouble connecting to my brain right now. "
    "Please check your internet connection or API key."
)


class LLMCallError(Exception):
    """LLM call failed or the provider could not be reached."""


# ---------------------------------------------------------------------------
# Context payload
# ---------------------------------------------------------------------------


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def coach_context(deals: Iterable[Deal]) -> list[dict[str, Any]]:
    """Simplified, JSON-safe deal summaries in input order."""
    return [
        {
            "id": d.id,
            "title": d.title,
            "company": d.company_name,
            "stage": d.stage.value,
            "value": d.expected_value,
            "prob": d.close_probability,
            "nextStep": d.next_action,
            "lastContact": _iso(d.last_contact_date),
            "notes": d.notes,
        }
        for d in deals
    ]


COACH_PERSONA = """\
You are an elite Sales Coach. You are sharp, strategic, aggressive but helpful, \
and focused purely on revenue and deal velocity.

You have access to the user's current CRM pipeline data below. \
ALWAYS reference specific deals from this data when answering, if relevant.

Your goals:
1. Identify stalled deals (old last contact date).
2. Suggest specific, tactical next steps (e.g. "Send an email to Alice at Acme asking about X").
3. Roleplay negotiation or objection handling if asked.
4. Be concise. Do not write long paragraphs. Use bullet points.
"""


def build_system_prompt(deals: Iterable[Deal]) -> str:
    context = json.dumps(coach_context(deals), indent=2)
    return f"{COACH_PERSONA}\nCURRENT PIPELINE DATA:\n{context}\n"


# ---------------------------------------------------------------------------
# LLM Client
# ---------------------------------------------------------------------------


class LLMClient:
    """Unified async chat client supporting Anthropic and OpenAI."""

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        settings = get_settings()
        self.provider = provider or settings.llm_provider
        self.model = model or settings.llm_model
        self._api_key = api_key
        self._base_url = base_url
        self._client: Any = None
        self._init_client()

    def _init_client(self) -> None:
        if self.provider == "anthropic":
            import anthropic
            self.model = self.model or "claude-haiku-4-5-20251001"
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key or os.environ.get("ANTHROPIC_API_KEY")
            )
        elif self.provider in ("openai", "openai_compatible"):
            import openai
            self.model = self.model or "gpt-4o-mini"
            kwargs: dict[str, Any] = {}
            key = self._api_key or os.environ.get("OPENAI_API_KEY")
            if key:
                kwargs["api_key"] = key
            url = self._base_url or os.environ.get("OPENAI_BASE_URL")
            if url:
                kwargs["base_url"] = url
            self._client = openai.AsyncOpenAI(**kwargs)
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider!r}")

    @staticmethod
    def _messages(history: list[ChatTurn], message: str) -> list[dict[str, str]]:
        msgs = [
            {"role": "assistant" if t.role == "model" else "user", "content": t.text}
            for t in history
        ]
        msgs.append({"role": "user", "content": message})
        return msgs

    async def chat(self, system: str, history: list[ChatTurn], message: str) -> str:
        """Send the system prompt, prior turns and a new user message; return reply text."""
        messages = self._messages(history, message)
        try:
            if self.provider == "anthropic":
                # Anthropic conversations must open with a user turn
                while messages and messages[0]["role"] == "assistant":
                    messages.pop(0)
                response = await self._client.messages.create(
                    model=self.model,
                    max_tokens=2048,
                    system=system,
                    messages=messages,
                )
                text = "".join(
                    block.text for block in response.content if getattr(block, "type", "text") == "text"
                )
            else:
                response = await self._client.chat.completions.create(
                    model=self.model,
                    max_tokens=2048,
                    messages=[{"role": "system", "content": system}, *messages],
                )
                text = response.choices[0].message.content or ""
        except Exception as exc:
            raise LLMCallError(f"LLM API call failed: {exc}") from exc

        text = text.strip()
        if not text:
            raise LLMCallError("LLM returned an empty reply")
        return text


# ---------------------------------------------------------------------------
# Coach
# ---------------------------------------------------------------------------


class SalesCoach:
    def __init__(self, client: LLMClient | None = None):
        self._client = client

    def _get_client(self) -> LLMClient:
        if self._client is None:
            try:
                self._client = LLMClient()
            except Exception as exc:
                raise LLMCallError(f"LLM client unavailable: {exc}") from exc
        return self._client

    async def reply(self, deals: Iterable[Deal], history: list[ChatTurn], message: str) -> str:
        """Answer *message*; on any provider failure return :data:`APOLOGY`."""
        system = build_system_prompt(deals)
        try:
            return await self._get_client().chat(system, history, message)
        except LLMCallError as exc:
            log.warning("Sales coach reply failed: %s", exc)
            return APOLOGY
