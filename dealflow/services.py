"""Shared business logic for the DealFlow API and MCP server."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from dealflow.coach import CLEARED, GREETING, SalesCoach
from dealflow.filters import apply_filter
from dealflow.metrics import format_currency, overdue_deals, stale_deals, summarize
from dealflow.models import ChatMessage
from dealflow.schemas import ChatTurn, Deal, FilterSpec
from dealflow.store import DealStore
from dealflow.utils import utcnow

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def deal_dict(deal: Deal) -> dict[str, Any]:
    """Wire representation: camelCase keys, ISO 8601 dates."""
    return deal.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def list_deals(store: DealStore, spec: FilterSpec | None = None) -> list[Deal]:
    return apply_filter(store.get_all(), spec)


def compute_stats(deals: list[Deal], now: datetime | None = None) -> dict[str, Any]:
    m = summarize(deals)
    return {
        "active_count": m.active_count,
        "total_value": m.total_value,
        "weighted_value": m.weighted_value,
        "avg_probability": m.avg_probability,
        "stage_counts": m.stage_counts,
        "total_value_display": format_currency(m.total_value),
        "weighted_value_display": format_currency(m.weighted_value),
        "avg_probability_display": m.avg_probability_display,
        "overdue_count": len(overdue_deals(deals, now)),
        "stale_count": len(stale_deals(deals, now)),
    }


# ---------------------------------------------------------------------------
# Coach transcript
# ---------------------------------------------------------------------------


def _add_turn(session: Session, role: str, text: str) -> None:
    session.add(ChatMessage(role=role, text=text, created_at=utcnow().replace(tzinfo=None)))


def get_history(session: Session) -> list[ChatTurn]:
    """Stored transcript in order; a fresh transcript opens with the greeting."""
    rows = session.execute(select(ChatMessage).order_by(ChatMessage.id)).scalars().all()
    if not rows:
        return [ChatTurn(role="model", text=GREETING)]
    return [ChatTurn(role=r.role, text=r.text) for r in rows]


def clear_history(session: Session) -> list[ChatTurn]:
    session.execute(delete(ChatMessage))
    _add_turn(session, "model", CLEARED)
    log.info("Cleared coach transcript")
    session.commit()
    return get_history(session)


async def ask_coach(
    session: Session, store: DealStore, message: str, coach: SalesCoach | None = None,
) -> tuple[str, list[ChatTurn]]:
    """Run one coach turn and record both sides. Returns (reply, full transcript)."""
    coach = coach or SalesCoach()
    history = get_history(session)
    reply = await coach.reply(store.get_all(), history, message)
    if not session.execute(select(ChatMessage.id).limit(1)).first():
        _add_turn(session, "model", GREETING)
    _add_turn(session, "user", message)
    _add_turn(session, "model", reply)
    session.commit()
    return reply, get_history(session)
