"""Pipeline metrics over the active (not closed) part of a deal list.

Closed deals (``closed_won`` / ``closed_lost``) never contribute to any sum.
Missing numbers count as zero.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from dealflow.schemas import Deal
from dealflow.stages import CLOSED_STAGES, SUMMARY_STAGES
from dealflow.utils import as_utc, utcnow


@dataclass(frozen=True)
class PipelineMetrics:
    active_count: int
    total_value: float
    weighted_value: float
    avg_probability: float
    stage_counts: dict[str, int] = field(default_factory=dict)

    @property
    def avg_probability_display(self) -> str:
        return f"{_round_half_up(self.avg_probability)}%"


def active_deals(deals: Iterable[Deal]) -> list[Deal]:
    return [d for d in deals if d.stage not in CLOSED_STAGES]


def summarize(deals: Iterable[Deal]) -> PipelineMetrics:
    active = active_deals(deals)
    total_value = sum(d.expected_value or 0 for d in active)
    weighted_value = sum((d.expected_value or 0) * (d.close_probability or 0) / 100 for d in active)
    avg_probability = (
        sum(d.close_probability or 0 for d in active) / len(active) if active else 0.0
    )
    stage_counts = {s.value: sum(1 for d in active if d.stage == s) for s in SUMMARY_STAGES}
    return PipelineMetrics(
        active_count=len(active),
        total_value=total_value,
        weighted_value=weighted_value,
        avg_probability=avg_probability,
        stage_counts=stage_counts,
    )


# ---------------------------------------------------------------------------
# Follow-up signals
# ---------------------------------------------------------------------------


def overdue_deals(deals: Iterable[Deal], now: datetime | None = None) -> list[Deal]:
    """Deals whose next action date has already passed."""
    now = as_utc(now) or utcnow()
    return [d for d in deals if d.next_action_date is not None and as_utc(d.next_action_date) < now]


def stale_deals(deals: Iterable[Deal], now: datetime | None = None, days: int = 14) -> list[Deal]:
    """Active deals with no recorded contact in the last *days* days."""
    cutoff = (as_utc(now) or utcnow()) - timedelta(days=days)
    return [
        d for d in active_deals(deals)
        if d.last_contact_date is not None and as_utc(d.last_contact_date) < cutoff
    ]


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

_COMPACT_UNITS = ((10**12, "T"), (10**9, "B"), (10**6, "M"), (10**3, "K"))


def _round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_currency(value: float, symbol: str = "$") -> str:
    """Compact whole-unit currency: ``$900``, ``$36K``, ``$1M``."""
    sign = "-" if value < 0 else ""
    amount = abs(value)
    for idx, (threshold, suffix) in enumerate(_COMPACT_UNITS):
        if amount >= threshold:
            scaled = _round_half_up(amount / threshold)
            # 999_999 rounds to 1000K; promote to the next unit up
            if scaled >= 1000 and idx > 0:
                bigger, bigger_suffix = _COMPACT_UNITS[idx - 1]
                return f"{sign}{symbol}{_round_half_up(amount / bigger)}{bigger_suffix}"
            return f"{sign}{symbol}{scaled}{suffix}"
    scaled = _round_half_up(amount)
    if scaled >= 1000:
        return f"{sign}{symbol}1K"
    return f"{sign}{symbol}{scaled}"
