"""Stage and priority enums with their display lookup tables."""
from __future__ import annotations

from enum import Enum


class Stage(str, Enum):
    LEAD = "lead"
    CONTACTED = "contacted"
    ACTIVE_CONVO = "active_convo"
    PROPOSAL_SENT = "proposal_sent"
    VERBAL_YES = "verbal_yes"
    CLOSED_WON = "closed_won"
    CLOSED_LOST = "closed_lost"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


CLOSED_STAGES = frozenset({Stage.CLOSED_WON, Stage.CLOSED_LOST})

# Stages broken out individually in the pipeline summary bar
SUMMARY_STAGES = (Stage.LEAD, Stage.CONTACTED, Stage.ACTIVE_CONVO, Stage.PROPOSAL_SENT)

STAGE_LABELS: dict[Stage, str] = {
    Stage.LEAD: "Lead",
    Stage.CONTACTED: "Contacted",
    Stage.ACTIVE_CONVO: "Active Conversation",
    Stage.PROPOSAL_SENT: "Proposal Sent",
    Stage.VERBAL_YES: "Verbal Yes",
    Stage.CLOSED_WON: "Closed Won",
    Stage.CLOSED_LOST: "Closed Lost",
}

STAGE_COLORS: dict[Stage, str] = {
    Stage.LEAD: "bg-slate-100 text-slate-700 border-slate-200",
    Stage.CONTACTED: "bg-blue-50 text-blue-700 border-blue-200",
    Stage.ACTIVE_CONVO: "bg-cyan-50 text-cyan-700 border-cyan-200",
    Stage.PROPOSAL_SENT: "bg-purple-50 text-purple-700 border-purple-200",
    Stage.VERBAL_YES: "bg-lime-50 text-lime-700 border-lime-200",
    Stage.CLOSED_WON: "bg-emerald-100 text-emerald-800 border-emerald-300",
    Stage.CLOSED_LOST: "bg-rose-50 text-rose-700 border-rose-200",
}

PRIORITY_COLORS: dict[Priority, str] = {
    Priority.LOW: "text-slate-500 bg-slate-100",
    Priority.MEDIUM: "text-amber-600 bg-amber-50",
    Priority.HIGH: "text-rose-600 bg-rose-50 font-bold",
}


def _require_exhaustive(table: dict, enum: type[Enum], name: str) -> None:
    missing = [m.value for m in enum if m not in table]
    if missing:
        raise RuntimeError(f"{name} is missing entries for: {', '.join(missing)}")


_require_exhaustive(STAGE_LABELS, Stage, "STAGE_LABELS")
_require_exhaustive(STAGE_COLORS, Stage, "STAGE_COLORS")
_require_exhaustive(PRIORITY_COLORS, Priority, "PRIORITY_COLORS")


def is_closed(stage: Stage | str) -> bool:
    return Stage(stage) in CLOSED_STAGES


def stage_catalog() -> list[dict]:
    """Display metadata for every stage, in pipeline order."""
    return [
        {"value": s.value, "label": STAGE_LABELS[s], "color": STAGE_COLORS[s], "closed": s in CLOSED_STAGES}
        for s in Stage
    ]
