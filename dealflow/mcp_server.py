from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, contextmanager

from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError

from dealflow import services
from dealflow.config import get_settings
from dealflow.db import get_session, init_db
from dealflow.schemas import NON_NULLABLE_FIELDS, DealCreate, DealUpdate, FilterSpec
from dealflow.stages import STAGE_LABELS, Priority
from dealflow.store import DealNotFoundError, StorageError, get_store, seed_demo_deals

log = logging.getLogger(__name__)

CLEARABLE_FIELDS = frozenset(DealUpdate.model_fields) - set(NON_NULLABLE_FIELDS)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def dealflow_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    if get_settings().seed_demo:
        with _session() as session:
            seed_demo_deals(get_store(session))
    yield


mcp = FastMCP(
    "DealFlow",
    instructions=(
        "DealFlow is a sales pipeline tracker. Use these tools to list, inspect, "
        "create, update, and delete deals, read pipeline metrics, and ask the sales coach. "
        "Start with get_pipeline_stats() for an overview, then list_deals() to browse."
    ),
    lifespan=dealflow_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextmanager
def _session():
    session = get_session()
    try:
        yield session
    finally:
        session.close()


def _error(exc: Exception) -> dict:
    log.warning("MCP tool failed: %s", exc)
    if isinstance(exc, ValidationError):
        first = exc.errors()[0]
        loc = ".".join(str(p) for p in first["loc"])
        return {"error": f"Invalid {loc or 'input'}: {first['msg']}"}
    return {"error": str(exc)}


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("dealflow://overview")
def dealflow_overview() -> str:
    """Overview of DealFlow: data model, stages, and workflow."""
    return json.dumps({
        "system": "DealFlow - Sales Pipeline Tracker",
        "data_model": {
            "deal": (
                "A sales opportunity with title, contact, company, stage, tags, priority, "
                "expected value, close probability (0-100), follow-up dates, and notes."
            ),
        },
        "stages": {s.value: label for s, label in STAGE_LABELS.items()},
        "priorities": [p.value for p in Priority],
        "metrics": {
            "active": "Deals not in closed_won or closed_lost.",
            "total_value": "Sum of expected value over active deals.",
            "weighted_value": "Sum of expected value x probability / 100 over active deals.",
        },
        "workflow": [
            "1. get_pipeline_stats() - active count, nominal and weighted pipeline.",
            "2. list_deals() - browse with search, stages, priorities, tags, hide_closed.",
            "3. get_deal(id) - full record.",
            "4. create_deal(...) / update_deal(id, ...) / delete_deal(id).",
            "5. ask_coach(message) - tactical advice grounded in the current pipeline.",
        ],
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Deals
# ---------------------------------------------------------------------------


@mcp.tool()
def list_deals(
    search: str | None = None, stages: str | None = None, priorities: str | None = None,
    tags: str | None = None, hide_closed: bool = False, limit: int = 100,
) -> list[dict] | dict:
    """List and filter deals, most recently updated first.

    Args:
        search: Case-insensitive text matched against title, person, company, notes, and tags.
        stages: Comma-separated from: lead, contacted, active_convo, proposal_sent,
                verbal_yes, closed_won, closed_lost.
        priorities: Comma-separated from: low, medium, high.
        tags: Comma-separated tags; deals carrying any of them match.
        hide_closed: Exclude closed_won and closed_lost deals.
        limit: Max results (default 100, max 500).
    """
    try:
        spec = FilterSpec.from_query(
            search=search, stages=stages, priorities=priorities, tags=tags, hide_closed=hide_closed,
        )
        with _session() as session:
            deals = services.list_deals(get_store(session), spec)
    except (ValidationError, StorageError) as exc:
        return _error(exc)
    return [services.deal_dict(d) for d in deals[:max(1, min(limit, 500))]]


@mcp.tool()
def get_deal(deal_id: str) -> dict:
    """Get the full record for a single deal."""
    try:
        with _session() as session:
            return services.deal_dict(get_store(session).get(deal_id))
    except (DealNotFoundError, StorageError) as exc:
        return _error(exc)


@mcp.tool()
def create_deal(
    title: str, person_name: str | None = None, company_name: str | None = None,
    stage: str = "lead", tags: list[str] | None = None, priority: str = "medium",
    expected_value: float = 0, close_probability: float = 20,
    expected_close_date: str | None = None, last_contact_date: str | None = None,
    next_action: str | None = None, next_action_date: str | None = None, notes: str = "",
) -> dict:
    """Create a new deal. Dates are ISO 8601 strings."""
    try:
        data = DealCreate(
            title=title, person_name=person_name, company_name=company_name, stage=stage,
            tags=tags or [], priority=priority, expected_value=expected_value,
            close_probability=close_probability, expected_close_date=expected_close_date,
            last_contact_date=last_contact_date, next_action=next_action,
            next_action_date=next_action_date, notes=notes,
        )
        with _session() as session:
            return services.deal_dict(get_store(session).create(data))
    except (ValidationError, StorageError) as exc:
        return _error(exc)


@mcp.tool()
def update_deal(
    deal_id: str,
    title: str | None = None, person_name: str | None = None, company_name: str | None = None,
    stage: str | None = None, tags: list[str] | None = None, priority: str | None = None,
    expected_value: float | None = None, close_probability: float | None = None,
    expected_close_date: str | None = None, last_contact_date: str | None = None,
    next_action: str | None = None, next_action_date: str | None = None, notes: str | None = None,
    clear: list[str] | None = None,
) -> dict:
    """Update fields on a deal. Only provided (non-null) arguments are applied.

    A null argument means "leave unchanged", so to erase an optional field name it
    in *clear* instead.

    Args:
        clear: Fields to set to null, from: person_name, company_name,
               expected_close_date, last_contact_date, next_action,
               next_action_date, notes. Required fields cannot be cleared.
    """
    updates = {k: v for k, v in {
        "title": title, "person_name": person_name, "company_name": company_name,
        "stage": stage, "tags": tags, "priority": priority,
        "expected_value": expected_value, "close_probability": close_probability,
        "expected_close_date": expected_close_date, "last_contact_date": last_contact_date,
        "next_action": next_action, "next_action_date": next_action_date, "notes": notes,
    }.items() if v is not None}
    for name in clear or []:
        if name in updates:
            return {"error": f"Field {name!r} is both set and cleared"}
        if name not in CLEARABLE_FIELDS:
            return {"error": f"Field {name!r} cannot be cleared"}
        updates[name] = None
    try:
        changes = DealUpdate.model_validate(updates)
        with _session() as session:
            return services.deal_dict(get_store(session).update(deal_id, changes))
    except (ValidationError, DealNotFoundError, StorageError) as exc:
        return _error(exc)


@mcp.tool()
def delete_deal(deal_id: str) -> dict:
    """Delete a deal permanently."""
    try:
        with _session() as session:
            get_store(session).delete(deal_id)
    except (DealNotFoundError, StorageError) as exc:
        return _error(exc)
    return {"ok": True, "deleted_deal_id": deal_id}


# ---------------------------------------------------------------------------
# Tools: Stats & Coach
# ---------------------------------------------------------------------------


@mcp.tool()
def get_pipeline_stats(hide_closed: bool = False) -> dict:
    """Pipeline metrics: active count, nominal and weighted value, average probability."""
    try:
        with _session() as session:
            deals = services.list_deals(get_store(session), FilterSpec(hide_closed=hide_closed))
    except StorageError as exc:
        return _error(exc)
    return services.compute_stats(deals)


@mcp.tool()
async def ask_coach(message: str) -> dict:
    """Ask the LLM sales coach a question about the current pipeline."""
    if not message.strip():
        return {"error": "message must not be empty"}
    try:
        with _session() as session:
            reply, _ = await services.ask_coach(session, get_store(session), message)
    except StorageError as exc:
        return _error(exc)
    return {"reply": reply}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the DealFlow MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
