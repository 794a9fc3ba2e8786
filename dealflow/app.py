from __future__ import annotations

import logging
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Generator

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from dealflow import services
from dealflow.coach import SalesCoach
from dealflow.config import get_settings
from dealflow.db import get_session, init_db, session_scope
from dealflow.importer import import_xlsx
from dealflow.schemas import (
    ChatTurn,
    CoachReply,
    CoachRequest,
    Deal,
    DealCreate,
    DealUpdate,
    FilterSpec,
    ImportResult,
    StageInfo,
    StatsOut,
)
from dealflow.stages import stage_catalog
from dealflow.store import DealNotFoundError, DealStore, StorageError, get_store, seed_demo_deals

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    if get_settings().seed_demo:
        with session_scope() as session:
            seed_demo_deals(get_store(session))
    yield


app = FastAPI(
    title="DealFlow",
    version="0.1.0",
    description=(
        "Sales pipeline tracker API. Manage deals through a fixed sequence of "
        "sales stages, filter the pipeline, read summary metrics, and chat with "
        "an LLM sales coach. All endpoints return JSON. No authentication required."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Deals", "description": "Create, read, update, and delete deals."},
        {"name": "Stats", "description": "Pipeline metrics over the filtered deal set."},
        {"name": "Coach", "description": "LLM sales coach. Requires ANTHROPIC_API_KEY or OPENAI_API_KEY."},
        {"name": "Import", "description": "Bulk import deals from XLSX spreadsheets."},
    ],
)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    log.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Deal storage unavailable"})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def deal_store(session: Session = Depends(db_session)) -> DealStore:
    return get_store(session)


def sales_coach() -> SalesCoach:
    return SalesCoach()


def deal_filter(
    search: str | None = Query(None, description="Free-text search across title, person, company, notes, and tags"),
    stages: str | None = Query(None, description="Comma-separated stages, e.g. lead,contacted"),
    priorities: str | None = Query(None, description="Comma-separated: low, medium, high"),
    tags: str | None = Query(None, description="Comma-separated tags; a deal matches if it has any of them"),
    hide_closed: bool = Query(False, description="Exclude closed_won and closed_lost deals"),
) -> FilterSpec:
    try:
        return FilterSpec.from_query(
            search=search, stages=stages, priorities=priorities, tags=tags, hide_closed=hide_closed,
        )
    except ValidationError as exc:
        raise HTTPException(422, exc.errors(include_url=False, include_context=False, include_input=False)) from exc


# ---------------------------------------------------------------------------
# Routes: Deals
# ---------------------------------------------------------------------------


@app.get("/api/deals", response_model=list[Deal],
         tags=["Deals"], summary="List deals, optionally filtered")
async def list_deals(spec: FilterSpec = Depends(deal_filter), store: DealStore = Depends(deal_store)):
    return services.list_deals(store, spec)


@app.post("/api/deals", response_model=Deal, status_code=201,
          tags=["Deals"], summary="Create a deal (id and timestamps are assigned by the server)")
async def create_deal(body: DealCreate, store: DealStore = Depends(deal_store)):
    return store.create(body)


@app.get("/api/deals/{deal_id}", response_model=Deal,
         tags=["Deals"], summary="Get a single deal")
async def get_deal(deal_id: str, store: DealStore = Depends(deal_store)):
    try:
        return store.get(deal_id)
    except DealNotFoundError as exc:
        raise HTTPException(404, str(exc)) from exc


@app.put("/api/deals/{deal_id}", response_model=Deal,
         tags=["Deals"], summary="Update deal fields (partial update, absent fields unchanged)")
async def update_deal(deal_id: str, body: DealUpdate, store: DealStore = Depends(deal_store)):
    try:
        return store.update(deal_id, body)
    except DealNotFoundError as exc:
        raise HTTPException(404, str(exc)) from exc


@app.delete("/api/deals/{deal_id}", tags=["Deals"], summary="Delete a deal permanently")
async def delete_deal(deal_id: str, store: DealStore = Depends(deal_store)):
    try:
        store.delete(deal_id)
    except DealNotFoundError as exc:
        raise HTTPException(404, str(exc)) from exc
    return {"success": True}


@app.get("/api/stages", response_model=list[StageInfo],
         tags=["Deals"], summary="Stage labels and colors in pipeline order")
async def list_stages():
    return stage_catalog()


# ---------------------------------------------------------------------------
# Routes: Stats
# ---------------------------------------------------------------------------


@app.get("/api/stats", response_model=StatsOut,
         tags=["Stats"], summary="Pipeline metrics for the filtered deal set")
async def get_stats(spec: FilterSpec = Depends(deal_filter), store: DealStore = Depends(deal_store)):
    return services.compute_stats(services.list_deals(store, spec))


# ---------------------------------------------------------------------------
# Routes: Coach
# ---------------------------------------------------------------------------


@app.get("/api/coach/history", response_model=list[ChatTurn],
         tags=["Coach"], summary="Coach chat transcript")
async def coach_history(session: Session = Depends(db_session)):
    return services.get_history(session)


@app.post("/api/coach", response_model=CoachReply,
          tags=["Coach"], summary="Ask the sales coach about the pipeline")
async def ask_coach(
    body: CoachRequest,
    session: Session = Depends(db_session),
    store: DealStore = Depends(deal_store),
    coach: SalesCoach = Depends(sales_coach),
):
    reply, history = await services.ask_coach(session, store, body.message, coach)
    return {"reply": reply, "history": history}


@app.delete("/api/coach/history", response_model=list[ChatTurn],
            tags=["Coach"], summary="Clear the coach chat transcript")
async def clear_coach_history(session: Session = Depends(db_session)):
    return services.clear_history(session)


# ---------------------------------------------------------------------------
# Routes: Import
# ---------------------------------------------------------------------------


@app.post("/api/import", response_model=ImportResult,
          tags=["Import"], summary="Import deals from an XLSX spreadsheet")
async def import_file(file: UploadFile = File(...), store: DealStore = Depends(deal_store)):
    if not file.filename or not file.filename.endswith(".xlsx"):
        raise HTTPException(400, "Only .xlsx files are supported")
    content = await file.read()
    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile(suffix=".xlsx", delete=False) as f:
            tmp_path = Path(f.name)
            f.write(content)
        return import_xlsx(tmp_path, store)
    finally:
        if tmp_path:
            tmp_path.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    settings = get_settings()
    uvicorn.run("dealflow.app:app", host=settings.host, port=settings.port, reload=True)


if __name__ == "__main__":
    main()
