"""Tests for the MCP tool functions, called directly against an in-memory database."""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dealflow import mcp_server
from dealflow.models import Base


@pytest.fixture(autouse=True)
def sessions():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    with patch("dealflow.mcp_server.get_session", SessionLocal):
        yield SessionLocal


class TestDealTools:
    def test_create_and_get(self):
        created = mcp_server.create_deal(title="Acme", company_name="Acme Corp", tags=["saas"])
        assert created["companyName"] == "Acme Corp"
        assert created["stage"] == "lead"
        fetched = mcp_server.get_deal(str(created["id"]))
        assert fetched == created

    def test_create_invalid(self):
        result = mcp_server.create_deal(title="X", close_probability=150)
        assert "error" in result
        assert "Invalid" in result["error"]

    def test_get_unknown(self):
        assert mcp_server.get_deal("404") == {"error": "Deal 404 not found"}

    def test_list_with_filters_and_limit(self):
        mcp_server.create_deal(title="Open", stage="lead")
        mcp_server.create_deal(title="Won", stage="closed_won")
        mcp_server.create_deal(title="Also open", stage="contacted")
        assert [d["title"] for d in mcp_server.list_deals(hide_closed=True)] == ["Also open", "Open"]
        assert len(mcp_server.list_deals(limit=1)) == 1
        assert "error" in mcp_server.list_deals(stages="nope")

    def test_update_ignores_unset_arguments(self):
        deal = mcp_server.create_deal(title="Acme", notes="keep me")
        updated = mcp_server.update_deal(str(deal["id"]), stage="proposal_sent")
        assert updated["stage"] == "proposal_sent"
        assert updated["notes"] == "keep me"

    def test_create_accepts_last_contact_date(self):
        deal = mcp_server.create_deal(title="Acme", last_contact_date="2025-01-10T09:00:00Z")
        assert deal["lastContactDate"].startswith("2025-01-10T09:00:00")

    def test_create_rejects_infinite_value(self):
        assert "error" in mcp_server.create_deal(title="Huge", expected_value=float("inf"))

    def test_update_clears_named_fields(self):
        deal = mcp_server.create_deal(title="Acme", next_action="Send specs", notes="keep me",
                                      company_name="Acme Corp")
        updated = mcp_server.update_deal(str(deal["id"]), clear=["next_action", "company_name"])
        assert updated["nextAction"] is None
        assert updated["companyName"] is None
        assert updated["notes"] == "keep me"

    @pytest.mark.parametrize("field", ["title", "stage", "tags", "no_such_field"])
    def test_update_refuses_to_clear_required_or_unknown_fields(self, field):
        deal = mcp_server.create_deal(title="Acme")
        result = mcp_server.update_deal(str(deal["id"]), clear=[field])
        assert result == {"error": f"Field {field!r} cannot be cleared"}
        assert mcp_server.get_deal(str(deal["id"]))["title"] == "Acme"

    def test_update_refuses_set_and_clear_of_same_field(self):
        deal = mcp_server.create_deal(title="Acme")
        result = mcp_server.update_deal(str(deal["id"]), notes="x", clear=["notes"])
        assert "error" in result

    def test_update_unknown(self):
        assert "error" in mcp_server.update_deal("77", notes="x")

    def test_delete(self):
        deal = mcp_server.create_deal(title="Acme")
        assert mcp_server.delete_deal(str(deal["id"]))["ok"] is True
        assert "error" in mcp_server.delete_deal(str(deal["id"]))


class TestStatsAndCoachTools:
    def test_stats(self):
        mcp_server.create_deal(title="A", expected_value=1000, close_probability=50)
        mcp_server.create_deal(title="B", stage="closed_lost", expected_value=9000)
        stats = mcp_server.get_pipeline_stats()
        assert stats["active_count"] == 1
        assert stats["weighted_value"] == pytest.approx(500)
        assert stats["total_value_display"] == "$1K"

    @pytest.mark.asyncio
    async def test_ask_coach(self):
        with patch("dealflow.services.SalesCoach") as MockCoach:
            MockCoach.return_value.reply = AsyncMock(return_value="Close it.")
            assert await mcp_server.ask_coach("What now?") == {"reply": "Close it."}

    @pytest.mark.asyncio
    async def test_ask_coach_blank(self):
        assert "error" in await mcp_server.ask_coach("   ")

    def test_overview_resource(self):
        overview = json.loads(mcp_server.dealflow_overview())
        assert overview["stages"]["proposal_sent"] == "Proposal Sent"
        assert overview["priorities"] == ["low", "medium", "high"]
