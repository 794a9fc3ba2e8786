from __future__ import annotations

from datetime import UTC, datetime

import pytest

from dealflow.filters import apply_filter, matches, search_text
from dealflow.schemas import Deal, FilterSpec
from dealflow.stages import Priority, Stage

_NOW = datetime(2025, 1, 15, tzinfo=UTC)


def make_deal(deal_id, **fields) -> Deal:
    base = dict(
        id=deal_id, title=f"Deal {deal_id}", stage="lead", tags=[], priority="medium",
        expected_value=0, close_probability=0, created_at=_NOW, updated_at=_NOW,
    )
    base.update(fields)
    return Deal(**base)


@pytest.fixture()
def deals() -> list[Deal]:
    return [
        make_deal(1, title="Enterprise License", company_name="Acme Corp", person_name="Alice",
                  stage="active_convo", tags=["enterprise", "saas"], priority="high"),
        make_deal(2, title="Startup Plan", company_name="Beta Inc", stage="proposal_sent",
                  tags=["inbound"], notes="Loves the dashboard"),
        make_deal(3, title="Consulting Project", company_name="Gamma Group", stage="lead",
                  tags=["consulting"], priority="low"),
        make_deal(4, title="Legacy Renewal", stage="closed_won", tags=["renewal"], priority="high"),
        make_deal(5, title="Lost Pilot", stage="closed_lost", tags=["saas"]),
    ]


def _ids(result: list[Deal]) -> list:
    return [d.id for d in result]


class TestSearch:
    @pytest.mark.parametrize("query", ["acme", "ACME", "Acme Corp", "aCmE c"])
    def test_company_name_case_insensitive(self, deals, query):
        assert _ids(apply_filter(deals, FilterSpec(search=query))) == [1]

    def test_matches_notes(self, deals):
        assert _ids(apply_filter(deals, FilterSpec(search="dashboard"))) == [2]

    def test_matches_tags(self, deals):
        assert _ids(apply_filter(deals, FilterSpec(search="saas"))) == [1, 5]

    def test_matches_person_name(self, deals):
        assert _ids(apply_filter(deals, FilterSpec(search="alice"))) == [1]

    def test_empty_search_matches_everything(self, deals):
        assert _ids(apply_filter(deals, FilterSpec(search=""))) == [1, 2, 3, 4, 5]

    def test_missing_fields_contribute_nothing(self):
        deal = make_deal(9, title="Solo")
        assert search_text(deal) == "solo"
        assert not matches(deal, FilterSpec(search="none"))

    def test_haystack_is_plain_concatenation(self):
        deal = make_deal(9, title="Big", company_name="Co", tags=["x", "y"])
        assert search_text(deal) == "bigcox y"
        assert matches(deal, FilterSpec(search="bigco"))


class TestStagesAndClosed:
    def test_stage_set_restricts(self, deals):
        spec = FilterSpec(stages={Stage.LEAD, Stage.PROPOSAL_SENT})
        assert _ids(apply_filter(deals, spec)) == [2, 3]

    def test_empty_stage_set_is_unrestricted(self, deals):
        assert len(apply_filter(deals, FilterSpec(stages=set()))) == 5

    def test_hide_closed(self, deals):
        assert _ids(apply_filter(deals, FilterSpec(hide_closed=True))) == [1, 2, 3]

    def test_hide_closed_wins_over_stage_selection(self, deals):
        spec = FilterSpec(stages={Stage.CLOSED_WON, Stage.LEAD}, hide_closed=True)
        assert _ids(apply_filter(deals, spec)) == [3]

    def test_predicates_are_anded(self, deals):
        spec = FilterSpec(search="saas", hide_closed=True)
        assert _ids(apply_filter(deals, spec)) == [1]


class TestPrioritiesAndTags:
    def test_priorities(self, deals):
        assert _ids(apply_filter(deals, FilterSpec(priorities={"high"}))) == [1, 4]

    def test_tags_match_any(self, deals):
        assert _ids(apply_filter(deals, FilterSpec(tags={"inbound", "renewal"}))) == [2, 4]

    def test_empty_sets_do_not_restrict(self, deals):
        assert len(apply_filter(deals, FilterSpec(priorities=set(), tags=set()))) == 5


class TestProperties:
    SPECS = [
        FilterSpec(),
        FilterSpec(search="a"),
        FilterSpec(stages={"lead", "closed_won"}),
        FilterSpec(hide_closed=True, search="saas"),
        FilterSpec(priorities={"high"}, tags={"saas"}),
    ]

    @pytest.mark.parametrize("spec", SPECS)
    def test_idempotent(self, deals, spec):
        once = apply_filter(deals, spec)
        assert apply_filter(once, spec) == once

    @pytest.mark.parametrize("spec", SPECS)
    def test_order_preserved(self, deals, spec):
        result = _ids(apply_filter(deals, spec))
        assert result == sorted(result)

    def test_adding_a_stage_never_shrinks(self, deals):
        narrow = apply_filter(deals, FilterSpec(stages={"lead"}))
        wide = apply_filter(deals, FilterSpec(stages={"lead", "active_convo"}))
        assert len(wide) >= len(narrow)

    @pytest.mark.parametrize("spec", SPECS)
    def test_hide_closed_never_grows(self, deals, spec):
        shown = apply_filter(deals, spec.model_copy(update={"hide_closed": False}))
        hidden = apply_filter(deals, spec.model_copy(update={"hide_closed": True}))
        assert len(hidden) <= len(shown)

    def test_input_untouched(self, deals):
        snapshot = list(deals)
        apply_filter(deals, FilterSpec(search="acme", hide_closed=True))
        assert deals == snapshot

    def test_no_spec_returns_copy(self, deals):
        result = apply_filter(deals)
        assert result == deals
        assert result is not deals


class TestFromQuery:
    def test_comma_separated_values(self):
        spec = FilterSpec.from_query(stages="lead, Contacted", priorities="HIGH", tags="a,b", hide_closed=True)
        assert spec.stages == {Stage.LEAD, Stage.CONTACTED}
        assert spec.priorities == {Priority.HIGH}
        assert spec.tags == {"a", "b"}
        assert spec.hide_closed is True

    def test_blank_values(self):
        spec = FilterSpec.from_query(search=None, stages="", tags=" , ")
        assert spec.search == ""
        assert spec.stages == frozenset()
        assert spec.tags == frozenset()

    def test_unknown_stage_rejected(self):
        from pydantic import ValidationError
        with pytest.raises(ValidationError):
            FilterSpec.from_query(stages="lead,bogus")
