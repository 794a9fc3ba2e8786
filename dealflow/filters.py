"""Filter engine: select the visible subset of deals.

All predicates are ANDed and the input order is preserved. Nothing here
mutates the deals passed in.
"""
from __future__ import annotations

from typing import Iterable

from dealflow.schemas import Deal, FilterSpec
from dealflow.stages import is_closed


def search_text(deal: Deal) -> str:
    """Case-folded haystack for free-text search."""
    parts = (deal.title, deal.person_name, deal.company_name, deal.notes, " ".join(deal.tags))
    return "".join(p or "" for p in parts).casefold()


def matches(deal: Deal, spec: FilterSpec) -> bool:
    if spec.search and spec.search.casefold() not in search_text(deal):
        return False
    if spec.stages and deal.stage not in spec.stages:
        return False
    if spec.hide_closed and is_closed(deal.stage):
        return False
    if spec.priorities and deal.priority not in spec.priorities:
        return False
    if spec.tags and spec.tags.isdisjoint(deal.tags):
        return False
    return True


def apply_filter(deals: Iterable[Deal], spec: FilterSpec | None = None) -> list[Deal]:
    if spec is None:
        return list(deals)
    return [d for d in deals if matches(d, spec)]
