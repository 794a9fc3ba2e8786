from __future__ import annotations

import logging
from pathlib import Path

import openpyxl
from pydantic import ValidationError

from dealflow.schemas import DealCreate, ImportResult
from dealflow.store import DealStore

log = logging.getLogger(__name__)


def _s(value: object) -> str:
    """Safely coerce cell value to stripped string."""
    if value is None:
        return ""
    return str(value).strip()


def _key(header: object) -> str:
    return _s(header).lower().replace("_", "").replace(" ", "")


# Normalized header -> DealCreate attribute
_HEADER_FIELDS = {
    "title": "title", "deal": "title", "name": "title",
    "personname": "person_name", "person": "person_name", "contact": "person_name",
    "companyname": "company_name", "company": "company_name",
    "stage": "stage",
    "tags": "tags",
    "priority": "priority",
    "expectedvalue": "expected_value", "value": "expected_value",
    "closeprobability": "close_probability", "probability": "close_probability",
    "expectedclosedate": "expected_close_date",
    "lastcontactdate": "last_contact_date",
    "nextactiondate": "next_action_date",
    "nextaction": "next_action",
    "notes": "notes",
}


def _parse_tags(value: object) -> list[str]:
    return [t.strip() for t in _s(value).split(",") if t.strip()]


def _row_payload(row: tuple, columns: dict[int, str]) -> dict:
    payload: dict = {}
    for idx, field in columns.items():
        if idx >= len(row) or row[idx] is None or _s(row[idx]) == "":
            continue
        val = row[idx]
        if field == "tags":
            payload[field] = _parse_tags(val)
        elif field in ("stage", "priority"):
            payload[field] = _s(val).lower().replace(" ", "_")
        elif isinstance(val, str):
            payload[field] = val.strip()
        else:
            payload[field] = val
    return payload


def import_xlsx(path: str | Path, store: DealStore) -> ImportResult:
    """Create one deal per row of the first sheet. The header row names the columns."""
    wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        rows = ws.iter_rows(values_only=True)
        header = next(rows, None)
        if not header:
            return ImportResult(imported=0, skipped=0, errors=["Sheet is empty"])
        columns = {idx: _HEADER_FIELDS[_key(h)] for idx, h in enumerate(header) if _key(h) in _HEADER_FIELDS}
        if "title" not in columns.values():
            return ImportResult(imported=0, skipped=0, errors=["No title column found"])

        imported = skipped = 0
        errors: list[str] = []
        for row_num, row in enumerate(rows, start=2):
            payload = _row_payload(row or (), columns)
            if not payload.get("title"):
                skipped += 1
                continue
            try:
                store.create(DealCreate.model_validate(payload))
                imported += 1
            except ValidationError as exc:
                skipped += 1
                first = exc.errors()[0]
                loc = ".".join(str(p) for p in first["loc"]) or "row"
                errors.append(f"Row {row_num}: {loc}: {first['msg']}")
        log.info("Imported %d deals from %s (%d skipped)", imported, path, skipped)
        return ImportResult(imported=imported, skipped=skipped, errors=errors)
    finally:
        wb.close()
