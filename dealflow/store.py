"""Deal record store: one interface, two interchangeable backends.

``SqlDealStore`` keeps deals in the ``deals`` table via SQLAlchemy.
``JsonFileDealStore`` keeps the whole collection as one JSON document on disk,
the same blob-in-a-key approach a browser-storage client uses. Both persist
every mutation before returning.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import timedelta
from pathlib import Path
from typing import Any

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dealflow.config import get_settings
from dealflow.models import DealRecord, StoreMeta
from dealflow.schemas import Deal, DealCreate, DealUpdate
from dealflow.utils import as_utc, decode_tags, encode_tags, next_stamp, utcnow

log = logging.getLogger(__name__)

DealId = int | str


class DealNotFoundError(LookupError):
    """No deal with the given id exists."""
    def __init__(self, deal_id: DealId):
        super().__init__(f"Deal {deal_id} not found")
        self.deal_id = deal_id


class StorageError(Exception):
    """The backing storage could not be read or written."""


class DealStore(ABC):
    @abstractmethod
    def get_all(self) -> list[Deal]:
        """All deals, most recently updated first."""

    def get(self, deal_id: DealId) -> Deal:
        for deal in self.get_all():
            if str(deal.id) == str(deal_id):
                return deal
        raise DealNotFoundError(deal_id)

    @abstractmethod
    def create(self, data: DealCreate) -> Deal:
        ...

    @abstractmethod
    def update(self, deal_id: DealId, changes: DealUpdate) -> Deal:
        ...

    @abstractmethod
    def delete(self, deal_id: DealId) -> None:
        ...

    @abstractmethod
    def is_initialized(self) -> bool:
        """True once the backing storage has ever been written, even if now empty."""


# ---------------------------------------------------------------------------
# SQL backend
# ---------------------------------------------------------------------------

_DATE_FIELDS = ("expected_close_date", "last_contact_date", "next_action_date")


def _column_values(values: dict[str, Any]) -> dict[str, Any]:
    """Translate schema attribute values into ``DealRecord`` column values."""
    out: dict[str, Any] = {}
    for key, val in values.items():
        if key == "tags":
            out["tags_json"] = encode_tags(val)
        elif key in ("stage", "priority"):
            out[key] = val.value
        elif key in _DATE_FIELDS:
            # stored naive, always UTC
            out[key] = as_utc(val).replace(tzinfo=None) if val is not None else None
        else:
            out[key] = val
    return out


def record_to_deal(record: DealRecord) -> Deal:
    return Deal(
        id=record.id, title=record.title,
        person_name=record.person_name, company_name=record.company_name,
        stage=record.stage, tags=decode_tags(record.tags_json), priority=record.priority,
        expected_value=record.expected_value or 0, close_probability=record.close_probability or 0,
        expected_close_date=as_utc(record.expected_close_date),
        last_contact_date=as_utc(record.last_contact_date),
        next_action_date=as_utc(record.next_action_date),
        next_action=record.next_action, notes=record.notes,
        created_at=as_utc(record.created_at), updated_at=as_utc(record.updated_at),
    )


_INITIALIZED_KEY = "initialized_at"


class SqlDealStore(DealStore):
    """Deal store over the ``deals`` table. The caller owns the session."""

    def __init__(self, session: Session):
        self.session = session

    def _record(self, deal_id: DealId) -> DealRecord:
        try:
            pk = int(deal_id)
        except (TypeError, ValueError):
            raise DealNotFoundError(deal_id) from None
        record = self.session.execute(select(DealRecord).where(DealRecord.id == pk)).scalars().first()
        if record is None:
            raise DealNotFoundError(deal_id)
        return record

    def _commit(self) -> None:
        try:
            if self.session.get(StoreMeta, _INITIALIZED_KEY) is None:
                self.session.add(StoreMeta(key=_INITIALIZED_KEY, value=utcnow().isoformat()))
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageError(f"Failed to persist deals: {exc}") from exc

    def get_all(self) -> list[Deal]:
        try:
            records = self.session.execute(
                select(DealRecord).order_by(DealRecord.updated_at.desc(), DealRecord.id.desc())
            ).scalars().all()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to fetch deals: {exc}") from exc
        return [record_to_deal(r) for r in records]

    def get(self, deal_id: DealId) -> Deal:
        return record_to_deal(self._record(deal_id))

    def is_initialized(self) -> bool:
        try:
            if self.session.get(StoreMeta, _INITIALIZED_KEY) is not None:
                return True
            # databases written before the marker existed
            return self.session.execute(select(DealRecord.id).limit(1)).first() is not None
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to inspect deal storage: {exc}") from exc

    def create(self, data: DealCreate) -> Deal:
        now = utcnow().replace(tzinfo=None)
        record = DealRecord(**_column_values(data.model_dump()), created_at=now, updated_at=now)
        self.session.add(record)
        self._commit()
        log.info("Created deal %s (%s)", record.id, record.title)
        return record_to_deal(record)

    def update(self, deal_id: DealId, changes: DealUpdate) -> Deal:
        record = self._record(deal_id)
        for column, val in _column_values(changes.changes()).items():
            setattr(record, column, val)
        record.updated_at = next_stamp(record.updated_at).replace(tzinfo=None)
        self._commit()
        return record_to_deal(record)

    def delete(self, deal_id: DealId) -> None:
        record = self._record(deal_id)
        self.session.delete(record)
        self._commit()
        log.info("Deleted deal %s", deal_id)


# ---------------------------------------------------------------------------
# JSON file backend
# ---------------------------------------------------------------------------


class JsonFileDealStore(DealStore):
    """Whole-collection JSON document, rewritten atomically on every mutation."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> list[Deal]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Failed to read {self.path}: {exc}") from exc
        if not isinstance(raw, list):
            raise StorageError(f"Failed to read {self.path}: expected a JSON array, got {type(raw).__name__}")
        try:
            return [Deal.model_validate(item) for item in raw]
        except ValidationError as exc:
            raise StorageError(f"Failed to read {self.path}: {exc}") from exc

    def _write(self, deals: list[Deal]) -> None:
        payload = json.dumps([d.model_dump(mode="json", by_alias=True) for d in deals], indent=2)
        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.path.parent, suffix=".tmp", delete=False,
            ) as f:
                tmp_path = Path(f.name)
                f.write(payload)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            if tmp_path:
                tmp_path.unlink(missing_ok=True)
            raise StorageError(f"Failed to write {self.path}: {exc}") from exc

    @staticmethod
    def _index(deals: list[Deal], deal_id: DealId) -> int:
        for idx, deal in enumerate(deals):
            if str(deal.id) == str(deal_id):
                return idx
        raise DealNotFoundError(deal_id)

    def is_initialized(self) -> bool:
        return self.path.exists()

    def get_all(self) -> list[Deal]:
        with self._lock:
            deals = self._read()
        return sorted(deals, key=lambda d: d.updated_at, reverse=True)

    def create(self, data: DealCreate) -> Deal:
        now = utcnow()
        deal = Deal(**data.model_dump(), id=uuid.uuid4().hex, created_at=now, updated_at=now)
        with self._lock:
            self._write([deal, *self._read()])
        log.info("Created deal %s (%s)", deal.id, deal.title)
        return deal

    def update(self, deal_id: DealId, changes: DealUpdate) -> Deal:
        with self._lock:
            deals = self._read()
            idx = self._index(deals, deal_id)
            current = deals[idx]
            merged = Deal.model_validate({
                **current.model_dump(), **changes.changes(),
                "updated_at": next_stamp(current.updated_at),
            })
            deals[idx] = merged
            self._write(deals)
        return merged

    def delete(self, deal_id: DealId) -> None:
        with self._lock:
            deals = self._read()
            del deals[self._index(deals, deal_id)]
            self._write(deals)
        log.info("Deleted deal %s", deal_id)


# ---------------------------------------------------------------------------
# Factory and demo data
# ---------------------------------------------------------------------------

_json_stores: dict[Path, JsonFileDealStore] = {}
_json_lock = threading.Lock()


def json_store(path: str | Path) -> JsonFileDealStore:
    """Shared ``JsonFileDealStore`` per file so every caller uses the same lock."""
    path = Path(path).resolve()
    with _json_lock:
        if path not in _json_stores:
            _json_stores[path] = JsonFileDealStore(path)
        return _json_stores[path]


def get_store(session: Session | None = None) -> DealStore:
    """Return the backend selected by ``DEALFLOW_STORE``."""
    settings = get_settings()
    if settings.store_backend == "json":
        store: DealStore = json_store(settings.json_path)
    else:
        if session is None:
            raise ValueError("The SQL deal store needs a database session")
        store = SqlDealStore(session)
    return store


def demo_deals() -> list[DealCreate]:
    """A small sample pipeline, dated relative to now."""
    now = utcnow()
    return [
        DealCreate(
            title="Enterprise License - Acme Corp", person_name="Alice Johnson",
            company_name="Acme Corp", stage="active_convo", tags=["enterprise", "saas", "Q3"],
            priority="high", expected_value=50000, close_probability=60,
            next_action="Send technical specs", next_action_date=now + timedelta(days=2),
            last_contact_date=now - timedelta(days=5),
            notes="They are very interested in the SSO features. Need to confirm compliance requirements.",
        ),
        DealCreate(
            title="Startup Plan - Beta Inc", person_name="Bob Smith", company_name="Beta Inc",
            stage="proposal_sent", tags=["inbound", "startup"], priority="medium",
            expected_value=5000, close_probability=80,
            next_action="Follow up on proposal", next_action_date=now + timedelta(days=1),
        ),
        DealCreate(
            title="Consulting Project - Gamma", company_name="Gamma Group", stage="lead",
            tags=["consulting"], priority="low", expected_value=12000, close_probability=20,
            next_action="Initial outreach",
        ),
        DealCreate(
            title="Legacy Contract Renewal", stage="closed_won", tags=["renewal"],
            priority="high", expected_value=25000, close_probability=100,
        ),
    ]


def seed_demo_deals(store: DealStore) -> int:
    """Fill a never-used store with the demo pipeline. Returns the number created.

    A store that has been written before is left alone, even if every deal has
    since been deleted.
    """
    if store.is_initialized():
        return 0
    created = 0
    for data in reversed(demo_deals()):
        store.create(data)
        created += 1
    log.info("Seeded %d demo deals", created)
    return created
