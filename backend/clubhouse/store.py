"""Document store: collection and query semantics over records.

Provides:
- ``Record``, the stored shape every collection shares
- ``DocumentStore``, the interface the resource layer depends on
- ``SqlDocumentStore`` (Postgres via SQLAlchemy) and ``MemoryDocumentStore``
- ``get_store()`` FastAPI dependency, selected by ``settings.STORE_BACKEND``

Filters are dicts.  A scalar value means equality, a list/tuple/set means
membership.  Keys ``id``, ``scope``, ``visibility`` and ``owner_id`` address
record metadata; any other key addresses a field of ``data``.

Backend failures surface as ``StoreUnavailableError`` so callers can tell an
outage apart from an access decision.
"""
from __future__ import annotations

import contextlib
import copy
import dataclasses
import json
import datetime
import logging
import uuid
from collections.abc import AsyncGenerator, Iterator
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.config import settings
from clubhouse.database import get_db
from clubhouse.rbac import SCOPE_ALL

logger = logging.getLogger(__name__)

META_FIELDS = ("id", "scope", "visibility", "owner_id")


class StoreUnavailableError(Exception):
    """The document store could not complete a request.  Retryable."""

    def __init__(self, message: str = "The data service is temporarily unavailable.") -> None:
        super().__init__(message)
        self.message = message


@dataclasses.dataclass(frozen=True)
class Record:
    id: str
    collection: str
    scope: str
    visibility: str
    owner_id: str | None
    data: dict[str, Any]
    created_at: datetime.datetime
    updated_at: datetime.datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "collection": self.collection,
            "scope": self.scope,
            "visibility": self.visibility,
            "owner_id": self.owner_id,
            **self.data,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _is_many(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def _as_text(value: Any) -> str:
    """Text form of a JSON scalar, as Postgres renders ``data->>'field'``."""
    return value if isinstance(value, str) else json.dumps(value)


def _same(actual: Any, expected: Any) -> bool:
    # Query strings carry no types; match stored scalars by their text form.
    if isinstance(expected, str) and isinstance(actual, (bool, int, float)):
        return _as_text(actual) == expected
    return actual == expected


class DocumentStore:
    """Interface of the external document store."""

    async def list(
        self,
        collection: str,
        filter: dict[str, Any] | None = None,
        order_by: str = "created_at",
        descending: bool = True,
    ) -> list[Record]:
        raise NotImplementedError

    async def get(self, collection: str, record_id: str) -> Record | None:
        raise NotImplementedError

    async def insert(
        self,
        collection: str,
        data: dict[str, Any],
        *,
        visibility: str,
        scope: str = SCOPE_ALL,
        owner_id: str | None = None,
        record_id: str | None = None,
    ) -> Record:
        raise NotImplementedError

    async def patch(
        self, collection: str, record_id: str, changes: dict[str, Any]
    ) -> Record | None:
        """Apply ``changes`` (metadata and/or data fields).  Last write wins."""
        raise NotImplementedError

    async def delete(self, collection: str, record_id: str) -> bool:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# In-process backend
# ---------------------------------------------------------------------------


class MemoryDocumentStore(DocumentStore):
    """Process-local store for development and tests."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Record]] = {}

    @staticmethod
    def _field(record: Record, key: str) -> Any:
        if key in META_FIELDS or key in ("created_at", "updated_at"):
            return getattr(record, key)
        return record.data.get(key)

    def _matches(self, record: Record, filter: dict[str, Any]) -> bool:
        for key, expected in filter.items():
            actual = self._field(record, key)
            if _is_many(expected):
                if not any(_same(actual, e) for e in expected):
                    return False
            elif not _same(actual, expected):
                return False
        return True

    @staticmethod
    def _copy(record: Record) -> Record:
        return dataclasses.replace(record, data=copy.deepcopy(record.data))

    async def list(self, collection, filter=None, order_by="created_at", descending=True):
        records = [
            r for r in self._collections.get(collection, {}).values()
            if self._matches(r, filter or {})
        ]

        def sort_key(r: Record):
            value = self._field(r, order_by)
            return (value is not None, value if value is not None else "")

        records.sort(key=sort_key, reverse=descending)
        return [self._copy(r) for r in records]

    async def get(self, collection, record_id):
        record = self._collections.get(collection, {}).get(record_id)
        return self._copy(record) if record else None

    async def insert(self, collection, data, *, visibility, scope=SCOPE_ALL, owner_id=None, record_id=None):
        now = _now()
        record = Record(
            id=record_id or str(uuid.uuid4()),
            collection=collection,
            scope=scope,
            visibility=visibility,
            owner_id=owner_id,
            data=copy.deepcopy(data),
            created_at=now,
            updated_at=now,
        )
        self._collections.setdefault(collection, {})[record.id] = record
        return self._copy(record)

    async def patch(self, collection, record_id, changes):
        record = self._collections.get(collection, {}).get(record_id)
        if record is None:
            return None
        meta = {k: v for k, v in changes.items() if k in META_FIELDS and k != "id"}
        data = {**record.data, **{k: v for k, v in changes.items() if k not in META_FIELDS}}
        updated = dataclasses.replace(record, data=copy.deepcopy(data), updated_at=_now(), **meta)
        self._collections[collection][record_id] = updated
        return self._copy(updated)

    async def delete(self, collection, record_id):
        return self._collections.get(collection, {}).pop(record_id, None) is not None


# ---------------------------------------------------------------------------
# Postgres backend
# ---------------------------------------------------------------------------


class SqlDocumentStore(DocumentStore):
    """Store backed by the ``records`` table through an ``AsyncSession``."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    @contextlib.contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Document store {operation} failed: {e}")
            raise StoreUnavailableError() from e

    @staticmethod
    def _to_record(row) -> Record:
        return Record(
            id=row.id,
            collection=row.collection,
            scope=row.scope,
            visibility=row.visibility,
            owner_id=row.owner_id,
            data=dict(row.data or {}),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _column(key: str):
        from clubhouse.models.record import StoredRecord

        if key in META_FIELDS or key in ("created_at", "updated_at"):
            return getattr(StoredRecord, key), None
        return None, StoredRecord.data[key]

    def _clause(self, key: str, value: Any):
        column, field = self._column(key)
        if column is not None:
            return column.in_(list(value)) if _is_many(value) else column == value
        if _is_many(value):
            return field.as_string().in_([_as_text(v) for v in value])
        if value is None:
            return field.as_string().is_(None)
        if isinstance(value, bool):
            return field.as_boolean() == value
        if isinstance(value, int):
            return field.as_integer() == value
        if isinstance(value, float):
            return field.as_float() == value
        return field.as_string() == str(value)

    async def list(self, collection, filter=None, order_by="created_at", descending=True):
        from clubhouse.models.record import StoredRecord

        stmt = select(StoredRecord).where(StoredRecord.collection == collection)
        for key, value in (filter or {}).items():
            stmt = stmt.where(self._clause(key, value))

        column, field = self._column(order_by)
        sort = column if column is not None else field.as_string()
        stmt = stmt.order_by(sort.desc() if descending else sort.asc())

        with self._guard("list"):
            result = await self.db.execute(stmt)
            return [self._to_record(row) for row in result.scalars().all()]

    async def get(self, collection, record_id):
        from clubhouse.models.record import StoredRecord

        with self._guard("get"):
            row = await self.db.get(StoredRecord, (collection, record_id))
        return self._to_record(row) if row else None

    async def insert(self, collection, data, *, visibility, scope=SCOPE_ALL, owner_id=None, record_id=None):
        from clubhouse.models.record import StoredRecord

        now = _now()
        row = StoredRecord(
            collection=collection,
            id=record_id or str(uuid.uuid4()),
            scope=scope,
            visibility=visibility,
            owner_id=owner_id,
            data=data,
            created_at=now,
            updated_at=now,
        )
        with self._guard("insert"):
            self.db.add(row)
            await self.db.commit()
        return self._to_record(row)

    async def patch(self, collection, record_id, changes):
        from clubhouse.models.record import StoredRecord

        with self._guard("patch"):
            row = await self.db.get(StoredRecord, (collection, record_id))
            if row is None:
                return None
            for key in ("scope", "visibility", "owner_id"):
                if key in changes:
                    setattr(row, key, changes[key])
            # Reassign so the JSON column is flagged dirty.
            row.data = {**(row.data or {}), **{k: v for k, v in changes.items() if k not in META_FIELDS}}
            row.updated_at = _now()
            await self.db.commit()
        return self._to_record(row)

    async def delete(self, collection, record_id):
        from clubhouse.models.record import StoredRecord

        stmt = delete(StoredRecord).where(
            StoredRecord.collection == collection,
            StoredRecord.id == record_id,
        )
        with self._guard("delete"):
            result = await self.db.execute(stmt)
            await self.db.commit()
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

_memory_store: MemoryDocumentStore | None = None


def get_memory_store() -> MemoryDocumentStore:
    global _memory_store
    if _memory_store is None:
        _memory_store = MemoryDocumentStore()
    return _memory_store


async def get_store() -> AsyncGenerator[DocumentStore, None]:
    if settings.STORE_BACKEND == "memory":
        yield get_memory_store()
        return
    async for db in get_db():
        yield SqlDocumentStore(db)
