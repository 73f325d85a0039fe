"""Collection routes.

One set of endpoints serves every collection with a policy.  Denied list
entries are dropped, invisible records answer 404 and refused mutations
answer 403 with a generic message that says nothing about the record.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from clubhouse.middleware.auth import FORBIDDEN_DETAIL, get_current_principal, get_optional_principal
from clubhouse.principal import Principal
from clubhouse.rbac import SCOPE_ALL
from clubhouse.services.resources import MutationResult, Outcome, ResourceService
from clubhouse.store import DocumentStore, Record, get_store

router = APIRouter(prefix="/api/resources", tags=["resources"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class RecordCreate(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)
    scope: str = SCOPE_ALL
    visibility: str | None = None


class RecordUpdate(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)
    scope: str | None = None
    visibility: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _service(
    principal: Principal | None = Depends(get_optional_principal),
    store: DocumentStore = Depends(get_store),
) -> ResourceService:
    return ResourceService(store, principal)


def _authenticated_service(
    principal: Principal = Depends(get_current_principal),
    store: DocumentStore = Depends(get_store),
) -> ResourceService:
    return ResourceService(store, principal)


def _record_out(service: ResourceService, record: Record) -> dict:
    item = record.to_dict()
    item["actions"] = service.allowed_actions(record)
    return item


def _raise_for(result: MutationResult) -> Record:
    if result.outcome == Outcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Not found")
    if result.outcome == Outcome.DENIED:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=FORBIDDEN_DETAIL)
    if result.outcome == Outcome.CONFIRMATION_REQUIRED:
        raise HTTPException(
            status_code=428,
            detail="Deletion must be confirmed by passing the record id as 'confirm'.",
        )
    return result.record


def _filters_from(request: Request) -> dict[str, Any]:
    """Query string to a store filter; repeated keys become a membership test."""
    filters: dict[str, Any] = {}
    for key in request.query_params:
        values = request.query_params.getlist(key)
        filters[key] = values[0] if len(values) == 1 else values
    return filters


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/{collection}")
async def list_records(
    collection: str,
    request: Request,
    service: ResourceService = Depends(_service),
):
    """List the caller's readable records.  Query params filter by field."""
    records = await service.list(collection, _filters_from(request))
    items = [_record_out(service, r) for r in records]
    return {"items": items, "total": len(items)}


@router.get("/{collection}/{record_id}")
async def get_record(
    collection: str,
    record_id: str,
    service: ResourceService = Depends(_service),
):
    record = await service.get(collection, record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Not found")
    return _record_out(service, record)


@router.get("/{collection}/{record_id}/actions")
async def record_actions(
    collection: str,
    record_id: str,
    service: ResourceService = Depends(_service),
):
    """Which action buttons to show for one record."""
    record = await service.get(collection, record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Not found")
    return service.allowed_actions(record)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


@router.post("/{collection}", status_code=201)
async def create_record(
    collection: str,
    body: RecordCreate,
    service: ResourceService = Depends(_authenticated_service),
):
    result = await service.create(collection, body.data, scope=body.scope, visibility=body.visibility)
    return _record_out(service, _raise_for(result))


@router.patch("/{collection}/{record_id}")
async def update_record(
    collection: str,
    record_id: str,
    body: RecordUpdate,
    service: ResourceService = Depends(_authenticated_service),
):
    result = await service.update(
        collection, record_id, body.data, scope=body.scope, visibility=body.visibility
    )
    return _record_out(service, _raise_for(result))


@router.delete("/{collection}/{record_id}")
async def delete_record(
    collection: str,
    record_id: str,
    confirm: str | None = Query(None),
    service: ResourceService = Depends(_authenticated_service),
):
    result = await service.delete(collection, record_id, confirm)
    record = _raise_for(result)
    return {"status": "deleted", "id": record.id, "collection": record.collection}

