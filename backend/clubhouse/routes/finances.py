"""Finance routes --- summary and reconciliation (admin-tier only)."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from clubhouse.middleware.auth import FORBIDDEN_DETAIL, require_tier
from clubhouse.principal import Principal
from clubhouse.services.finance import financial_summary, set_reconciled
from clubhouse.services.resources import Outcome, ResourceService
from clubhouse.store import DocumentStore, get_store

router = APIRouter(prefix="/api/finances", tags=["finances"])


@router.get("/summary")
async def summary(
    season: str | None = Query(None),
    team_id: str | None = Query(None),
    store: DocumentStore = Depends(get_store),
    principal: Principal = Depends(require_tier("admin")),
):
    """Income and expense totals, recomputed from the ledger on every call."""
    return await financial_summary(ResourceService(store, principal), season, team_id)


async def _reconcile(
    collection: str, record_id: str, reconciled: bool, store: DocumentStore, principal: Principal
) -> dict:
    result = await set_reconciled(ResourceService(store, principal), collection, record_id, reconciled)
    if result.outcome == Outcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Not found")
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=FORBIDDEN_DETAIL)
    return result.record.to_dict()


@router.post("/{collection}/{record_id}/reconcile")
async def reconcile(
    collection: str,
    record_id: str,
    store: DocumentStore = Depends(get_store),
    principal: Principal = Depends(require_tier("admin")),
):
    return await _reconcile(collection, record_id, True, store, principal)


@router.delete("/{collection}/{record_id}/reconcile")
async def unreconcile(
    collection: str,
    record_id: str,
    store: DocumentStore = Depends(get_store),
    principal: Principal = Depends(require_tier("admin")),
):
    return await _reconcile(collection, record_id, False, store, principal)
