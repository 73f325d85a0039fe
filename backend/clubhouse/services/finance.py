"""Income/expense summaries and reconciliation.

Totals are recomputed from the ledger records on every read; nothing
aggregated is stored.  Every function here is admin-tier only and returns
``None`` (or a DENIED outcome) for anyone else.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from clubhouse.access_control import is_admin_tier
from clubhouse.rbac import FINANCE_COLLECTIONS
from clubhouse.services.audit_service import write_audit_log
from clubhouse.services.resources import (
    MutationResult,
    Outcome,
    ResourceService,
    ResourceValidationError,
)
from clubhouse.store import Record

logger = logging.getLogger(__name__)

EXPENSE_CATEGORIES = [
    "facilities",
    "equipment",
    "uniforms",
    "tournaments",
    "travel",
    "insurance",
    "league_fees",
    "coaching",
    "administrative",
    "marketing",
    "fundraising",
    "maintenance",
    "other",
]

INCOME_CATEGORIES = [
    "player_payments",
    "sponsorships",
    "fundraisers",
    "donations",
    "grants",
    "merchandise",
    "concessions",
    "other",
]

_ZERO = Decimal("0.00")


def _amount(record: Record) -> Decimal:
    raw = record.data.get("amount", 0)
    try:
        return Decimal(str(raw)).quantize(_ZERO)
    except (InvalidOperation, ValueError):
        logger.warning("Ignoring non-numeric amount %r on %s/%s", raw, record.collection, record.id)
        return _ZERO


def _by_category(records: Iterable[Record], categories: list[str]) -> dict[str, Decimal]:
    totals = {c: _ZERO for c in categories}
    for record in records:
        category = record.data.get("category")
        if category not in totals:
            category = "other"
        totals[category] += _amount(record)
    return totals


def summarize(income: list[Record], expenses: list[Record]) -> dict[str, Any]:
    """Per-category totals, grand totals, net and reconciliation counts."""
    income_by_cat = _by_category(income, INCOME_CATEGORIES)
    expense_by_cat = _by_category(expenses, EXPENSE_CATEGORIES)
    total_income = sum(income_by_cat.values(), _ZERO)
    total_expenses = sum(expense_by_cat.values(), _ZERO)

    everything = list(income) + list(expenses)
    reconciled = sum(1 for r in everything if r.data.get("reconciled"))

    return {
        "income": {k: str(v) for k, v in income_by_cat.items() if v},
        "expenses": {k: str(v) for k, v in expense_by_cat.items() if v},
        "total_income": str(total_income),
        "total_expenses": str(total_expenses),
        "net": str(total_income - total_expenses),
        "reconciled_count": reconciled,
        "unreconciled_count": len(everything) - reconciled,
    }


async def financial_summary(
    service: ResourceService,
    season: str | None = None,
    team_id: str | None = None,
) -> dict[str, Any] | None:
    if not is_admin_tier(service.principal):
        return None

    filter: dict[str, Any] = {}
    if season:
        filter["season"] = season
    if team_id:
        filter["team_id"] = team_id

    income = await service.list("income", filter)
    expenses = await service.list("expenses", filter)
    summary = summarize(income, expenses)
    summary["season"] = season
    summary["team_id"] = team_id

    await write_audit_log(
        service.store,
        service.principal,
        "finance.summary.view",
        resource_type="finances",
        details={"season": season, "team_id": team_id},
    )
    return summary


async def set_reconciled(
    service: ResourceService, collection: str, record_id: str, reconciled: bool
) -> MutationResult:
    """Mark an income or expense record (un)reconciled."""
    if collection not in FINANCE_COLLECTIONS:
        raise ResourceValidationError(f"'{collection}' is not a finance collection")
    if not is_admin_tier(service.principal):
        return MutationResult(Outcome.DENIED)

    stamp = datetime.now(timezone.utc).isoformat() if reconciled else None
    result = await service.update(
        collection,
        record_id,
        {
            "reconciled": reconciled,
            "reconciled_at": stamp,
            "reconciled_by": service.principal.id if reconciled else None,
        },
    )
    if result.ok:
        logger.info(
            "%s %s %s/%s",
            service.principal.id,
            "reconciled" if reconciled else "unreconciled",
            collection,
            record_id,
        )
    return result
