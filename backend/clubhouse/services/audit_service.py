"""Audit trail.

Events are stored as records of the ``audit_log`` collection, readable by
admin-tier only.  Each event is categorised for tiered retention:

* **MUTATION** -- kept forever (create, update, delete, login, etc.)
* **READ_ACCESS** -- purged after 90 days (finance summaries, sensitive reads)
* **SYSTEM** -- purged after ``AUDIT_RETENTION_DAYS`` (scheduler runs, startup)
"""

from __future__ import annotations

import dataclasses
import enum
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from clubhouse.config import settings
from clubhouse.principal import Principal
from clubhouse.rbac import Visibility
from clubhouse.store import DocumentStore

logger = logging.getLogger(__name__)

AUDIT_LOG = "audit_log"


class AuditEventCategory(str, enum.Enum):
    MUTATION = "mutation"  # Never deleted
    READ_ACCESS = "read_access"  # 90-day retention
    SYSTEM = "system"  # AUDIT_RETENTION_DAYS


@dataclasses.dataclass(frozen=True)
class AuditEvent:
    timestamp: datetime
    category: AuditEventCategory
    user_id: str | None
    display_name: str | None
    action: str
    resource_type: str | None
    resource_id: str | None
    details: dict | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "category": self.category.value,
            "user_id": self.user_id,
            "display_name": self.display_name,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "details": self.details,
        }


# ---------------------------------------------------------------------------
# Action → category classifier
# ---------------------------------------------------------------------------

_MUTATION_KEYWORDS = {
    "create",
    "update",
    "delete",
    "disable",
    "provision",
    "reconcile",
    "unreconcile",
    "login",
    "logout",
    "signup",
    "grant",
    "revoke",
}

_SYSTEM_PREFIXES = (
    "system.",
    "scheduler.",
    "auth.failed",
)


def classify_action(action: str) -> AuditEventCategory:
    """Map an action string to a retention category."""
    action_lower = action.lower()

    for prefix in _SYSTEM_PREFIXES:
        if action_lower.startswith(prefix):
            return AuditEventCategory.SYSTEM

    parts = action_lower.replace(".", "_").split("_")
    for part in parts:
        if part in _MUTATION_KEYWORDS:
            return AuditEventCategory.MUTATION

    read_keywords = ("view", "read", "list", "summary", "export", "report")
    if any(kw in action_lower for kw in read_keywords):
        return AuditEventCategory.READ_ACCESS

    # Unknown actions are kept forever.
    return AuditEventCategory.MUTATION


async def write_audit_log(
    store: DocumentStore,
    principal: Principal | None,
    action: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    details: dict | None = None,
) -> AuditEvent:
    event = AuditEvent(
        timestamp=datetime.now(timezone.utc),
        category=classify_action(action),
        user_id=principal.id if principal else None,
        display_name=principal.display_name if principal else None,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
    )
    await store.insert(
        AUDIT_LOG,
        event.to_dict(),
        visibility=Visibility.ADMIN.value,
        owner_id=event.user_id,
    )
    return event


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------


def retention_days() -> dict[AuditEventCategory, int | None]:
    """Retention windows (days).  None = never purge."""
    return {
        AuditEventCategory.MUTATION: None,
        AuditEventCategory.READ_ACCESS: 90,
        AuditEventCategory.SYSTEM: settings.AUDIT_RETENTION_DAYS,
    }


async def purge_audit_retention(
    store: DocumentStore, now: datetime | None = None
) -> dict[str, int]:
    """Delete expired audit events.  Returns counts per category."""
    now = now or datetime.now(timezone.utc)
    summary: dict[str, int] = {}
    for category, days in retention_days().items():
        if days is None:
            continue
        cutoff = now - timedelta(days=days)
        expired = [
            r for r in await store.list(AUDIT_LOG, {"category": category.value})
            if r.created_at < cutoff
        ]
        for record in expired:
            await store.delete(AUDIT_LOG, record.id)
        summary[category.value] = len(expired)
    logger.info(f"Audit retention purge: {summary}")
    return summary
