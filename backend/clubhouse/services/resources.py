"""Resource query/mutation layer.

``ResourceService`` is bound to a store and the current principal (or
``None``).  It is the only path from routes to collection data: reads are
narrowed by the principal's readable visibilities inside the store query and
then filtered with ``readable_resources``; writes are gated with ``can_mutate``.

Denials come back as ``Outcome`` values.  Bad input raises
``ResourceValidationError``; store outages raise ``StoreUnavailableError``.
"""
from __future__ import annotations

import dataclasses
import enum
import logging
from typing import Any

from clubhouse.access_control import (
    can_change_placement,
    can_mutate,
    can_read,
    readable_resources,
    readable_visibilities,
)
from clubhouse.principal import Principal
from clubhouse.rbac import SCOPE_ALL, Action, ResourcePolicy, Visibility, get_policy
from clubhouse.services.audit_service import write_audit_log
from clubhouse.services.feeds import FeedHub, feed_hub
from clubhouse.store import META_FIELDS, DocumentStore, Record

logger = logging.getLogger(__name__)

# Fields callers may never set through the data body.
_RESERVED_FIELDS = set(META_FIELDS) | {"collection", "created_at", "updated_at"}


class ResourceValidationError(ValueError):
    pass


class Outcome(str, enum.Enum):
    OK = "ok"
    DENIED = "denied"
    NOT_FOUND = "not_found"
    CONFIRMATION_REQUIRED = "confirmation_required"


@dataclasses.dataclass(frozen=True)
class MutationResult:
    outcome: Outcome
    record: Record | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.OK


@dataclasses.dataclass(frozen=True)
class ResourceDraft:
    """A record that does not exist yet, for create decisions."""

    collection: str
    scope: str
    visibility: str
    owner_id: str | None


class ResourceService:
    def __init__(
        self,
        store: DocumentStore,
        principal: Principal | None,
        feeds: FeedHub = feed_hub,
    ) -> None:
        self.store = store
        self.principal = principal
        self.feeds = feeds

    # ---- helpers ----

    @staticmethod
    def policy_for(collection: str) -> ResourcePolicy:
        policy = get_policy(collection)
        if policy is None:
            raise ResourceValidationError(f"Unknown collection '{collection}'")
        return policy

    def _check_visibility(self, policy: ResourcePolicy, visibility: str) -> str:
        try:
            level = Visibility(visibility)
        except ValueError:
            raise ResourceValidationError(f"Invalid visibility '{visibility}'")
        if level not in policy.visibilities:
            allowed = ", ".join(sorted(v.value for v in policy.visibilities))
            raise ResourceValidationError(
                f"Visibility '{visibility}' is not allowed for {policy.collection}. Allowed: {allowed}"
            )
        return level.value

    async def _check_scope(self, policy: ResourcePolicy, scope: str) -> str:
        if scope == SCOPE_ALL:
            if not policy.org_wide:
                raise ResourceValidationError(
                    f"{policy.collection} records must be scoped to one of {policy.scope_collection}"
                )
            return scope
        if policy.scope_collection is None:
            raise ResourceValidationError(f"{policy.collection} records are always organization-wide")
        if await self.store.get(policy.scope_collection, scope) is None:
            raise ResourceValidationError(
                f"Scope '{scope}' does not name a record in {policy.scope_collection}"
            )
        return scope

    @staticmethod
    def _clean(body: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in body.items() if k not in _RESERVED_FIELDS}

    async def _after_mutation(self, action: str, record: Record, details: dict | None = None) -> None:
        await write_audit_log(
            self.store,
            self.principal,
            f"{record.collection}.{action}",
            resource_type=record.collection,
            resource_id=record.id,
            details=details,
        )
        if self.feeds.has_subscribers(record.collection):
            self.feeds.publish(record.collection, await self.store.list(record.collection))

    # ---- reads ----

    async def list(
        self, collection: str, filter: dict[str, Any] | None = None
    ) -> list[Record]:
        self.policy_for(collection)
        query = dict(filter or {})
        readable = readable_visibilities(self.principal)
        requested = query.get("visibility")
        if requested is None:
            query["visibility"] = sorted(readable)
        else:
            wanted = {requested} if isinstance(requested, str) else set(requested)
            query["visibility"] = sorted(wanted & readable)
            if not query["visibility"]:
                return []

        records = await self.store.list(collection, query)
        return readable_resources(self.principal, records)

    async def get(self, collection: str, record_id: str) -> Record | None:
        self.policy_for(collection)
        record = await self.store.get(collection, record_id)
        if record is None or not can_read(self.principal, record):
            return None
        return record

    def allowed_actions(self, record: Record) -> dict[str, bool]:
        return {
            "edit": can_mutate(self.principal, record, Action.EDIT),
            "delete": can_mutate(self.principal, record, Action.DELETE),
        }

    # ---- writes ----

    async def create(
        self,
        collection: str,
        body: dict[str, Any],
        scope: str = SCOPE_ALL,
        visibility: str | None = None,
    ) -> MutationResult:
        policy = self.policy_for(collection)
        visibility = visibility or policy.default_visibility.value
        draft = ResourceDraft(
            collection=collection,
            scope=scope,
            visibility=visibility,
            owner_id=self.principal.id if self.principal else None,
        )
        if not can_mutate(self.principal, draft, Action.CREATE):
            return MutationResult(Outcome.DENIED)
        visibility = self._check_visibility(policy, visibility)
        scope = await self._check_scope(policy, scope)

        data = self._clean(body)
        data.setdefault("created_by_name", self.principal.display_name)
        record = await self.store.insert(
            collection,
            data,
            visibility=visibility,
            scope=scope,
            owner_id=self.principal.id,
        )
        logger.info("%s created %s/%s", self.principal.id, collection, record.id)
        await self._after_mutation("create", record, {"scope": scope, "visibility": visibility})
        return MutationResult(Outcome.OK, record)

    async def update(
        self,
        collection: str,
        record_id: str,
        changes: dict[str, Any],
        scope: str | None = None,
        visibility: str | None = None,
    ) -> MutationResult:
        policy = self.policy_for(collection)
        record = await self.get(collection, record_id)
        if record is None:
            return MutationResult(Outcome.NOT_FOUND)
        if not can_mutate(self.principal, record, Action.EDIT):
            return MutationResult(Outcome.DENIED)
        moving = (visibility is not None and visibility != record.visibility) or (
            scope is not None and scope != record.scope
        )
        if moving and not can_change_placement(self.principal, record):
            return MutationResult(Outcome.DENIED)

        patch = self._clean(changes)
        if visibility is not None:
            patch["visibility"] = self._check_visibility(policy, visibility)
        if scope is not None:
            patch["scope"] = await self._check_scope(policy, scope)

        updated = await self.store.patch(collection, record_id, patch)
        if updated is None:
            # Deleted by someone else between read and write.
            return MutationResult(Outcome.NOT_FOUND)
        await self._after_mutation("update", updated, {"fields": sorted(patch)})
        return MutationResult(Outcome.OK, updated)

    async def delete(
        self, collection: str, record_id: str, confirm: str | None
    ) -> MutationResult:
        """Delete after an explicit confirmation: ``confirm`` must echo the id."""
        self.policy_for(collection)
        record = await self.get(collection, record_id)
        if record is None:
            return MutationResult(Outcome.NOT_FOUND)
        if not can_mutate(self.principal, record, Action.DELETE):
            return MutationResult(Outcome.DENIED)
        if confirm != record_id:
            return MutationResult(Outcome.CONFIRMATION_REQUIRED, record)

        if not await self.store.delete(collection, record_id):
            return MutationResult(Outcome.NOT_FOUND)
        logger.info("%s deleted %s/%s", self.principal.id, collection, record_id)
        await self._after_mutation("delete", record)
        return MutationResult(Outcome.OK, record)
