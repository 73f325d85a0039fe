"""The authenticated actor, as an immutable snapshot of its profile record."""
from __future__ import annotations

import dataclasses
import logging
from typing import Any

from clubhouse.rbac import DEFAULT_ROLE, PermissionFlag, Role, parse_flag, parse_role

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Principal:
    id: str
    email: str
    display_name: str
    roles: frozenset[Role] = frozenset({DEFAULT_ROLE})
    team_ids: frozenset[str] = frozenset()
    linked_resource_ids: frozenset[str] = frozenset()
    permissions: frozenset[PermissionFlag] = frozenset()
    is_active: bool = True

    @property
    def memberships(self) -> frozenset[str]:
        """Team and player ids the principal is associated with."""
        return self.team_ids | self.linked_resource_ids

    @classmethod
    def from_profile(cls, subject_id: str, profile: dict[str, Any]) -> Principal:
        """Build a principal from a stored profile body.

        ``roles`` is canonical.  Older profiles carry a single ``role`` tag;
        it is used only when ``roles`` is missing or empty.
        """
        raw_roles = list(profile.get("roles") or [])
        legacy = profile.get("role")
        if not raw_roles and legacy:
            raw_roles = [legacy]
        elif legacy and legacy not in raw_roles:
            logger.warning(
                "Profile %s has legacy role %r outside roles %r; using roles",
                subject_id, legacy, raw_roles,
            )

        roles = set()
        for tag in raw_roles:
            role = parse_role(tag)
            if role is None:
                logger.warning("Dropping unknown role %r on profile %s", tag, subject_id)
                continue
            roles.add(role)
        if not roles:
            roles.add(DEFAULT_ROLE)

        # Stored as {flag: bool}; only true flags grant anything.
        flags = set()
        for name, granted in (profile.get("permissions") or {}).items():
            flag = parse_flag(name)
            if flag is not None and granted:
                flags.add(flag)

        return cls(
            id=subject_id,
            email=profile.get("email", ""),
            display_name=profile.get("display_name") or profile.get("email", ""),
            roles=frozenset(roles),
            team_ids=frozenset(profile.get("team_ids") or []),
            linked_resource_ids=frozenset(profile.get("linked_player_ids") or []),
            permissions=frozenset(flags),
            is_active=profile.get("is_active", True),
        )

    def with_roles(self, *roles: Role) -> Principal:
        return dataclasses.replace(self, roles=frozenset(roles))

    def with_teams(self, *team_ids: str) -> Principal:
        return dataclasses.replace(self, team_ids=frozenset(team_ids))
