"""Page table and menu composition.

Each navigable route declares who may reach it.  Public pages use the
``ANY`` sentinel; signed-in pages open to every role use ``AUTHENTICATED``
(the full role vocabulary, which every onboarded principal intersects).
"""
from __future__ import annotations

import dataclasses

from clubhouse.access_control import ANY, PageRequirement, can_reach_page
from clubhouse.principal import Principal
from clubhouse.rbac import ADMIN_TIER_ROLES, COACH_TIER_ROLES, Role

AUTHENTICATED: frozenset[Role] = frozenset(Role)
MESSAGING_ROLES: frozenset[Role] = frozenset({Role.PARENT}) | COACH_TIER_ROLES
SPONSOR_AREA_ROLES: frozenset[Role] = frozenset({Role.SPONSOR}) | ADMIN_TIER_ROLES


@dataclasses.dataclass(frozen=True)
class Page:
    path: str
    title: str
    requirement: PageRequirement
    section: str | None = None


# Menu sections render in this order.
SECTIONS = ["Main", "Finances", "Operations", "Management", "Sponsorship"]

PAGES: list[Page] = [
    # Public site
    Page("/", "Home", ANY),
    Page("/about", "About", ANY),
    Page("/teams-roster", "Teams", ANY),
    Page("/schedule", "Schedule", ANY),
    Page("/gallery", "Gallery", ANY),
    Page("/sponsors", "Sponsors", ANY),
    Page("/contact", "Contact", ANY),
    Page("/tryouts", "Tryout Registration", ANY),
    Page("/payment-success", "Payment Received", ANY),
    Page("/login", "Sign In", ANY),
    Page("/signup", "Sign Up", ANY),
    # Main
    Page("/dashboard", "Dashboard", AUTHENTICATED, "Main"),
    Page("/teams", "Teams", AUTHENTICATED, "Main"),
    Page("/players", "Players", AUTHENTICATED, "Main"),
    Page("/schedules", "Schedule", AUTHENTICATED, "Main"),
    Page("/announcements", "Announcements", AUTHENTICATED, "Main"),
    Page("/messaging", "Messaging", MESSAGING_ROLES, "Main"),
    Page("/homepage-manager", "Homepage Manager", COACH_TIER_ROLES, "Main"),
    # Finances
    Page("/finances/billing", "Billing & Payments", ADMIN_TIER_ROLES, "Finances"),
    Page("/finances/expenses", "Expenses", ADMIN_TIER_ROLES, "Finances"),
    Page("/finances/income", "Income", ADMIN_TIER_ROLES, "Finances"),
    Page("/finances/assumptions", "Cost Assumptions", ADMIN_TIER_ROLES, "Finances"),
    Page("/finances/reports", "Financial Reports", ADMIN_TIER_ROLES, "Finances"),
    Page("/finances/reconciliation", "Reconciliation", ADMIN_TIER_ROLES, "Finances"),
    Page("/finances/invoices", "Invoices & QR", ADMIN_TIER_ROLES, "Finances"),
    # Operations
    Page("/equipment", "Equipment", ADMIN_TIER_ROLES, "Operations"),
    Page("/volunteers", "Volunteers", AUTHENTICATED, "Operations"),
    Page("/tournaments", "Tournaments", AUTHENTICATED, "Operations"),
    Page("/documents", "Documents", AUTHENTICATED, "Operations"),
    Page("/media", "Media Gallery", AUTHENTICATED, "Operations"),
    # Management
    Page("/metrics", "Player Development", COACH_TIER_ROLES, "Management"),
    Page("/scholarships", "Scholarships", ADMIN_TIER_ROLES, "Management"),
    Page("/sponsors/manage", "Sponsors", ADMIN_TIER_ROLES, "Management"),
    Page("/fundraisers", "Fundraising", ADMIN_TIER_ROLES, "Management"),
    Page("/account-provisioning", "Account Provisioning", ADMIN_TIER_ROLES, "Management"),
    Page("/users", "User Management", frozenset({Role.MASTER_ADMIN}), "Management"),
    # Sponsor area
    Page("/sponsor", "My Sponsorship", SPONSOR_AREA_ROLES, "Sponsorship"),
]

_BY_PATH: dict[str, Page] = {p.path: p for p in PAGES}


def find_page(path: str) -> Page | None:
    """Resolve a route, including detail routes such as ``/teams/<id>``.

    The longest declared path that equals ``path`` or prefixes it at a
    segment boundary wins; ``/`` only matches itself.
    """
    path = "/" + path.strip("/") if path else "/"
    if path in _BY_PATH:
        return _BY_PATH[path]
    best: Page | None = None
    for page in PAGES:
        if page.path == "/":
            continue
        if path.startswith(page.path + "/") and (best is None or len(page.path) > len(best.path)):
            best = page
    return best


@dataclasses.dataclass(frozen=True)
class MenuSection:
    title: str
    items: list[Page]

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "items": [{"title": p.title, "path": p.path} for p in self.items],
        }


def build_menu(principal: Principal | None) -> list[MenuSection]:
    """Menu sections holding only the pages the principal can reach."""
    sections = []
    for title in SECTIONS:
        items = [
            p for p in PAGES
            if p.section == title and can_reach_page(principal, p.requirement)
        ]
        if items:
            sections.append(MenuSection(title, items))
    return sections
