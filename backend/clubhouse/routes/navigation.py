"""Navigation routes: menu composition and route guard decisions."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from clubhouse.access_control import guard_page
from clubhouse.middleware.auth import get_optional_principal
from clubhouse.navigation import build_menu
from clubhouse.principal import Principal

router = APIRouter(prefix="/api/navigation", tags=["navigation"])


@router.get("/menu")
async def menu(principal: Principal | None = Depends(get_optional_principal)):
    """Sidebar sections holding only the pages the caller can reach."""
    return {"sections": [s.to_dict() for s in build_menu(principal)]}


@router.get("/guard")
async def guard(
    path: str = Query(..., min_length=1),
    principal: Principal | None = Depends(get_optional_principal),
):
    decision = guard_page(principal, path)
    return {"path": path, "allowed": decision.allowed, "redirect": decision.redirect}
