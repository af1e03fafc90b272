"""Role dashboards and the factory that picks one for the logged-in principal."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .admin import AdminDashboard
from .base import Dashboard
from .family import FamilyDashboard, render_safety_analysis
from .restaurant import RestaurantDashboard

if TYPE_CHECKING:
    from ..gateway import BackendGateway
    from ..session import SessionStore

__all__ = [
    "Dashboard",
    "RestaurantDashboard",
    "FamilyDashboard",
    "AdminDashboard",
    "create_dashboard",
    "render_safety_analysis",
]


def create_dashboard(
    gateway: BackendGateway, session: SessionStore, **kwargs: Any
) -> Dashboard:
    """Create the home dashboard for the session's principal."""
    home = session.home_dashboard

    match home:
        case "restaurant":
            return RestaurantDashboard(gateway, session, **kwargs)
        case "family":
            return FamilyDashboard(gateway, session, **kwargs)
        case "admin":
            return AdminDashboard(gateway, session, **kwargs)
        case None:
            raise ValueError("No principal is logged in")
        case _:
            raise ValueError(f"Unknown dashboard: {home!r}")
