"""Platform administration dashboard."""

from __future__ import annotations

import asyncio
import logging

from ..errors import AllerSafeError, ValidationError
from ..policy import Capability
from ..workflow import ActionResult
from .base import Dashboard

logger = logging.getLogger(__name__)

REQUEST_STATUSES = ("pending", "in_progress", "contacted", "completed", "rejected")

# Read-only listings fetched alongside the stats on load.
_COLLECTIONS = (
    "restaurants",
    "families",
    "subscriptions",
    "sms-logs",
    "email-logs",
    "payment-transactions",
)


class AdminDashboard(Dashboard):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.stats: dict = {}
        self.collections: dict[str, list[dict]] = {name: [] for name in _COLLECTIONS}
        self.support_requests: list[dict] = []
        self.most_requested: list[dict] = []

    async def load(self) -> None:
        """Fetch stats and every listing concurrently.

        A listing that fails is left empty and reported once; the rest of the
        dashboard still renders.
        """
        try:
            self.capabilities.require(Capability.VIEW_PLATFORM_METRICS)
        except AllerSafeError as e:
            self.notify(e.user_message)
            return

        results = await asyncio.gather(
            self.gateway.admin_stats(),
            *(self.gateway.admin_collection(name) for name in _COLLECTIONS),
            return_exceptions=True,
        )
        stats, *listings = results
        failures: list[str] = []

        if isinstance(stats, AllerSafeError):
            failures.append("stats")
        elif isinstance(stats, BaseException):
            raise stats
        else:
            self.stats = stats or {}

        for name, listing in zip(_COLLECTIONS, listings):
            if isinstance(listing, AllerSafeError):
                logger.warning("Loading admin %s failed: %s", name, listing.user_message)
                failures.append(name)
            elif isinstance(listing, BaseException):
                raise listing
            else:
                self.collections[name] = listing or []

        if failures:
            self.notify(f"Failed to load: {', '.join(failures)}")
        await self.load_support_requests()

    async def load_support_requests(self, status: str = "all") -> ActionResult[list[dict]]:
        result = await self._perform(
            lambda: self.gateway.restaurant_requests(status),
            capability=Capability.MANAGE_SUPPORT_REQUESTS,
        )
        if result.ok:
            self.support_requests = result.value or []
        ranked = await self._perform(
            lambda: self.gateway.admin_collection("most-requested-restaurants"),
            capability=Capability.MANAGE_SUPPORT_REQUESTS,
        )
        if ranked.ok:
            self.most_requested = ranked.value or []
        return result

    async def update_request_status(
        self, request_id: str, new_status: str
    ) -> ActionResult[dict]:
        async def update() -> dict:
            if new_status not in REQUEST_STATUSES:
                raise ValidationError(
                    f"Invalid status. Must be one of: {', '.join(REQUEST_STATUSES)}"
                )
            return await self.gateway.update_request_status(request_id, new_status)

        result = await self._perform(
            update,
            capability=Capability.MANAGE_SUPPORT_REQUESTS,
            success="Request status updated successfully",
        )
        if result.ok:
            await self.load_support_requests()
        return result

    def render(self) -> str:
        s = self.stats
        lines = [
            "📊 Platform metrics",
            f"   Restaurants:        {s.get('total_restaurants', 0)} "
            f"({s.get('published_menus', 0)} published menus)",
            f"   Families:           {s.get('total_families', 0)}",
            f"   Active plans:       {s.get('active_subscriptions', 0)} "
            f"(trial users {s.get('trial_users', 0)})",
            f"   Consumer scans:     {s.get('total_consumer_scans', 0)} "
            f"({s.get('recent_consumer_scans_30_days', 0)} in 30 days)",
            f"   SMS / email (30d):  {s.get('recent_sms_sent', 0)} / "
            f"{s.get('recent_emails_sent', 0)}",
            f"   Emergency alerts:   {s.get('emergency_alerts_30_days', 0)}",
            f"   Revenue:            ${s.get('total_revenue', 0)}",
            f"   Conversion rate:    {s.get('consumer_conversion_rate', 0)}%",
        ]

        pending = [r for r in self.support_requests if r.get("status") == "pending"]
        lines.append("")
        lines.append(
            f"🤝 Support requests: {len(self.support_requests)} ({len(pending)} pending)"
        )
        for r in self.support_requests:
            flag = " ⭐" if r.get("is_premium_user") else ""
            lines.append(
                f"   [{r.get('status', '')}] {r.get('restaurant_name', '')}"
                f"  {r.get('restaurant_url', '')}{flag}"
            )

        if self.most_requested:
            lines.append("")
            lines.append("🔥 Most requested restaurants")
            for r in self.most_requested:
                lines.append(
                    f"   {r.get('restaurant_name', '')}: {r.get('total_requests', 0)} requests "
                    f"({r.get('premium_user_requests', 0)} premium)"
                )

        lines.append("")
        for name in _COLLECTIONS:
            lines.append(f"   {name:<22} {len(self.collections[name])}")
        return "\n".join(lines)
