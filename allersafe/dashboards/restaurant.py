"""Restaurant owner dashboard: menu management, publishing and QR codes."""

from __future__ import annotations

from ..errors import ValidationError
from ..policy import Capability
from ..workflow import ActionResult
from .base import Dashboard


class RestaurantDashboard(Dashboard):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.restaurant: dict | None = None
        self.menu_items: list[dict] = []
        self.qr_code: dict | None = None

    @property
    def restaurant_id(self) -> str:
        if self.restaurant is None:
            raise ValidationError("Create your restaurant first")
        return self.restaurant["id"]

    async def load(self) -> None:
        result = await self._perform(self.gateway.my_restaurant)
        if not result.ok:
            return
        self.restaurant = result.value
        if self.restaurant is None:
            self.menu_items = []
            return
        items = await self._perform(
            lambda: self.gateway.menu_items(self.restaurant_id)
        )
        if items.ok:
            self.menu_items = items.value or []

    async def create_restaurant(
        self, name: str, address: str, phone: str = "", description: str = ""
    ) -> ActionResult[dict]:
        async def create() -> dict:
            if not name.strip() or not address.strip():
                raise ValidationError("Restaurant name and address are required")
            return await self.gateway.create_restaurant(
                name.strip(), address.strip(), phone, description
            )

        result = await self._perform(create, capability=Capability.MANAGE_RESTAURANT)
        if result.ok:
            await self.load()
        return result

    async def add_menu_item(
        self,
        name: str,
        ingredients: list[str],
        description: str = "",
        price: float | None = None,
        category: str = "",
    ) -> ActionResult[dict]:
        async def add() -> dict:
            if not name.strip():
                raise ValidationError("Menu item name is required")
            return await self.gateway.create_menu_item(
                self.restaurant_id,
                {
                    "name": name.strip(),
                    "description": description or None,
                    "ingredients": [i.strip() for i in ingredients if i.strip()],
                    "price": price,
                    "category": category or None,
                },
            )

        result = await self._perform(add, capability=Capability.MANAGE_RESTAURANT)
        if result.ok:
            await self.load()
        return result

    async def update_menu_item(self, item_id: str, **changes) -> ActionResult[dict]:
        result = await self._perform(
            lambda: self.gateway.update_menu_item(self.restaurant_id, item_id, changes),
            capability=Capability.MANAGE_RESTAURANT,
        )
        if result.ok:
            await self.load()
        return result

    async def delete_menu_item(self, item_id: str) -> ActionResult[dict]:
        result = await self._perform(
            lambda: self.gateway.delete_menu_item(self.restaurant_id, item_id),
            capability=Capability.MANAGE_RESTAURANT,
        )
        if result.ok:
            await self.load()
        return result

    async def import_menu(self, url: str) -> ActionResult[dict]:
        """Scrape menu items from the restaurant's own website."""

        async def scrape() -> dict:
            if not url.strip():
                raise ValidationError("Please enter a menu URL")
            return await self.gateway.scrape_menu(self.restaurant_id, url.strip())

        result = await self._perform(
            scrape,
            capability=Capability.IMPORT_MENU,
            failure_prefix="Menu import failed: ",
        )
        if result.ok:
            count = len((result.value or {}).get("items", []))
            self.notify(f"Imported {count} menu items.")
            await self.load()
        return result

    async def publish_menu(self) -> ActionResult[dict]:
        result = await self._perform(
            lambda: self.gateway.publish_menu(self.restaurant_id),
            capability=Capability.PUBLISH_MENU,
            success="Menu published successfully!",
        )
        if result.ok:
            await self.load()
        return result

    async def generate_qr_code(self) -> ActionResult[dict]:
        result = await self._perform(
            lambda: self.gateway.qr_code(self.restaurant_id),
            capability=Capability.GENERATE_QR_CODE,
        )
        if result.ok:
            self.qr_code = result.value
        return result

    def render(self) -> str:
        lines: list[str] = []
        if self.restaurant is None:
            lines.append("No restaurant yet. Create one to get started.")
            return "\n".join(lines)

        r = self.restaurant
        published = "Published" if r.get("menu_published") else "Draft"
        lines.append(f"🍽  {r.get('name', '')}")
        lines.append(f"   Address: {r.get('address', '')}")
        lines.append(f"   Plan:    {self._status_badge()}")
        lines.append(f"   Menu:    {published} ({len(self.menu_items)} items)")
        if r.get("subscription_warning"):
            lines.append(f"   ⚠️  {r['subscription_warning']}")

        if self.menu_items:
            lines.append("")
            lines.append(f"   {'Item':<28} {'Price':>8}  Allergens")
            lines.append(f"   {'─' * 56}")
            for item in self.menu_items:
                price = item.get("price")
                price_text = f"${price}" if price not in (None, "") else "-"
                allergens = ", ".join(item.get("allergens_detected") or []) or "none"
                lines.append(f"   {item.get('name', ''):<28} {price_text:>8}  {allergens}")

        if self.qr_code:
            lines.append("")
            lines.append(f"   QR menu link: {self.qr_code.get('menu_url', '')}")

        prompt = self.capabilities.upgrade_prompt(Capability.RESTAURANT_ANALYTICS)
        if prompt:
            lines.append("")
            lines.append(f"💡 {prompt}")
        return "\n".join(lines)
