"""Backend gateway: the only component that talks to the AllerSafe API."""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

import httpx

from .errors import BackendError, TransportError
from .models import (
    Family,
    GeoLocation,
    PartnerMenu,
    PaymentStatusSnapshot,
    Principal,
    SafetyAnalysis,
    ScanResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TokenProvider = Callable[[], "str | None"]


def _extract_detail(response: httpx.Response) -> str:
    """Pull a human-readable message out of an error response.

    FastAPI returns ``{"detail": "..."}`` for HTTPException and
    ``{"detail": [{"msg": ...}, ...]}`` for request validation failures.
    """
    try:
        body = response.json()
    except ValueError:
        return response.text.strip()[:200]

    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, str):
        return detail
    if isinstance(detail, list):
        messages = [
            d.get("msg", "") if isinstance(d, dict) else str(d) for d in detail
        ]
        return "; ".join(m for m in messages if m)
    return ""


class BackendGateway:
    """Typed async wrapper around the AllerSafe HTTP API.

    Every call attaches the bearer token returned by ``token_provider``
    (auth endpoints excepted) and ends in one of three ways: a parsed
    payload, a BackendError carrying the server's detail message, or a
    TransportError. This layer never retries.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8001",
        timeout: float = 30.0,
        token_provider: TokenProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._token_provider = token_provider
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> BackendGateway:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        authenticated: bool = True,
    ) -> Any:
        headers: dict[str, str] = {}
        if authenticated and self._token_provider is not None:
            token = self._token_provider()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        logger.debug("%s %s", method, path)
        try:
            response = await self._get_client().request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e.__class__.__name__)
            raise TransportError(str(e)) from e

        if not response.is_success:
            detail = _extract_detail(response)
            logger.debug("%s %s -> %d %s", method, path, response.status_code, detail)
            raise BackendError(response.status_code, detail)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"malformed response from {path}") from e

    @staticmethod
    def _parse(parser: Callable[..., T], data: Any, *args: Any) -> T:
        """Apply a model parser, turning shape errors into TransportError."""
        try:
            return parser(data, *args)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise TransportError(f"malformed response: {e!r}") from e

    # Auth

    async def login(self, email: str, password: str) -> tuple[str, Principal]:
        data = await self._request(
            "POST",
            "/api/auth/login",
            json={"email": email, "password": password},
            authenticated=False,
        )
        return self._parse(_token_and_principal, data)

    async def register(
        self, email: str, password: str, name: str, role: str
    ) -> tuple[str, Principal]:
        data = await self._request(
            "POST",
            "/api/auth/register",
            json={"email": email, "password": password, "name": name, "role": role},
            authenticated=False,
        )
        return self._parse(_token_and_principal, data)

    async def me(self) -> Principal:
        data = await self._request("GET", "/api/auth/me")
        return self._parse(Principal.from_dict, data)

    # Payments

    async def create_checkout(self, package_id: str, origin_url: str) -> str:
        """Create a checkout session and return the URL to redirect to."""
        data = await self._request(
            "POST",
            "/api/payments/create-checkout",
            json={"package_id": package_id, "origin_url": origin_url},
        )
        return self._parse(lambda d: str(d["checkout_url"]), data)

    async def payment_status(self, session_id: str) -> PaymentStatusSnapshot:
        data = await self._request("GET", f"/api/payments/status/{session_id}")
        return self._parse(PaymentStatusSnapshot.from_dict, data)

    # Restaurants

    async def create_restaurant(
        self, name: str, address: str, phone: str = "", description: str = ""
    ) -> dict:
        return await self._request(
            "POST",
            "/api/restaurants",
            json={
                "name": name,
                "address": address,
                "phone": phone or None,
                "description": description or None,
            },
        )

    async def my_restaurant(self) -> dict | None:
        """The owner's restaurant, or None when a 404 says there is none yet."""
        try:
            return await self._request("GET", "/api/restaurants/my")
        except BackendError as e:
            if e.status_code == 404:
                return None
            raise

    async def list_restaurants(self) -> list[dict]:
        return await self._request("GET", "/api/restaurants", authenticated=False)

    async def menu_items(
        self, restaurant_id: str, published_only: bool = False
    ) -> list[dict]:
        return await self._request(
            "GET",
            f"/api/restaurants/{restaurant_id}/menu-items",
            params={"published_only": str(published_only).lower()},
        )

    async def create_menu_item(self, restaurant_id: str, item: dict) -> dict:
        return await self._request(
            "POST", f"/api/restaurants/{restaurant_id}/menu-items", json=item
        )

    async def update_menu_item(
        self, restaurant_id: str, item_id: str, changes: dict
    ) -> dict:
        return await self._request(
            "PUT",
            f"/api/restaurants/{restaurant_id}/menu-items/{item_id}",
            json=changes,
        )

    async def delete_menu_item(self, restaurant_id: str, item_id: str) -> dict:
        return await self._request(
            "DELETE", f"/api/restaurants/{restaurant_id}/menu-items/{item_id}"
        )

    async def scrape_menu(self, restaurant_id: str, url: str) -> dict:
        return await self._request(
            "POST",
            f"/api/restaurants/{restaurant_id}/scrape-menu",
            json={"url": url},
        )

    async def publish_menu(self, restaurant_id: str) -> dict:
        return await self._request(
            "POST", f"/api/restaurants/{restaurant_id}/publish-menu"
        )

    async def qr_code(self, restaurant_id: str) -> dict:
        return await self._request("GET", f"/api/restaurants/{restaurant_id}/qr-code")

    # Public menus (partner restaurants reached by QR code)

    async def public_menu(self, restaurant_id: str) -> PartnerMenu:
        data = await self._request(
            "GET", f"/api/menu/{restaurant_id}", authenticated=False
        )
        return self._parse(PartnerMenu.from_dict, data)

    async def check_menu_safety(
        self, restaurant_id: str, allergies: list[str]
    ) -> SafetyAnalysis:
        data = await self._request(
            "POST",
            f"/api/menu/{restaurant_id}/check-safety",
            json=allergies,
            authenticated=False,
        )
        return self._parse(SafetyAnalysis.from_dict, data)

    async def allergens(self) -> list[dict]:
        return await self._request("GET", "/api/allergens", authenticated=False)

    # Families

    async def create_family(self, family_name: str, members: list[dict]) -> dict:
        return await self._request(
            "POST",
            "/api/families",
            json={"family_name": family_name, "members": members},
        )

    async def my_family(self) -> Family | None:
        data = await self._request("GET", "/api/families/my")
        if data is None:
            return None
        return self._parse(Family.from_dict, data)

    async def set_emergency_contact(
        self, family_id: str, name: str, phone_number: str
    ) -> dict:
        return await self._request(
            "POST",
            f"/api/families/{family_id}/emergency-contact",
            json={"name": name, "phone_number": phone_number},
        )

    async def send_emergency_alert(
        self, family_id: str, member_id: str, location: GeoLocation | None = None
    ) -> dict:
        payload = (
            location.as_alert_payload()
            if location is not None
            else {"location_address": "Unknown location"}
        )
        return await self._request(
            "POST",
            f"/api/families/{family_id}/members/{member_id}/emergency-alert",
            json=payload,
        )

    # Consumer scanning

    async def scan_menu(self, url: str, restaurant_name: str = "") -> ScanResult:
        data = await self._request(
            "POST",
            "/api/consumer/scan-menu",
            json={"url": url, "restaurant_name": restaurant_name or None},
        )
        return self._parse(ScanResult.from_dict, data, url)

    async def analyze_safety(
        self, scan_id: str, allergies: list[str]
    ) -> SafetyAnalysis:
        data = await self._request(
            "POST", f"/api/consumer/analyze-safety/{scan_id}", json=allergies
        )
        return self._parse(SafetyAnalysis.from_dict, data)

    async def scan_history(self, limit: int = 10) -> list[dict]:
        return await self._request(
            "GET", "/api/consumer/scan-history", params={"limit": limit}
        )

    async def save_menu(self, scan_id: str, menu_name: str, notes: str = "") -> dict:
        return await self._request(
            "POST",
            "/api/consumer/save-menu",
            json={"scan_id": scan_id, "menu_name": menu_name, "notes": notes},
        )

    async def saved_menus(self) -> list[dict]:
        return await self._request("GET", "/api/consumer/saved-menus")

    async def request_restaurant_support(
        self, restaurant_name: str, restaurant_url: str, is_premium: bool
    ) -> dict:
        return await self._request(
            "POST",
            "/api/consumer/request-restaurant-support",
            json={
                "restaurant_name": restaurant_name,
                "restaurant_url": restaurant_url,
                "reason": (
                    "Consumer requested restaurant partnership "
                    "for official allergen data"
                ),
                "is_premium": is_premium,
            },
        )

    # Admin aggregates

    async def admin_stats(self) -> dict:
        return await self._request("GET", "/api/admin/stats")

    async def admin_collection(self, name: str, limit: int | None = None) -> list[dict]:
        """Fetch one of the read-only admin listings by its path segment."""
        params = {"limit": limit} if limit is not None else None
        return await self._request("GET", f"/api/admin/{name}", params=params)

    async def restaurant_requests(self, status: str = "all") -> list[dict]:
        return await self._request(
            "GET", "/api/admin/restaurant-requests", params={"status": status}
        )

    async def update_request_status(self, request_id: str, new_status: str) -> dict:
        return await self._request(
            "PUT",
            f"/api/admin/restaurant-requests/{request_id}/status",
            params={"new_status": new_status},
        )


def _token_and_principal(data: dict) -> tuple[str, Principal]:
    return str(data["access_token"]), Principal.from_dict(data["user"])
