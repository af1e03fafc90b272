"""Data models for principals, checkout sessions, menu scans and safety analyses."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    RESTAURANT = "restaurant"
    FAMILY = "family"
    ADMIN = "admin"


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    EXPIRED = "expired"

    @classmethod
    def parse(cls, value: str | None) -> SubscriptionStatus:
        """Map a backend status string onto the three known statuses.

        Missing values mean the account never subscribed (trial); any
        status the client does not know is treated as expired so it never
        unlocks premium features.
        """
        if not value:
            return cls.TRIAL
        try:
            return cls(value.lower())
        except ValueError:
            return cls.EXPIRED


class Verdict(str, Enum):
    SAFE = "safe"
    UNSAFE = "unsafe"
    UNCERTAIN = "uncertain"


@dataclass(frozen=True)
class Subscription:
    package_name: str
    next_billing_date: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Subscription | None:
        if not data:
            return None
        return cls(
            package_name=data.get("package_name") or "",
            next_billing_date=str(data.get("next_billing_date") or ""),
        )


@dataclass(frozen=True)
class Principal:
    """The authenticated user and their subscription snapshot."""

    id: str
    name: str
    email: str
    role: Role
    subscription_status: SubscriptionStatus = SubscriptionStatus.TRIAL
    subscription: Subscription | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Principal:
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            email=data.get("email", ""),
            role=Role(data["role"]),
            subscription_status=SubscriptionStatus.parse(
                data.get("subscription_status")
            ),
            subscription=Subscription.from_dict(data.get("subscription")),
        )


@dataclass(frozen=True)
class CheckoutSession:
    """Identifiers recovered from the payment provider's return URL."""

    session_id: str
    return_payment_flag: str


@dataclass(frozen=True)
class PaymentStatusSnapshot:
    payment_status: str
    status: str
    amount: float | None = None
    currency: str = ""

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"

    @property
    def is_expired(self) -> bool:
        return self.status == "expired"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PaymentStatusSnapshot:
        return cls(
            payment_status=str(data.get("payment_status") or ""),
            status=str(data.get("status") or ""),
            amount=data.get("amount"),
            currency=data.get("currency") or "",
        )


@dataclass(frozen=True)
class MenuItem:
    """A menu row as scanned from a restaurant page (unverified)."""

    name: str
    description: str = ""
    price: str | None = None
    detected_allergens: frozenset[str] = frozenset()
    ingredients: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MenuItem:
        price = data.get("price")
        return cls(
            name=data["name"],
            description=data.get("description") or "",
            price=str(price) if price not in (None, "") else None,
            detected_allergens=frozenset(
                data.get("detected_allergens")
                or data.get("allergens_detected")
                or ()
            ),
            ingredients=tuple(data.get("ingredients") or ()),
        )


@dataclass(frozen=True)
class ScanResult:
    scan_id: str
    restaurant_name: str
    url: str
    total_items_found: int
    menu_items: tuple[MenuItem, ...] = ()
    disclaimer: str = ""
    is_partner_restaurant: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any], url: str = "") -> ScanResult:
        items = tuple(MenuItem.from_dict(i) for i in data.get("menu_items") or ())
        return cls(
            scan_id=str(data["scan_id"]),
            restaurant_name=data.get("restaurant_name") or "",
            url=data.get("url") or data.get("restaurant_url") or url,
            total_items_found=int(data.get("total_items_found", len(items))),
            menu_items=items,
            disclaimer=data.get("disclaimer") or "",
            is_partner_restaurant=bool(data.get("is_partner_restaurant", False)),
        )


@dataclass(frozen=True)
class FamilyMember:
    id: str
    name: str
    allergies: frozenset[str] = frozenset()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FamilyMember:
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            allergies=frozenset(data.get("allergies") or ()),
        )


@dataclass(frozen=True)
class EmergencyContact:
    name: str
    phone_number: str


@dataclass(frozen=True)
class Family:
    id: str
    family_name: str
    members: tuple[FamilyMember, ...] = ()
    emergency_contact: EmergencyContact | None = None
    subscription_warning: str = ""

    def member(self, name_or_id: str) -> FamilyMember | None:
        """Find a member by id, or by case-insensitive name."""
        for m in self.members:
            if m.id == name_or_id:
                return m
        lowered = name_or_id.lower()
        for m in self.members:
            if m.name.lower() == lowered:
                return m
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Family:
        contact = data.get("emergency_contact")
        return cls(
            id=str(data["id"]),
            family_name=data.get("family_name", ""),
            members=tuple(FamilyMember.from_dict(m) for m in data.get("members") or ()),
            emergency_contact=(
                EmergencyContact(
                    name=contact.get("name", ""),
                    phone_number=contact.get("phone_number", ""),
                )
                if contact
                else None
            ),
            subscription_warning=data.get("subscription_warning") or "",
        )


@dataclass(frozen=True)
class AnalyzedItem:
    """A menu item after safety categorization for one member."""

    name: str
    description: str = ""
    price: str | None = None
    detected_allergens: frozenset[str] = frozenset()
    matching_allergens: tuple[str, ...] = ()
    confidence_score: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnalyzedItem:
        price = data.get("price")
        return cls(
            name=data["name"],
            description=data.get("description") or "",
            price=str(price) if price not in (None, "") else None,
            detected_allergens=frozenset(
                data.get("detected_allergens")
                or data.get("allergens_detected")
                or ()
            ),
            matching_allergens=tuple(sorted(data.get("matching_allergens") or ())),
            confidence_score=data.get("confidence_score"),
        )


@dataclass(frozen=True)
class SafetyAnalysis:
    safe_items: tuple[AnalyzedItem, ...] = ()
    unsafe_items: tuple[AnalyzedItem, ...] = ()
    uncertain_items: tuple[AnalyzedItem, ...] = ()
    safe_count: int = 0
    unsafe_count: int = 0
    uncertain_count: int = 0
    disclaimer: str = ""
    upgrade_message: str | None = None
    is_premium_analysis: bool = False
    scan_id: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SafetyAnalysis:
        safe = tuple(AnalyzedItem.from_dict(i) for i in data.get("safe_items") or ())
        unsafe = tuple(AnalyzedItem.from_dict(i) for i in data.get("unsafe_items") or ())
        uncertain = tuple(
            AnalyzedItem.from_dict(i) for i in data.get("uncertain_items") or ()
        )
        return cls(
            safe_items=safe,
            unsafe_items=unsafe,
            uncertain_items=uncertain,
            safe_count=int(data.get("safe_count", len(safe))),
            unsafe_count=int(data.get("unsafe_count", len(unsafe))),
            uncertain_count=int(data.get("uncertain_count", len(uncertain))),
            disclaimer=data.get("disclaimer") or "",
            upgrade_message=data.get("upgrade_message"),
            is_premium_analysis=bool(data.get("is_premium_analysis", False)),
            scan_id=str(data.get("scan_id") or ""),
        )

    @property
    def total(self) -> int:
        return self.safe_count + self.unsafe_count + self.uncertain_count

    def buckets(self) -> dict[Verdict, tuple[AnalyzedItem, ...]]:
        return {
            Verdict.SAFE: self.safe_items,
            Verdict.UNSAFE: self.unsafe_items,
            Verdict.UNCERTAIN: self.uncertain_items,
        }

    def inconsistencies(self, scan: ScanResult) -> list[str]:
        """Return every way this analysis disagrees with the scan it came from.

        An empty list means each scanned item landed in exactly one bucket
        and the counts match the bucket sizes.
        """
        problems: list[str] = []
        for verdict, items in self.buckets().items():
            count = getattr(self, f"{verdict.value}_count")
            if count != len(items):
                problems.append(
                    f"{verdict.value}_count={count} but {len(items)} items listed"
                )
        if self.total != scan.total_items_found:
            problems.append(
                f"buckets hold {self.total} items, scan found {scan.total_items_found}"
            )
        analyzed = Counter(
            item.name for items in self.buckets().values() for item in items
        )
        scanned = Counter(item.name for item in scan.menu_items)
        if analyzed != scanned:
            missing = sorted((scanned - analyzed).elements())
            extra = sorted((analyzed - scanned).elements())
            if missing:
                problems.append(f"missing from analysis: {', '.join(missing)}")
            if extra:
                problems.append(f"not in scan: {', '.join(extra)}")
        return problems

    def rows(
        self, scan: ScanResult
    ) -> list[tuple[MenuItem, Verdict, AnalyzedItem | None]]:
        """Pair each scanned item, in scan order, with its verdict."""
        pending: dict[str, list[tuple[Verdict, AnalyzedItem]]] = {}
        for verdict, items in self.buckets().items():
            for item in items:
                pending.setdefault(item.name, []).append((verdict, item))

        rows: list[tuple[MenuItem, Verdict, AnalyzedItem | None]] = []
        for menu_item in scan.menu_items:
            matches = pending.get(menu_item.name)
            if matches:
                verdict, analyzed = matches.pop(0)
                rows.append((menu_item, verdict, analyzed))
            else:
                rows.append((menu_item, Verdict.UNCERTAIN, None))
        return rows


@dataclass(frozen=True)
class GeoLocation:
    lat: float
    lng: float

    def as_alert_payload(self) -> dict[str, Any]:
        return {
            "location_lat": self.lat,
            "location_lng": self.lng,
            "location_address": f"Lat: {self.lat:.6f}, Lng: {self.lng:.6f}",
        }


@dataclass
class PartnerMenu:
    """Published menu of a partner restaurant, reached through its QR code."""

    restaurant_id: str
    restaurant_name: str
    address: str = ""
    menu_items: list[MenuItem] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PartnerMenu:
        restaurant = data.get("restaurant") or {}
        return cls(
            restaurant_id=str(restaurant["id"]),
            restaurant_name=restaurant.get("name", ""),
            address=restaurant.get("address", ""),
            menu_items=[MenuItem.from_dict(i) for i in data.get("menu_items") or ()],
        )
