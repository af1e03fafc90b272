"""Capability policy: what a principal may do, derived from role and plan.

Every premium or role-restricted action is looked up here. Nothing else
in the package compares roles or subscription statuses directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .errors import PolicyDenied
from .models import Principal, Role, SubscriptionStatus


class Capability(str, Enum):
    SCAN_MENU = "scan_menu"
    ANALYZE_SAFETY = "analyze_safety"
    REQUEST_SUPPORT = "request_support"
    PRIORITY_SUPPORT = "priority_support"
    SAVE_MENU = "save_menu"
    VIEW_SAVED_MENUS = "view_saved_menus"
    SEND_EMERGENCY_ALERT = "send_emergency_alert"
    MANAGE_EMERGENCY_CONTACT = "manage_emergency_contact"
    PREMIUM_ANALYSIS = "premium_analysis"
    MANAGE_RESTAURANT = "manage_restaurant"
    IMPORT_MENU = "import_menu"
    PUBLISH_MENU = "publish_menu"
    GENERATE_QR_CODE = "generate_qr_code"
    RESTAURANT_ANALYTICS = "restaurant_analytics"
    SUBSCRIBE = "subscribe"
    VIEW_PLATFORM_METRICS = "view_platform_metrics"
    MANAGE_SUPPORT_REQUESTS = "manage_support_requests"


_FAMILY_BASE = frozenset({
    Capability.SCAN_MENU,
    Capability.ANALYZE_SAFETY,
    Capability.REQUEST_SUPPORT,
})

_FAMILY_PREMIUM = _FAMILY_BASE | {
    Capability.PRIORITY_SUPPORT,
    Capability.SAVE_MENU,
    Capability.VIEW_SAVED_MENUS,
    Capability.SEND_EMERGENCY_ALERT,
    Capability.MANAGE_EMERGENCY_CONTACT,
    Capability.PREMIUM_ANALYSIS,
}

_RESTAURANT_BASE = frozenset({
    Capability.MANAGE_RESTAURANT,
    Capability.IMPORT_MENU,
    Capability.PUBLISH_MENU,
    Capability.GENERATE_QR_CODE,
})

_ADMIN = frozenset({
    Capability.VIEW_PLATFORM_METRICS,
    Capability.MANAGE_SUPPORT_REQUESTS,
})

_POLICY: dict[tuple[Role, SubscriptionStatus], frozenset[Capability]] = {
    (Role.FAMILY, SubscriptionStatus.TRIAL): _FAMILY_BASE | {Capability.SUBSCRIBE},
    (Role.FAMILY, SubscriptionStatus.ACTIVE): _FAMILY_PREMIUM,
    (Role.FAMILY, SubscriptionStatus.EXPIRED): _FAMILY_BASE | {Capability.SUBSCRIBE},
    (Role.RESTAURANT, SubscriptionStatus.TRIAL): _RESTAURANT_BASE | {Capability.SUBSCRIBE},
    (Role.RESTAURANT, SubscriptionStatus.ACTIVE): _RESTAURANT_BASE | {
        Capability.RESTAURANT_ANALYTICS,
    },
    (Role.RESTAURANT, SubscriptionStatus.EXPIRED): _RESTAURANT_BASE | {Capability.SUBSCRIBE},
    (Role.ADMIN, SubscriptionStatus.TRIAL): _ADMIN,
    (Role.ADMIN, SubscriptionStatus.ACTIVE): _ADMIN,
    (Role.ADMIN, SubscriptionStatus.EXPIRED): _ADMIN,
}

_UPGRADE_PROMPTS: dict[Capability, str] = {
    Capability.SEND_EMERGENCY_ALERT: (
        "Emergency SMS alerts are a Premium feature. "
        "Upgrade to access this functionality."
    ),
    Capability.MANAGE_EMERGENCY_CONTACT: (
        "Emergency settings are a Premium feature. "
        "Upgrade to access this functionality."
    ),
    Capability.SAVE_MENU: (
        "Saving favorite menus is a Premium feature. "
        "Upgrade to access this functionality."
    ),
    Capability.VIEW_SAVED_MENUS: (
        "Saved menus is a Premium feature. Upgrade to access this functionality."
    ),
    Capability.PRIORITY_SUPPORT: (
        "Upgrade to Premium for priority restaurant outreach."
    ),
    Capability.PREMIUM_ANALYSIS: (
        "Upgrade to Premium for more accurate allergen detection "
        "and personalized recommendations."
    ),
    Capability.RESTAURANT_ANALYTICS: (
        "The analytics dashboard is included with an active restaurant plan."
    ),
}


@dataclass(frozen=True)
class CapabilitySet:
    role: Role | None
    status: SubscriptionStatus | None
    enabled: frozenset[Capability] = frozenset()

    def __contains__(self, capability: object) -> bool:
        return capability in self.enabled

    def allows(self, capability: Capability) -> bool:
        return capability in self.enabled

    def require(self, capability: Capability) -> None:
        """Raise PolicyDenied unless *capability* is enabled."""
        if capability in self.enabled:
            return
        if self.role is None:
            raise PolicyDenied(capability.value, "Please log in to continue.")
        if capability in _POLICY[(self.role, SubscriptionStatus.ACTIVE)]:
            raise PolicyDenied(
                capability.value,
                _UPGRADE_PROMPTS.get(
                    capability,
                    "This is a Premium feature. Upgrade to access this functionality.",
                ),
                upgrade=True,
            )
        raise PolicyDenied(
            capability.value,
            f"Your {self.role.value} account does not have permission to do this.",
        )

    def upgrade_prompt(self, capability: Capability) -> str | None:
        """The upgrade hint to show next to a locked premium action, if any."""
        if self.role is None or capability in self.enabled:
            return None
        if capability in _POLICY[(self.role, SubscriptionStatus.ACTIVE)]:
            return _UPGRADE_PROMPTS.get(capability)
        return None

    @property
    def is_premium(self) -> bool:
        return self.status is SubscriptionStatus.ACTIVE and self.role is not None

    @property
    def can_send_emergency_alert(self) -> bool:
        return Capability.SEND_EMERGENCY_ALERT in self.enabled

    @property
    def can_save_menu(self) -> bool:
        return Capability.SAVE_MENU in self.enabled

    @property
    def can_request_priority_support(self) -> bool:
        return Capability.PRIORITY_SUPPORT in self.enabled


NO_CAPABILITIES = CapabilitySet(role=None, status=None)


def capabilities_for(role: Role, status: SubscriptionStatus) -> CapabilitySet:
    return CapabilitySet(role=role, status=status, enabled=_POLICY[(role, status)])


def capabilities_of(principal: Principal | None) -> CapabilitySet:
    """Capabilities of the current principal; nobody logged in gets none."""
    if principal is None:
        return NO_CAPABILITIES
    return capabilities_for(principal.role, principal.subscription_status)
