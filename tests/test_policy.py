"""Tests for the capability policy."""

import itertools

import pytest

from allersafe.errors import PolicyDenied
from allersafe.models import Principal, Role, SubscriptionStatus
from allersafe.policy import (
    NO_CAPABILITIES,
    Capability,
    CapabilitySet,
    capabilities_for,
    capabilities_of,
)

ALL_PAIRS = list(itertools.product(Role, SubscriptionStatus))


class TestPolicyTable:
    @pytest.mark.parametrize("role, status", ALL_PAIRS)
    def test_total(self, role, status):
        """Every role/status combination maps to a capability set."""
        caps = capabilities_for(role, status)
        assert isinstance(caps, CapabilitySet)
        assert caps.role is role
        assert caps.status is status

    @pytest.mark.parametrize("role, status", ALL_PAIRS)
    def test_deterministic(self, role, status):
        assert capabilities_for(role, status) == capabilities_for(role, status)

    @pytest.mark.parametrize("status, premium", [
        (SubscriptionStatus.TRIAL, False),
        (SubscriptionStatus.ACTIVE, True),
        (SubscriptionStatus.EXPIRED, False),
    ])
    def test_family_premium_flags(self, status, premium):
        caps = capabilities_for(Role.FAMILY, status)
        assert caps.can_send_emergency_alert is premium
        assert caps.can_save_menu is premium
        assert caps.can_request_priority_support is premium
        assert caps.allows(Capability.SCAN_MENU)
        assert caps.allows(Capability.REQUEST_SUPPORT)

    def test_subscribe_only_when_not_active(self):
        assert Capability.SUBSCRIBE in capabilities_for(Role.FAMILY, SubscriptionStatus.TRIAL)
        assert Capability.SUBSCRIBE not in capabilities_for(
            Role.FAMILY, SubscriptionStatus.ACTIVE
        )
        assert Capability.SUBSCRIBE in capabilities_for(
            Role.RESTAURANT, SubscriptionStatus.EXPIRED
        )

    @pytest.mark.parametrize("status", list(SubscriptionStatus))
    def test_restaurant_has_no_family_features(self, status):
        caps = capabilities_for(Role.RESTAURANT, status)
        assert caps.allows(Capability.PUBLISH_MENU)
        assert not caps.can_send_emergency_alert
        assert not caps.allows(Capability.SCAN_MENU)

    def test_restaurant_analytics_needs_active_plan(self):
        assert capabilities_for(Role.RESTAURANT, SubscriptionStatus.ACTIVE).allows(
            Capability.RESTAURANT_ANALYTICS
        )
        assert not capabilities_for(Role.RESTAURANT, SubscriptionStatus.TRIAL).allows(
            Capability.RESTAURANT_ANALYTICS
        )

    @pytest.mark.parametrize("status", list(SubscriptionStatus))
    def test_admin(self, status):
        caps = capabilities_for(Role.ADMIN, status)
        assert caps.enabled == frozenset({
            Capability.VIEW_PLATFORM_METRICS,
            Capability.MANAGE_SUPPORT_REQUESTS,
        })


class TestRequire:
    def test_allowed_does_not_raise(self):
        capabilities_for(Role.FAMILY, SubscriptionStatus.ACTIVE).require(Capability.SAVE_MENU)

    def test_premium_feature_raises_upgrade(self):
        caps = capabilities_for(Role.FAMILY, SubscriptionStatus.TRIAL)
        with pytest.raises(PolicyDenied) as exc_info:
            caps.require(Capability.SAVE_MENU)
        assert exc_info.value.upgrade is True
        assert "Premium" in exc_info.value.user_message
        assert exc_info.value.capability == "save_menu"

    def test_other_role_feature_raises_permission(self):
        caps = capabilities_for(Role.RESTAURANT, SubscriptionStatus.ACTIVE)
        with pytest.raises(PolicyDenied) as exc_info:
            caps.require(Capability.SCAN_MENU)
        assert exc_info.value.upgrade is False
        assert "restaurant account" in exc_info.value.user_message

    def test_logged_out(self):
        with pytest.raises(PolicyDenied, match="log in"):
            NO_CAPABILITIES.require(Capability.SCAN_MENU)


class TestUpgradePrompt:
    def test_prompt_for_locked_premium_feature(self):
        caps = capabilities_for(Role.FAMILY, SubscriptionStatus.EXPIRED)
        assert "Premium" in caps.upgrade_prompt(Capability.SEND_EMERGENCY_ALERT)

    def test_no_prompt_when_enabled(self):
        caps = capabilities_for(Role.FAMILY, SubscriptionStatus.ACTIVE)
        assert caps.upgrade_prompt(Capability.SEND_EMERGENCY_ALERT) is None

    def test_no_prompt_for_other_role(self):
        caps = capabilities_for(Role.ADMIN, SubscriptionStatus.TRIAL)
        assert caps.upgrade_prompt(Capability.SAVE_MENU) is None


class TestCapabilitiesOf:
    def test_none_principal(self):
        assert capabilities_of(None) is NO_CAPABILITIES
        assert not NO_CAPABILITIES.is_premium

    def test_principal(self):
        principal = Principal(
            id="u1", name="Ana", email="a@example.com",
            role=Role.FAMILY, subscription_status=SubscriptionStatus.ACTIVE,
        )
        caps = capabilities_of(principal)
        assert caps.is_premium
        assert caps.can_save_menu
