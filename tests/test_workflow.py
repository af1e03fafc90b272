"""Tests for the SafetyWorkflow state machine and PartnerMenuCheck."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from allersafe.errors import BackendError, PolicyDenied, TransportError, ValidationError
from allersafe.models import (
    FamilyMember,
    PartnerMenu,
    Role,
    SafetyAnalysis,
    ScanResult,
    SubscriptionStatus,
    Verdict,
)
from allersafe.policy import capabilities_for
from allersafe.workflow import PartnerMenuCheck, SafetyWorkflow, WorkflowState

A = {"name": "A", "description": "Satay skewers", "price": "8.00",
     "ingredients": ["chicken", "peanut sauce"]}
B = {"name": "B", "description": "Green salad", "price": "6.50",
     "ingredients": ["lettuce", "cucumber"]}
C = {"name": "C", "description": "Pad thai", "price": "11.00",
     "ingredients": ["noodles", "crushed peanuts"]}

SCAN_S1 = ScanResult.from_dict({
    "scan_id": "s1",
    "restaurant_name": "Thai Garden",
    "total_items_found": 3,
    "menu_items": [A, B, C],
}, url="https://thaigarden.example/menu")

ANALYSIS_PEANUT = SafetyAnalysis.from_dict({
    "safe_items": [B],
    "unsafe_items": [
        dict(A, matching_allergens=["peanut"]),
        dict(C, matching_allergens=["peanut"]),
    ],
    "uncertain_items": [],
    "safe_count": 1,
    "unsafe_count": 2,
    "uncertain_count": 0,
    "disclaimer": "Always confirm with restaurant staff.",
    "scan_id": "s1",
})

ADA = FamilyMember(id="m1", name="Ada", allergies=frozenset({"peanut"}))
OBI = FamilyMember(id="m2", name="Obi", allergies=frozenset({"shellfish"}))

FREE = capabilities_for(Role.FAMILY, SubscriptionStatus.TRIAL)
PREMIUM = capabilities_for(Role.FAMILY, SubscriptionStatus.ACTIVE)


def _gateway():
    gw = MagicMock()
    gw.scan_menu = AsyncMock(return_value=SCAN_S1)
    gw.analyze_safety = AsyncMock(return_value=ANALYSIS_PEANUT)
    gw.save_menu = AsyncMock(return_value={"message": "Menu saved successfully"})
    gw.request_restaurant_support = AsyncMock(return_value={"message": "ok"})
    return gw


def _workflow(gateway, caps=FREE):
    states = []
    workflow = SafetyWorkflow(gateway, lambda: caps, on_change=states.append)
    return workflow, states


class TestSubmitUrl:
    @pytest.mark.asyncio
    async def test_empty_url_stays_idle(self):
        gateway = _gateway()
        workflow, states = _workflow(gateway)

        result = await workflow.submit_url("   ")

        assert not result.ok
        assert isinstance(result.error, ValidationError)
        assert workflow.state is WorkflowState.IDLE
        assert states == []
        gateway.scan_menu.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_scan_success(self):
        gateway = _gateway()
        workflow, states = _workflow(gateway)

        result = await workflow.submit_url(" https://thaigarden.example/menu ", "Thai Garden")

        assert result.ok
        assert result.value is SCAN_S1
        assert workflow.state is WorkflowState.SCANNED
        assert states == [WorkflowState.SCANNING, WorkflowState.SCANNED]
        gateway.scan_menu.assert_awaited_once_with(
            "https://thaigarden.example/menu", "Thai Garden"
        )

    @pytest.mark.asyncio
    async def test_backend_failure_surfaces_detail(self):
        gateway = _gateway()
        gateway.scan_menu = AsyncMock(
            side_effect=BackendError(400, "Could not access the restaurant website")
        )
        workflow, _ = _workflow(gateway)

        result = await workflow.submit_url("https://blocked.example")

        assert workflow.state is WorkflowState.ERROR
        assert result.message == "Could not access the restaurant website"
        assert workflow.error is result.error

    @pytest.mark.asyncio
    async def test_network_failure(self):
        gateway = _gateway()
        gateway.scan_menu = AsyncMock(side_effect=TransportError("offline"))
        workflow, _ = _workflow(gateway)

        result = await workflow.submit_url("https://x.example")

        assert workflow.state is WorkflowState.ERROR
        assert "Network error" in result.message

    @pytest.mark.asyncio
    async def test_restaurant_cannot_scan(self):
        gateway = _gateway()
        caps = capabilities_for(Role.RESTAURANT, SubscriptionStatus.ACTIVE)
        workflow, _ = _workflow(gateway, caps)

        result = await workflow.submit_url("https://x.example")

        assert isinstance(result.error, PolicyDenied)
        assert workflow.state is WorkflowState.IDLE
        gateway.scan_menu.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_new_url_discards_previous_results(self):
        gateway = _gateway()
        workflow, _ = _workflow(gateway)
        await workflow.submit_url("https://thaigarden.example/menu")
        await workflow.select_member(ADA)

        await workflow.submit_url("https://other.example")

        assert workflow.state is WorkflowState.SCANNED
        assert workflow.analysis is None
        assert workflow.member is None

    @pytest.mark.asyncio
    async def test_stale_scan_response_is_ignored(self):
        """A slow first scan never overwrites a newer one."""
        first_release = asyncio.Event()
        newer = ScanResult.from_dict(
            {"scan_id": "s2", "restaurant_name": "Newer", "total_items_found": 0}
        )

        async def scan(url, name):
            if url == "https://slow.example":
                await first_release.wait()
                return SCAN_S1
            return newer

        gateway = _gateway()
        gateway.scan_menu = AsyncMock(side_effect=scan)
        workflow, _ = _workflow(gateway)

        slow = asyncio.ensure_future(workflow.submit_url("https://slow.example"))
        await asyncio.sleep(0)
        fast = await workflow.submit_url("https://fast.example")
        first_release.set()
        stale = await slow

        assert fast.ok
        assert stale.stale
        assert not stale.ok
        assert workflow.scan.scan_id == "s2"
        assert workflow.state is WorkflowState.SCANNED


class TestSelectMember:
    @pytest.mark.asyncio
    async def test_end_to_end_peanut(self):
        gateway = _gateway()
        workflow, states = _workflow(gateway)

        await workflow.submit_url("https://thaigarden.example/menu")
        result = await workflow.select_member(ADA)

        assert result.ok
        analysis = workflow.analysis
        assert (analysis.safe_count, analysis.unsafe_count, analysis.uncertain_count) == (1, 2, 0)
        assert [i.name for i in analysis.unsafe_items] == ["A", "C"]
        assert [i.name for i in analysis.safe_items] == ["B"]
        assert analysis.total == SCAN_S1.total_items_found
        assert [verdict for _, verdict, _ in analysis.rows(SCAN_S1)] == [
            Verdict.UNSAFE, Verdict.SAFE, Verdict.UNSAFE,
        ]
        assert states == [
            WorkflowState.SCANNING,
            WorkflowState.SCANNED,
            WorkflowState.ANALYZING_SAFETY,
            WorkflowState.ANALYZED,
        ]
        gateway.analyze_safety.assert_awaited_once_with("s1", ["peanut"])

    @pytest.mark.asyncio
    async def test_reselect_reuses_scan(self):
        gateway = _gateway()
        workflow, states = _workflow(gateway)
        await workflow.submit_url("https://thaigarden.example/menu")
        await workflow.select_member(ADA)
        states.clear()

        await workflow.select_member(OBI)

        assert gateway.scan_menu.await_count == 1
        gateway.analyze_safety.assert_awaited_with("s1", ["shellfish"])
        assert states == [WorkflowState.ANALYZING_SAFETY, WorkflowState.ANALYZED]
        assert workflow.member is OBI

    @pytest.mark.asyncio
    async def test_requires_scan(self):
        gateway = _gateway()
        workflow, _ = _workflow(gateway)

        result = await workflow.select_member(ADA)

        assert isinstance(result.error, ValidationError)
        assert workflow.state is WorkflowState.IDLE
        gateway.analyze_safety.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_inconsistent_analysis_is_an_error(self):
        gateway = _gateway()
        gateway.analyze_safety = AsyncMock(return_value=SafetyAnalysis.from_dict({
            "safe_items": [B], "unsafe_items": [A],
            "safe_count": 1, "unsafe_count": 1,
        }))
        workflow, _ = _workflow(gateway)
        await workflow.submit_url("https://thaigarden.example/menu")

        result = await workflow.select_member(ADA)

        assert isinstance(result.error, TransportError)
        assert workflow.state is WorkflowState.ERROR
        assert workflow.analysis is None

    @pytest.mark.asyncio
    async def test_analysis_failure(self):
        gateway = _gateway()
        gateway.analyze_safety = AsyncMock(side_effect=BackendError(404, "Scan not found"))
        workflow, _ = _workflow(gateway)
        await workflow.submit_url("https://thaigarden.example/menu")

        result = await workflow.select_member(ADA)

        assert workflow.state is WorkflowState.ERROR
        assert result.message == "Scan not found"


class TestReset:
    @pytest.mark.asyncio
    async def test_reset_discards_everything(self):
        gateway = _gateway()
        workflow, _ = _workflow(gateway)
        await workflow.submit_url("https://thaigarden.example/menu")
        await workflow.select_member(ADA)

        workflow.reset()

        assert workflow.state is WorkflowState.IDLE
        assert workflow.scan is None
        assert workflow.analysis is None

    @pytest.mark.asyncio
    async def test_close_suppresses_pending_response(self):
        release = asyncio.Event()

        async def scan(url, name):
            await release.wait()
            return SCAN_S1

        gateway = _gateway()
        gateway.scan_menu = AsyncMock(side_effect=scan)
        workflow, _ = _workflow(gateway)

        pending = asyncio.ensure_future(workflow.submit_url("https://slow.example"))
        await asyncio.sleep(0)
        workflow.close()
        release.set()
        result = await pending

        assert result.stale
        assert workflow.state is WorkflowState.IDLE
        assert workflow.scan is None


class TestSaveToFavorites:
    @pytest.mark.asyncio
    async def test_non_premium_rejected_locally(self):
        gateway = _gateway()
        workflow, _ = _workflow(gateway, FREE)
        await workflow.submit_url("https://thaigarden.example/menu")
        await workflow.select_member(ADA)

        result = await workflow.save_to_favorites("Date night")

        assert isinstance(result.error, PolicyDenied)
        assert result.error.upgrade
        assert "Premium" in result.message
        gateway.save_menu.assert_not_awaited()
        assert workflow.state is WorkflowState.ANALYZED

    @pytest.mark.asyncio
    async def test_premium_saves(self):
        gateway = _gateway()
        workflow, _ = _workflow(gateway, PREMIUM)
        await workflow.submit_url("https://thaigarden.example/menu", "Thai Garden")
        await workflow.select_member(ADA)

        result = await workflow.save_to_favorites()

        assert result.ok
        gateway.save_menu.assert_awaited_once_with("s1", "Thai Garden", "")

    @pytest.mark.asyncio
    async def test_requires_analysis(self):
        gateway = _gateway()
        workflow, _ = _workflow(gateway, PREMIUM)
        await workflow.submit_url("https://thaigarden.example/menu")

        result = await workflow.save_to_favorites("x")

        assert isinstance(result.error, ValidationError)
        gateway.save_menu.assert_not_awaited()


class TestPartnershipSupport:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("caps, premium", [(FREE, False), (PREMIUM, True)])
    async def test_tells_backend_about_tier(self, caps, premium):
        gateway = _gateway()
        workflow, _ = _workflow(gateway, caps)
        await workflow.submit_url("https://thaigarden.example/menu")
        await workflow.select_member(ADA)

        result = await workflow.request_partnership_support()

        assert result.ok
        gateway.request_restaurant_support.assert_awaited_once_with(
            "Thai Garden", "https://thaigarden.example/menu", is_premium=premium
        )


class TestPartnerMenuCheck:
    @pytest.mark.asyncio
    async def test_open_and_check(self):
        gateway = MagicMock()
        gateway.public_menu = AsyncMock(
            return_value=PartnerMenu(restaurant_id="r1", restaurant_name="Verified Bistro")
        )
        gateway.check_menu_safety = AsyncMock(return_value=ANALYSIS_PEANUT)
        check = PartnerMenuCheck(gateway)

        opened = await check.open("r1")
        result = await check.check(ADA)

        assert opened.ok
        assert result.value is ANALYSIS_PEANUT
        gateway.check_menu_safety.assert_awaited_once_with("r1", ["peanut"])

    @pytest.mark.asyncio
    async def test_check_requires_menu(self):
        check = PartnerMenuCheck(MagicMock())
        result = await check.check(ADA)
        assert isinstance(result.error, ValidationError)

    @pytest.mark.asyncio
    async def test_missing_partner(self):
        gateway = MagicMock()
        gateway.public_menu = AsyncMock(side_effect=BackendError(404, "Restaurant not found"))
        check = PartnerMenuCheck(gateway)

        result = await check.open("nope")

        assert result.message == "Restaurant not found"
        assert check.menu is None

    @pytest.mark.asyncio
    async def test_failure_after_close_is_stale(self):
        release = asyncio.Event()

        async def public_menu(restaurant_id):
            await release.wait()
            raise TransportError("offline")

        gateway = MagicMock()
        gateway.public_menu = AsyncMock(side_effect=public_menu)
        check = PartnerMenuCheck(gateway)

        pending = asyncio.ensure_future(check.open("r1"))
        await asyncio.sleep(0)
        check.close()
        release.set()
        result = await pending

        assert result.stale
        assert result.error is None

    @pytest.mark.asyncio
    async def test_superseded_check_failure_is_stale(self):
        release = asyncio.Event()

        async def check_menu_safety(restaurant_id, allergies):
            if allergies == ["peanut"]:
                await release.wait()
                raise BackendError(500, "Analysis failed")
            return ANALYSIS_PEANUT

        gateway = MagicMock()
        gateway.public_menu = AsyncMock(
            return_value=PartnerMenu(restaurant_id="r1", restaurant_name="Verified Bistro")
        )
        gateway.check_menu_safety = AsyncMock(side_effect=check_menu_safety)
        check = PartnerMenuCheck(gateway)
        await check.open("r1")

        slow = asyncio.ensure_future(check.check(ADA))
        await asyncio.sleep(0)
        newer = await check.check(OBI)
        release.set()
        stale = await slow

        assert newer.ok
        assert stale.stale
        assert check.member is OBI
        assert check.analysis is ANALYSIS_PEANUT
