"""Family dashboard: members, emergency alerts and menu safety checks."""

from __future__ import annotations

from ..errors import ValidationError
from ..models import (
    Family,
    FamilyMember,
    GeoLocation,
    PartnerMenu,
    SafetyAnalysis,
    ScanResult,
    Verdict,
)
from ..policy import Capability, CapabilitySet
from ..workflow import ActionResult, PartnerMenuCheck, SafetyWorkflow, WorkflowState
from .base import Dashboard

_VERDICT_LABELS: dict[Verdict, str] = {
    Verdict.SAFE: "✅ Likely Safe",
    Verdict.UNSAFE: "❌ Contains Allergens",
    Verdict.UNCERTAIN: "⚠️  Uncertain - Limited Information",
}


def render_safety_analysis(
    analysis: SafetyAnalysis,
    capabilities: CapabilitySet,
    member: FamilyMember | None = None,
    scan: ScanResult | None = None,
) -> str:
    """Format a safety analysis for terminal display.

    Premium principals see per-item confidence; everyone else sees the
    backend's upgrade message instead.
    """
    premium = capabilities.allows(Capability.PREMIUM_ANALYSIS)
    lines: list[str] = []
    title = f"🛡️  Safety Analysis for {member.name}" if member else "🛡️  Safety Analysis"
    lines.append(f"{title} ({'Premium' if premium else 'Basic'} Analysis)")
    if scan is not None:
        lines.append(f"   {scan.restaurant_name}  {scan.url}")

    for verdict, items in analysis.buckets().items():
        if verdict is Verdict.UNCERTAIN and not items:
            continue
        lines.append("")
        lines.append(f"{_VERDICT_LABELS[verdict]} ({len(items)})")
        if not items and verdict is Verdict.SAFE:
            lines.append("   No items identified as safe")
        for item in items:
            line = f"   • {item.name}"
            if item.price:
                line += f"  ${item.price}"
            if verdict is Verdict.UNSAFE and item.matching_allergens:
                line += f"  [{', '.join(item.matching_allergens)}]"
            if verdict is Verdict.UNCERTAIN:
                line += "  (verify with restaurant)"
            if premium and item.confidence_score is not None:
                line += f"  confidence {item.confidence_score:.0%}"
            lines.append(line)

    if not premium and analysis.upgrade_message:
        lines.append("")
        lines.append(f"💡 {analysis.upgrade_message}")
    if analysis.disclaimer:
        lines.append("")
        lines.append(f"Important: {analysis.disclaimer}")
    return "\n".join(lines)


class FamilyDashboard(Dashboard):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.family: Family | None = None
        self.scan_history: list[dict] = []
        self.saved_menus: list[dict] = []
        self.location: GeoLocation | None = None
        self.workflow = SafetyWorkflow(self.gateway, lambda: self.capabilities)
        self.partner = PartnerMenuCheck(self.gateway)

    def _stop(self) -> None:
        super()._stop()
        self.workflow.close()
        self.partner.close()

    async def load(self) -> None:
        family = await self._perform(self.gateway.my_family)
        if family.ok:
            self.family = family.value
        await self.load_scan_history()
        if self.capabilities.allows(Capability.VIEW_SAVED_MENUS):
            await self.load_saved_menus()

    async def load_scan_history(self, limit: int = 10) -> ActionResult[list[dict]]:
        result = await self._perform(lambda: self.gateway.scan_history(limit))
        if result.ok:
            self.scan_history = result.value or []
        return result

    async def load_saved_menus(self) -> ActionResult[list[dict]]:
        result = await self._perform(
            self.gateway.saved_menus, capability=Capability.VIEW_SAVED_MENUS
        )
        if result.ok:
            self.saved_menus = result.value or []
        return result

    def set_location(self, lat: float, lng: float) -> None:
        self.location = GeoLocation(lat=lat, lng=lng)

    def _require_family(self) -> Family:
        if self.family is None:
            raise ValidationError("Create your family profile first")
        return self.family

    async def create_family(
        self, family_name: str, members: list[tuple[str, list[str]]]
    ) -> ActionResult[dict]:
        async def create() -> dict:
            if not family_name.strip():
                raise ValidationError("Family name is required")
            if not members:
                raise ValidationError("Add at least one family member")
            return await self.gateway.create_family(
                family_name.strip(),
                [{"name": name, "allergies": list(allergies)} for name, allergies in members],
            )

        result = await self._perform(create)
        if result.ok:
            await self.load()
        return result

    async def set_emergency_contact(self, name: str, phone_number: str) -> ActionResult[dict]:
        async def save() -> dict:
            family = self._require_family()
            if not name.strip() or not phone_number.strip():
                raise ValidationError("Please fill in both name and phone number")
            return await self.gateway.set_emergency_contact(
                family.id, name.strip(), phone_number.strip()
            )

        result = await self._perform(
            save,
            capability=Capability.MANAGE_EMERGENCY_CONTACT,
            success="Emergency contact updated successfully!",
        )
        if result.ok:
            await self.load()
        return result

    async def send_emergency_alert(self, member: FamilyMember) -> ActionResult[dict]:
        """Text the family's emergency contact, with location when known."""

        async def send() -> dict:
            family = self._require_family()
            if family.emergency_contact is None:
                raise ValidationError("No emergency contact set. Please set one first.")
            return await self.gateway.send_emergency_alert(
                family.id, member.id, self.location
            )

        result = await self._perform(
            send,
            capability=Capability.SEND_EMERGENCY_ALERT,
            failure_prefix="Failed to send emergency alert: ",
        )
        if result.ok:
            self.notify(
                f"Emergency alert sent to {self.family.emergency_contact.name}!"
            )
        return result

    async def scan_menu(self, url: str, restaurant_name: str = "") -> ActionResult[ScanResult]:
        result = await self.workflow.submit_url(url, restaurant_name)
        if result.stale:
            return result
        if not result.ok:
            self.notify(f"Menu scanning failed: {result.message}")
            return result
        await self.load_scan_history()
        return result

    async def analyze_for(self, member: FamilyMember) -> ActionResult[SafetyAnalysis]:
        result = await self.workflow.select_member(member)
        if result.error is not None:
            self.notify(f"Safety analysis failed: {result.message}")
        return result

    async def save_menu(self, menu_name: str = "", notes: str = "") -> ActionResult[dict]:
        result = await self.workflow.save_to_favorites(menu_name, notes)
        if not result.ok:
            self.notify(result.message)
            return result
        self.notify("Menu saved to favorites!")
        await self.load_saved_menus()
        return result

    async def request_support(self) -> ActionResult[dict]:
        result = await self.workflow.request_partnership_support()
        if not result.ok:
            self.notify(f"Failed to request restaurant support: {result.message}")
            return result
        if self.capabilities.allows(Capability.PRIORITY_SUPPORT):
            follow_up = "Your request has high priority as a Premium user."
        else:
            follow_up = self.capabilities.upgrade_prompt(Capability.PRIORITY_SUPPORT) or ""
        self.notify(f"Restaurant support requested successfully! {follow_up}".strip())
        return result

    async def open_partner_menu(self, restaurant_id: str) -> ActionResult[PartnerMenu]:
        result = await self.partner.open(restaurant_id)
        if result.error is not None:
            self.notify(result.message)
        return result

    async def check_partner_menu(self, member: FamilyMember) -> ActionResult[SafetyAnalysis]:
        result = await self.partner.check(member)
        if result.error is not None:
            self.notify(result.message)
        return result

    def render(self) -> str:
        lines: list[str] = []
        if self.family is None:
            lines.append("No family profile yet. Create one to get started.")
            return "\n".join(lines)

        f = self.family
        lines.append(f"👪 {f.family_name}  [{self._status_badge()}]")
        if f.subscription_warning:
            lines.append(f"   ⚠️  {f.subscription_warning}")
        for m in f.members:
            allergies = ", ".join(sorted(m.allergies)) or "none"
            lines.append(f"   {m.name:<16} allergies: {allergies}")

        if f.emergency_contact is not None:
            lines.append(
                f"   Emergency contact: {f.emergency_contact.name} "
                f"({f.emergency_contact.phone_number})"
            )
        prompt = self.capabilities.upgrade_prompt(Capability.SEND_EMERGENCY_ALERT)
        if prompt:
            lines.append(f"   🔒 {prompt}")

        if self.workflow.state is WorkflowState.ANALYZED:
            lines.append("")
            lines.append(
                render_safety_analysis(
                    self.workflow.analysis,
                    self.capabilities,
                    member=self.workflow.member,
                    scan=self.workflow.scan,
                )
            )
        elif self.workflow.state is WorkflowState.SCANNED and self.workflow.scan:
            scan = self.workflow.scan
            lines.append("")
            lines.append(
                f"📋 {scan.restaurant_name}: {scan.total_items_found} items found. "
                f"Select a family member to check safety."
            )

        if self.scan_history:
            lines.append("")
            lines.append(f"🕘 Recent scans ({len(self.scan_history)})")
            for scan in self.scan_history:
                lines.append(
                    f"   {scan.get('restaurant_name', '')} "
                    f"({scan.get('total_items_found', 0)} items)"
                )
        return "\n".join(lines)
