"""Menu safety workflow: scan a menu, pick a family member, categorize items."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar

from .errors import (
    AllerSafeError,
    BackendError,
    PolicyDenied,
    TransportError,
    ValidationError,
)
from .models import FamilyMember, PartnerMenu, SafetyAnalysis, ScanResult
from .policy import Capability, CapabilitySet

if TYPE_CHECKING:
    from .gateway import BackendGateway

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkflowState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    SCANNED = "scanned"
    ANALYZING_SAFETY = "analyzing_safety"
    ANALYZED = "analyzed"
    ERROR = "error"


@dataclass(frozen=True)
class ActionResult(Generic[T]):
    """Outcome of a workflow or dashboard action.

    Exactly one of ``value``/``error`` is meaningful: ``ok`` is False
    whenever an error is set. ``stale`` marks a response that arrived after
    a newer request superseded it and was therefore ignored.
    """

    value: T | None = None
    error: AllerSafeError | None = None
    stale: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.stale

    @property
    def message(self) -> str:
        return self.error.user_message if self.error is not None else ""

    @classmethod
    def success(cls, value: T | None = None) -> ActionResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: AllerSafeError) -> ActionResult[T]:
        return cls(error=error)


_STALE: ActionResult[Any] = ActionResult(stale=True)


class SafetyWorkflow:
    """State machine over one menu-scanning session.

    ``Idle → Scanning → Scanned → AnalyzingSafety → Analyzed``, with
    ``Error`` reachable from both in-flight states. Every request records
    the generation it was issued under; a response whose generation is no
    longer current (a newer scan or analysis started, or the workflow was
    reset or closed) is dropped without touching state.
    """

    def __init__(
        self,
        gateway: BackendGateway,
        capabilities: Callable[[], CapabilitySet],
        on_change: Callable[[WorkflowState], None] | None = None,
    ) -> None:
        self._gateway = gateway
        self._capabilities = capabilities
        self._on_change = on_change
        self._generation = 0
        self._closed = False
        self._state = WorkflowState.IDLE
        self._scan: ScanResult | None = None
        self._analysis: SafetyAnalysis | None = None
        self._member: FamilyMember | None = None
        self._error: AllerSafeError | None = None

    @property
    def state(self) -> WorkflowState:
        return self._state

    @property
    def scan(self) -> ScanResult | None:
        return self._scan

    @property
    def analysis(self) -> SafetyAnalysis | None:
        return self._analysis

    @property
    def member(self) -> FamilyMember | None:
        return self._member

    @property
    def error(self) -> AllerSafeError | None:
        return self._error

    def _transition(self, state: WorkflowState) -> None:
        logger.debug("Safety workflow: %s -> %s", self._state.value, state.value)
        self._state = state
        if self._on_change is not None:
            self._on_change(state)

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _is_current(self, generation: int) -> bool:
        if self._closed or generation != self._generation:
            logger.info("Dropping superseded workflow response (generation %d)", generation)
            return False
        return True

    async def submit_url(self, url: str, restaurant_name: str = "") -> ActionResult[ScanResult]:
        """Scan a restaurant menu URL, discarding any previous scan."""
        url = url.strip()
        if not url:
            return ActionResult.failure(
                ValidationError("Please enter a restaurant menu URL")
            )
        try:
            self._capabilities().require(Capability.SCAN_MENU)
        except PolicyDenied as e:
            return ActionResult.failure(e)

        generation = self._next_generation()
        self._scan = None
        self._analysis = None
        self._member = None
        self._error = None
        self._transition(WorkflowState.SCANNING)

        try:
            scan = await self._gateway.scan_menu(url, restaurant_name.strip())
        except (BackendError, TransportError) as e:
            if not self._is_current(generation):
                return _STALE
            self._error = e
            self._transition(WorkflowState.ERROR)
            return ActionResult.failure(e)

        if not self._is_current(generation):
            return _STALE
        self._scan = scan
        self._transition(WorkflowState.SCANNED)
        return ActionResult.success(scan)

    async def select_member(self, member: FamilyMember) -> ActionResult[SafetyAnalysis]:
        """Categorize the current scan against *member*'s allergies.

        Reuses the held scan; switching members never rescans.
        """
        if self._scan is None:
            return ActionResult.failure(ValidationError("Scan a menu first"))
        try:
            self._capabilities().require(Capability.ANALYZE_SAFETY)
        except PolicyDenied as e:
            return ActionResult.failure(e)

        scan = self._scan
        generation = self._next_generation()
        self._member = member
        self._analysis = None
        self._error = None
        self._transition(WorkflowState.ANALYZING_SAFETY)

        try:
            analysis = await self._gateway.analyze_safety(
                scan.scan_id, sorted(member.allergies)
            )
            problems = analysis.inconsistencies(scan)
            if problems:
                raise TransportError(
                    "; ".join(problems),
                    user_message=(
                        "The safety analysis did not match the scanned menu. "
                        "Please try again."
                    ),
                )
        except (BackendError, TransportError) as e:
            if not self._is_current(generation):
                return _STALE
            self._error = e
            self._transition(WorkflowState.ERROR)
            return ActionResult.failure(e)

        if not self._is_current(generation):
            return _STALE
        self._analysis = analysis
        self._transition(WorkflowState.ANALYZED)
        return ActionResult.success(analysis)

    def reset(self) -> None:
        """Return to Idle and drop every held result and pending response."""
        self._next_generation()
        self._scan = None
        self._analysis = None
        self._member = None
        self._error = None
        if self._state is not WorkflowState.IDLE:
            self._transition(WorkflowState.IDLE)

    def close(self) -> None:
        self.reset()
        self._closed = True

    def _require_analyzed(self) -> ValidationError | None:
        if self._state is not WorkflowState.ANALYZED or self._scan is None:
            return ValidationError("Run a safety analysis first")
        return None

    async def save_to_favorites(self, menu_name: str = "", notes: str = "") -> ActionResult[dict]:
        """Save the analyzed menu to favorites. Premium only."""
        invalid = self._require_analyzed()
        if invalid is not None:
            return ActionResult.failure(invalid)
        try:
            self._capabilities().require(Capability.SAVE_MENU)
        except PolicyDenied as e:
            return ActionResult.failure(e)

        scan = self._scan
        name = menu_name.strip() or scan.restaurant_name or scan.url
        try:
            response = await self._gateway.save_menu(scan.scan_id, name, notes)
        except (BackendError, TransportError) as e:
            return ActionResult.failure(e)
        return ActionResult.success(response)

    async def request_partnership_support(self) -> ActionResult[dict]:
        """Ask the platform to onboard the scanned restaurant officially.

        Open to every family plan; premium requesters are flagged so the
        backend can prioritize them.
        """
        invalid = self._require_analyzed()
        if invalid is not None:
            return ActionResult.failure(invalid)
        capabilities = self._capabilities()
        try:
            capabilities.require(Capability.REQUEST_SUPPORT)
        except PolicyDenied as e:
            return ActionResult.failure(e)

        scan = self._scan
        try:
            response = await self._gateway.request_restaurant_support(
                scan.restaurant_name,
                scan.url,
                is_premium=capabilities.allows(Capability.PRIORITY_SUPPORT),
            )
        except (BackendError, TransportError) as e:
            return ActionResult.failure(e)
        return ActionResult.success(response)


class PartnerMenuCheck:
    """Safety check for a partner restaurant's published menu (QR code path).

    Partner menus are verified by the restaurant, so there is no scan step:
    open the menu, then check it for a member.
    """

    def __init__(self, gateway: BackendGateway) -> None:
        self._gateway = gateway
        self._generation = 0
        self.menu: PartnerMenu | None = None
        self.analysis: SafetyAnalysis | None = None
        self.member: FamilyMember | None = None

    async def open(self, restaurant_id: str) -> ActionResult[PartnerMenu]:
        self._generation += 1
        generation = self._generation
        self.menu = None
        self.analysis = None
        self.member = None
        try:
            menu = await self._gateway.public_menu(restaurant_id)
        except (BackendError, TransportError) as e:
            if generation != self._generation:
                return _STALE
            return ActionResult.failure(e)
        if generation != self._generation:
            return _STALE
        self.menu = menu
        return ActionResult.success(menu)

    async def check(self, member: FamilyMember) -> ActionResult[SafetyAnalysis]:
        if self.menu is None:
            return ActionResult.failure(ValidationError("Open a partner menu first"))
        self._generation += 1
        generation = self._generation
        self.member = member
        self.analysis = None
        try:
            analysis = await self._gateway.check_menu_safety(
                self.menu.restaurant_id, sorted(member.allergies)
            )
        except (BackendError, TransportError) as e:
            if generation != self._generation:
                return _STALE
            return ActionResult.failure(e)
        if generation != self._generation:
            return _STALE
        self.analysis = analysis
        return ActionResult.success(analysis)

    def close(self) -> None:
        self._generation += 1
        self.menu = None
        self.analysis = None
        self.member = None
