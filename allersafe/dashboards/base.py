"""Behaviour shared by every role dashboard."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

from ..checkout import (
    AddressBar,
    CheckoutReconciler,
    ReconciliationOutcome,
    ReconciliationResult,
    begin_checkout,
)
from ..config import CheckoutConfig
from ..errors import AllerSafeError
from ..models import Principal, Role
from ..policy import Capability, CapabilitySet
from ..workflow import ActionResult

if TYPE_CHECKING:
    from ..gateway import BackendGateway
    from ..session import SessionStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _identity(principal: Principal | None) -> tuple[str, Role] | None:
    if principal is None:
        return None
    return principal.id, principal.role


class Dashboard(ABC):
    """Presentation shell for one role.

    Holds no authoritative state: the principal and its capabilities are
    always read from the session store, and every request goes through the
    gateway. User-facing messages are sent to ``notify`` and kept in
    ``notices``.
    """

    def __init__(
        self,
        gateway: BackendGateway,
        session: SessionStore,
        address: AddressBar | None = None,
        notify: Callable[[str], None] | None = None,
        checkout: CheckoutConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.gateway = gateway
        self.session = session
        self.address = address or AddressBar()
        self.notices: list[str] = []
        self._notify_sink = notify
        self._checkout = checkout or CheckoutConfig()
        self._sleep = sleep
        self._reconciler: CheckoutReconciler | None = None
        self.reconciliation: asyncio.Task[ReconciliationResult] | None = None
        # Work started for one principal must not complete for another.
        self._owner = _identity(session.principal)
        self._unsubscribe: Callable[[], None] | None = session.subscribe(
            self._on_principal_changed
        )

    @property
    def capabilities(self) -> CapabilitySet:
        return self.session.capabilities

    def notify(self, message: str) -> None:
        self.notices.append(message)
        if self._notify_sink is not None:
            self._notify_sink(message)

    async def mount(self) -> None:
        """Load the dashboard and pick up a pending checkout return."""
        self._reconciler = CheckoutReconciler(
            self.gateway,
            refresh=lambda: self.session.refresh(self.gateway),
            address=self.address,
            max_attempts=self._checkout.max_attempts,
            poll_interval=self._checkout.poll_interval,
            sleep=self._sleep,
            on_result=self._on_reconciled,
        )
        self.reconciliation = self._reconciler.begin()
        await self.load()

    def unmount(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._stop()

    def _stop(self) -> None:
        """Abandon pending work so no late response reaches this dashboard."""
        if self._reconciler is not None:
            self._reconciler.close()

    def _on_principal_changed(self, principal: Principal | None) -> None:
        if principal is not None and _identity(principal) == self._owner:
            return
        logger.info("Session changed; stopping %s", type(self).__name__)
        self.unmount()

    @abstractmethod
    async def load(self) -> None:
        """Fetch everything the dashboard shows."""
        ...

    @abstractmethod
    def render(self) -> str:
        ...

    def _on_reconciled(self, result: ReconciliationResult) -> None:
        if result.outcome is not ReconciliationOutcome.CANCELLED:
            self.notify(result.message)

    async def subscribe(self, package_id: str) -> ActionResult[str]:
        """Send the whole client to the payment provider's checkout page."""
        result = await self._perform(
            lambda: begin_checkout(
                self.gateway,
                self.capabilities,
                package_id,
                self._checkout.origin_url,
            ),
            failure_prefix="Payment error: ",
        )
        if result.ok and result.value:
            self.address.assign(result.value)
        return result

    async def _perform(
        self,
        action: Callable[[], Awaitable[T]],
        *,
        capability: Capability | None = None,
        success: str | None = None,
        failure_prefix: str = "",
    ) -> ActionResult[T]:
        """Run one user action: capability check, request, user message."""
        try:
            if capability is not None:
                self.capabilities.require(capability)
            value = await action()
        except AllerSafeError as e:
            logger.debug("Action failed: %s", e.user_message)
            self.notify(f"{failure_prefix}{e.user_message}")
            return ActionResult.failure(e)
        if success:
            self.notify(success)
        return ActionResult.success(value)

    def _status_badge(self) -> str:
        caps = self.capabilities
        return "Premium" if caps.is_premium else "Free"
