"""Subscription checkout and post-payment reconciliation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .errors import AllerSafeError, BackendError, TransportError, ValidationError
from .models import CheckoutSession, Role
from .policy import Capability, CapabilitySet

if TYPE_CHECKING:
    from .gateway import BackendGateway

logger = logging.getLogger(__name__)

_RETURN_PARAMS = ("session_id", "payment")


@dataclass(frozen=True)
class SubscriptionPackage:
    id: str
    name: str
    role: Role
    amount: float
    interval: str
    setup_fee: float = 0.0


SUBSCRIPTION_PACKAGES: dict[str, SubscriptionPackage] = {
    "restaurant_monthly": SubscriptionPackage(
        "restaurant_monthly", "Restaurant Monthly", Role.RESTAURANT, 99.0, "month", 299.0
    ),
    "family_monthly": SubscriptionPackage(
        "family_monthly", "Family Monthly", Role.FAMILY, 14.99, "month"
    ),
    "family_annual": SubscriptionPackage(
        "family_annual", "Family Annual", Role.FAMILY, 149.0, "year"
    ),
}


def packages_for(role: Role) -> list[SubscriptionPackage]:
    return [p for p in SUBSCRIPTION_PACKAGES.values() if p.role is role]


async def begin_checkout(
    gateway: BackendGateway,
    capabilities: CapabilitySet,
    package_id: str,
    origin_url: str,
) -> str:
    """Create a checkout session and return the provider URL to redirect to.

    Raises:
        PolicyDenied: The principal cannot subscribe (already active, admin).
        ValidationError: Unknown package, or one meant for another role.
    """
    capabilities.require(Capability.SUBSCRIBE)
    package = SUBSCRIPTION_PACKAGES.get(package_id)
    if package is None:
        raise ValidationError(f"Unknown subscription package: {package_id!r}")
    if package.role is not capabilities.role:
        raise ValidationError(
            f"{package.name} is only available to {package.role.value} accounts"
        )
    return await gateway.create_checkout(package_id, origin_url)


def parse_return_url(url: str) -> CheckoutSession | None:
    """Recover the checkout session from a return URL, if it carries one.

    Only ``?session_id=...&payment=success`` starts a reconciliation.
    """
    params = dict(parse_qsl(urlsplit(url).query))
    session_id = params.get("session_id", "")
    flag = params.get("payment", "")
    if session_id and flag == "success":
        return CheckoutSession(session_id=session_id, return_payment_flag=flag)
    return None


def strip_return_params(url: str) -> str:
    """Remove the checkout return parameters, keeping everything else."""
    parts = urlsplit(url)
    kept = [(k, v) for k, v in parse_qsl(parts.query) if k not in _RETURN_PARAMS]
    return urlunsplit(parts._replace(query=urlencode(kept)))


class AddressBar:
    """The client's visible address.

    ``replace`` rewrites the current entry without navigating (history
    replace); ``assign`` navigates the whole page away, as for a redirect
    to the payment provider.
    """

    def __init__(self, url: str = "") -> None:
        self.url = url
        self.history: list[str] = []
        self.redirected_to: str | None = None

    def replace(self, url: str) -> None:
        self.history.append(self.url)
        self.url = url

    def assign(self, url: str) -> None:
        self.redirected_to = url


class ReconciliationOutcome(str, Enum):
    ACTIVATED = "activated"
    EXPIRED = "expired"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


_OUTCOME_MESSAGES: dict[ReconciliationOutcome, str] = {
    ReconciliationOutcome.ACTIVATED: (
        "Payment successful! Your subscription is now active."
    ),
    ReconciliationOutcome.EXPIRED: "Payment session expired. Please try again.",
    ReconciliationOutcome.TIMED_OUT: (
        "Payment status check timed out. Please check your billing section."
    ),
    ReconciliationOutcome.CANCELLED: "Payment status check cancelled.",
}


@dataclass(frozen=True)
class ReconciliationResult:
    outcome: ReconciliationOutcome
    session_id: str
    attempts: int

    @property
    def message(self) -> str:
        return _OUTCOME_MESSAGES[self.outcome]


class CheckoutReconciler:
    """Confirms that a returned checkout actually activated the subscription.

    Polls the payment status endpoint at most ``max_attempts`` times,
    ``poll_interval`` seconds apart. A paid session refreshes the principal
    through ``refresh``, strips the return parameters from the address and
    ends the loop; an expired session ends it immediately; anything else,
    including a failed request, uses up one attempt.

    Each session id gets at most one terminal signal through ``on_result``.
    ``close()`` stops polling without emitting one.
    """

    def __init__(
        self,
        gateway: BackendGateway,
        refresh: Callable[[], Awaitable[Any]],
        address: AddressBar,
        *,
        max_attempts: int = 5,
        poll_interval: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_result: Callable[[ReconciliationResult], None] | None = None,
    ) -> None:
        self._gateway = gateway
        self._refresh = refresh
        self._address = address
        self._max_attempts = max_attempts
        self._poll_interval = poll_interval
        self._sleep = sleep
        self._on_result = on_result
        self._closed = False
        self._tasks: dict[str, asyncio.Task[ReconciliationResult]] = {}
        self._signalled: set[str] = set()

    @property
    def closed(self) -> bool:
        return self._closed

    def begin(self) -> asyncio.Task[ReconciliationResult] | None:
        """Start reconciling if the current address is a checkout return.

        Must be called from a running event loop. Calling it again for the
        same session returns the task already in flight.
        """
        session = parse_return_url(self._address.url)
        if session is None or self._closed:
            return None
        task = self._tasks.get(session.session_id)
        if task is None:
            task = asyncio.ensure_future(self.reconcile(session.session_id))
            self._tasks[session.session_id] = task
        return task

    def close(self) -> None:
        """Stop polling; pending tasks finish as cancelled at their next step."""
        self._closed = True
        for task in self._tasks.values():
            if not task.done():
                task.cancel()

    async def reconcile(self, session_id: str) -> ReconciliationResult:
        attempts = 0
        try:
            while attempts < self._max_attempts:
                if self._closed:
                    return self._cancelled(session_id, attempts)

                attempts += 1
                logger.info(
                    "Checking payment status for %s (attempt %d/%d)",
                    session_id, attempts, self._max_attempts,
                )
                try:
                    snapshot = await self._gateway.payment_status(session_id)
                except (BackendError, TransportError) as e:
                    logger.warning("Payment status check failed: %s", e.user_message)
                    snapshot = None

                if self._closed:
                    return self._cancelled(session_id, attempts)

                if snapshot is not None and snapshot.is_paid:
                    await self._activate()
                    return self._finish(
                        ReconciliationOutcome.ACTIVATED, session_id, attempts
                    )
                if snapshot is not None and snapshot.is_expired:
                    return self._finish(
                        ReconciliationOutcome.EXPIRED, session_id, attempts
                    )

                if attempts < self._max_attempts:
                    await self._sleep(self._poll_interval)
        except asyncio.CancelledError:
            if not self._closed:
                raise
            return self._cancelled(session_id, attempts)

        return self._finish(ReconciliationOutcome.TIMED_OUT, session_id, attempts)

    async def _activate(self) -> None:
        try:
            await self._refresh()
        except AllerSafeError as e:
            # Payment is confirmed either way; the next refresh picks it up.
            logger.warning("Subscription refresh after payment failed: %s", e.user_message)
        if parse_return_url(self._address.url) is not None:
            self._address.replace(strip_return_params(self._address.url))

    def _cancelled(self, session_id: str, attempts: int) -> ReconciliationResult:
        logger.info("Reconciliation of %s cancelled after %d attempts", session_id, attempts)
        return ReconciliationResult(ReconciliationOutcome.CANCELLED, session_id, attempts)

    def _finish(
        self, outcome: ReconciliationOutcome, session_id: str, attempts: int
    ) -> ReconciliationResult:
        result = ReconciliationResult(outcome, session_id, attempts)
        logger.info("Reconciliation of %s: %s", session_id, outcome.value)
        if session_id not in self._signalled:
            self._signalled.add(session_id)
            if self._on_result is not None:
                self._on_result(result)
        return result
