"""Error taxonomy shared by the gateway, workflows and dashboards."""

from __future__ import annotations

GENERIC_NETWORK_MESSAGE = "Network error. Please check your connection and try again."


class AllerSafeError(Exception):
    """Base class for every error the client surfaces to a user.

    ``user_message`` is always safe to display: it names the cause
    (validation, permissions, network or server rejection) and never
    carries a traceback.
    """

    def __init__(self, user_message: str) -> None:
        super().__init__(user_message)
        self.user_message = user_message


class ValidationError(AllerSafeError):
    """Local input check failed before any request was issued."""


class BackendError(AllerSafeError):
    """The backend answered with a non-2xx status and a detail message."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(detail or f"Request failed (HTTP {status_code})")
        self.status_code = status_code
        self.detail = detail

    @property
    def is_auth_failure(self) -> bool:
        return self.status_code == 401


class TransportError(AllerSafeError):
    """The network was unreachable, timed out, or the response was malformed."""

    def __init__(self, reason: str = "", user_message: str = GENERIC_NETWORK_MESSAGE) -> None:
        super().__init__(user_message)
        self.reason = reason


class PolicyDenied(AllerSafeError):
    """The capability check failed; nothing was sent to the network.

    ``upgrade`` is True when a premium plan would unlock the capability,
    so callers can show an upgrade prompt instead of a permissions error.
    """

    def __init__(self, capability: str, user_message: str, upgrade: bool = False) -> None:
        super().__init__(user_message)
        self.capability = capability
        self.upgrade = upgrade
