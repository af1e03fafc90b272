"""Session store: the authenticated principal and its bearer credential."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from .errors import BackendError, TransportError
from .models import Principal, Role
from .policy import CapabilitySet, capabilities_of

if TYPE_CHECKING:
    from .gateway import BackendGateway

logger = logging.getLogger(__name__)

Listener = Callable[["Principal | None"], None]

HOME_DASHBOARDS: dict[Role, str] = {
    Role.RESTAURANT: "restaurant",
    Role.FAMILY: "family",
    Role.ADMIN: "admin",
}


class CredentialStore:
    """Persists the bearer token between runs as a small JSON file."""

    def __init__(self, token_path: str | Path = "~/.config/allersafe/token.json") -> None:
        self._token_path = Path(token_path).expanduser()

    def load(self) -> str | None:
        if not self._token_path.exists():
            return None
        try:
            data = json.loads(self._token_path.read_text())
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable credential file %s", self._token_path)
            return None
        token = data.get("access_token") if isinstance(data, dict) else None
        return token or None

    def save(self, token: str) -> None:
        self._token_path.parent.mkdir(parents=True, exist_ok=True)
        self._token_path.write_text(json.dumps({"access_token": token}))
        self._token_path.chmod(0o600)

    def clear(self) -> None:
        if self._token_path.exists():
            self._token_path.unlink()


class SessionStore:
    """Owns the current Principal and bearer token.

    The principal is replaced wholesale on login, refresh and logout and is
    never mutated in place. ``epoch`` changes on every login or logout so
    that a refresh started under an older credential cannot overwrite the
    newer session when its response finally arrives.
    """

    def __init__(self, credentials: CredentialStore | None = None) -> None:
        self._credentials = credentials
        self._principal: Principal | None = None
        self._token: str | None = None
        self._epoch = 0
        self._listeners: list[Listener] = []

    @property
    def principal(self) -> Principal | None:
        return self._principal

    @property
    def token(self) -> str | None:
        return self._token

    def get_token(self) -> str | None:
        """Token provider for the BackendGateway."""
        return self._token

    @property
    def is_authenticated(self) -> bool:
        return self._principal is not None and self._token is not None

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def capabilities(self) -> CapabilitySet:
        return capabilities_of(self._principal)

    @property
    def home_dashboard(self) -> str | None:
        if self._principal is None:
            return None
        return HOME_DASHBOARDS[self._principal.role]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a callback for principal changes; returns an unsubscriber."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _replace(self, principal: Principal | None) -> None:
        self._principal = principal
        for listener in list(self._listeners):
            listener(principal)

    def _start(self, token: str, principal: Principal) -> None:
        self._epoch += 1
        self._token = token
        if self._credentials is not None:
            self._credentials.save(token)
        self._replace(principal)
        logger.info("Logged in as %s (%s)", principal.email, principal.role.value)

    async def login(self, gateway: BackendGateway, email: str, password: str) -> Principal:
        token, principal = await gateway.login(email, password)
        self._start(token, principal)
        return principal

    async def register(
        self,
        gateway: BackendGateway,
        email: str,
        password: str,
        name: str,
        role: Role | str,
    ) -> Principal:
        role_value = role.value if isinstance(role, Role) else Role(role).value
        token, principal = await gateway.register(email, password, name, role_value)
        self._start(token, principal)
        return principal

    async def restore(self, gateway: BackendGateway) -> Principal | None:
        """Pick up a persisted credential on start-up.

        A credential the backend rejects (HTTP 401) is discarded; one that
        could not be checked because of a network failure or a server error
        is kept for the next attempt.
        """
        if self._credentials is None:
            return None
        token = self._credentials.load()
        if not token:
            return None
        self._epoch += 1
        self._token = token
        try:
            return await self.refresh(gateway)
        except BackendError as e:
            if not e.is_auth_failure:
                logger.warning(
                    "Could not verify stored credential (HTTP %d); keeping it",
                    e.status_code,
                )
                return None
            logger.info("Stored credential rejected; logging out")
            self.logout()
            return None
        except TransportError:
            logger.warning("Could not verify stored credential; keeping it")
            return None

    async def refresh(self, gateway: BackendGateway) -> Principal | None:
        """Refetch the principal, e.g. after a subscription change.

        Returns the principal now held by the store. If a login or logout
        happened while the request was in flight the response is discarded.
        """
        if self._token is None:
            return None
        epoch = self._epoch
        principal = await gateway.me()
        if epoch != self._epoch:
            logger.info("Discarding principal refresh from a superseded session")
            return self._principal
        self._replace(principal)
        return principal

    def logout(self) -> None:
        self._epoch += 1
        self._token = None
        if self._credentials is not None:
            self._credentials.clear()
        self._replace(None)
