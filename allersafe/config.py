"""TOML configuration loader for the AllerSafe client."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


@dataclass
class ApiConfig:
    base_url: str = "http://localhost:8001"
    timeout: float = 30.0


@dataclass
class SessionConfig:
    token_path: str = "~/.config/allersafe/token.json"


@dataclass
class CheckoutConfig:
    max_attempts: int = 5
    poll_interval: float = 2.0
    origin_url: str = "http://localhost:3000"


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class AllerSafeConfig:
    api: ApiConfig = field(default_factory=ApiConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    checkout: CheckoutConfig = field(default_factory=CheckoutConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(path: str | Path | None = None) -> AllerSafeConfig:
    """Load configuration from a TOML file.

    Falls back to defaults if no path is given or the file doesn't exist.
    The backend and origin URLs can be supplied via environment variables
    when the file leaves them unset.
    """
    raw: dict = {}

    if path is not None:
        p = Path(path).expanduser()
        if p.exists():
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    api = raw.get("api", {})
    ses = raw.get("session", {})
    chk = raw.get("checkout", {})
    log = raw.get("logging", {})

    # Resolve URLs: config file → environment variable → default
    base_url = (
        api.get("base_url", "")
        or os.environ.get("ALLERSAFE_BACKEND_URL", "")
        or ApiConfig.base_url
    )
    origin_url = (
        chk.get("origin_url", "")
        or os.environ.get("ALLERSAFE_ORIGIN_URL", "")
        or CheckoutConfig.origin_url
    )

    return AllerSafeConfig(
        api=ApiConfig(
            base_url=base_url.rstrip("/"),
            timeout=float(api.get("timeout", 30.0)),
        ),
        session=SessionConfig(
            token_path=ses.get("token_path", "~/.config/allersafe/token.json"),
        ),
        checkout=CheckoutConfig(
            max_attempts=int(chk.get("max_attempts", 5)),
            poll_interval=float(chk.get("poll_interval", 2.0)),
            origin_url=origin_url.rstrip("/"),
        ),
        logging=LoggingConfig(
            level=str(log.get("level", "WARNING")).upper(),
        ),
    )
