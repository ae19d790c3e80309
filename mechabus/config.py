"""Configuration for the Mechabus gateway."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

# HS256 wants a key of at least 32 bytes.
DEFAULT_JWT_SECRET = "mechabus-insecure-default-secret-change-me"

_ENV_PREFIX = "MECHABUS_"


@dataclass
class GatewayConfig:
    """Gateway configuration — loaded from config.json, overridden by env."""

    host: str = "0.0.0.0"
    port: int = 3998

    # Controller address map (dnsmasq static leases)
    address_file: str = "/etc/dnsmasq.conf"
    simulate: bool = False  # replace remote controllers with in-memory switches

    # Auth
    jwt_secret: str = DEFAULT_JWT_SECRET
    token_ttl: int = 1800
    password_hashes: list[str] = field(default_factory=list)
    peer_credential_hashes: list[str] = field(default_factory=list)

    # Uplink to a peer gateway (disabled when url is empty)
    uplink_url: str = ""
    uplink_credential: str = ""

    # Local actuators: id → BCM pin
    local_actuators: dict[str, int] = field(default_factory=dict)
    # Safety timers: id → max continuous on-time in seconds
    safety_limits: dict[str, float] = field(default_factory=dict)

    cors_origins: list[str] = field(default_factory=list)

    @classmethod
    def load(cls, path: str | Path) -> GatewayConfig:
        path = Path(path)
        if path.exists():
            with open(path) as f:
                data = json.load(f)
            known = {k for k in cls.__dataclass_fields__}
            filtered = {k: v for k, v in data.items() if k in known}
            return cls(**filtered)
        logger.warning("Config not found at %s, using defaults", path)
        return cls()

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(asdict(self), f, indent=2)

    def apply_env(self, environ: dict[str, str] | None = None) -> GatewayConfig:
        """Overlay ``MECHABUS_*`` environment variables onto this config."""
        env = os.environ if environ is None else environ
        for name in self.__dataclass_fields__:
            raw = env.get(_ENV_PREFIX + name.upper())
            if raw is None:
                continue
            current = getattr(self, name)
            if isinstance(current, bool):
                value = raw.strip().lower() in ("1", "true", "yes", "on")
            elif isinstance(current, int):
                value = int(raw)
            elif isinstance(current, list):
                value = [item.strip() for item in raw.split(",") if item.strip()]
            elif isinstance(current, dict):
                value = json.loads(raw)
            else:
                value = raw
            setattr(self, name, value)
        if self.jwt_secret == DEFAULT_JWT_SECRET:
            logger.warning("Using the default JWT secret — set MECHABUS_JWT_SECRET")
        return self
