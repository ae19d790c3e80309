"""Address map loader — which controller lives at which IP.

Controllers get static DHCP leases, so the dnsmasq configuration already
names every one of them::

    dhcp-host=84:f3:eb:12:34:56,porch,10.0.0.31

Each ``dhcp-host`` line yields ``{"porch": "10.0.0.31"}``.
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

_DIRECTIVE = "dhcp-host="


class AddressMapError(Exception):
    """Raised when the address map cannot be built."""


def parse_dnsmasq(text: str) -> dict[str, str]:
    """Return ``{provider_id: ip}`` for every ``dhcp-host`` entry in *text*."""
    clients: dict[str, str] = {}
    for lineno, line in enumerate(text.splitlines(), 1):
        line = line.strip()
        if not line.startswith(_DIRECTIVE):
            continue
        fields = [f.strip() for f in line[len(_DIRECTIVE):].split(",")]
        if len(fields) < 3 or not fields[1] or not fields[2]:
            raise AddressMapError(f"line {lineno}: expected dhcp-host=<mac>,<id>,<ip>: {line!r}")
        provider_id, address = fields[1], fields[2]
        if provider_id in clients:
            logger.warning("line %d: duplicate id %s, keeping %s", lineno, provider_id, address)
        clients[provider_id] = address
    return clients


def load_address_map(path: str | Path) -> dict[str, str]:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise AddressMapError(f"Cannot read address map {path}: {exc}") from exc
    clients = parse_dnsmasq(text)
    logger.info("Loaded %d controller addresses from %s", len(clients), path)
    return clients
