"""Provider registry for the Mechabus gateway.

Usage::

    from mechabus.providers import build_registry
    registry = build_registry({"porch": "10.0.0.31"}, {"pump": GPIOLine(17)})
    provider = registry.resolve("porch")
"""

from __future__ import annotations

import logging
from typing import Iterator, Mapping

import httpx

from mechabus.errors import NotFound

from .base import (
    Level,
    Provider,
    ProviderError,
    ProviderFault,
    ProviderKind,
    ProviderState,
    ProviderUnavailable,
)
from .local import GPIOLine, LocalActuator, OutputLine
from .remote import RemoteSwitch
from .simulated import SimulatedSwitch

__all__ = [
    "GPIOLine",
    "Level",
    "LocalActuator",
    "OutputLine",
    "Provider",
    "ProviderError",
    "ProviderFault",
    "ProviderKind",
    "ProviderRegistry",
    "ProviderState",
    "ProviderUnavailable",
    "RemoteSwitch",
    "SimulatedSwitch",
    "build_registry",
]

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Immutable lookup table from provider id to backend."""

    def __init__(
        self,
        providers: list[Provider],
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        table: dict[str, Provider] = {}
        for provider in providers:
            if provider.id in table:
                raise ValueError(f"Duplicate provider id '{provider.id}'")
            table[provider.id] = provider
        self._providers = table
        self._http_client = http_client

    def resolve(self, provider_id: str) -> Provider:
        """Return the provider for *provider_id* or raise :class:`NotFound`."""
        provider = self._providers.get(provider_id)
        if provider is None:
            raise NotFound(f"Provider '{provider_id}' not found", provider_id)
        return provider

    def ids(self) -> list[str]:
        return list(self._providers)

    def addresses(self) -> list[str]:
        """Network addresses of every remote provider."""
        return [
            p.address for p in self._providers.values()
            if p.kind is ProviderKind.REMOTE and getattr(p, "address", "")
        ]

    def find_by_address(self, address: str) -> Provider | None:
        for provider in self._providers.values():
            if getattr(provider, "address", None) == address:
                return provider
        return None

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers

    def __iter__(self) -> Iterator[Provider]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)

    async def aclose(self) -> None:
        for provider in self._providers.values():
            try:
                await provider.aclose()
            except Exception:
                logger.exception("Failed to close provider %s", provider.id)
        if self._http_client is not None:
            await self._http_client.aclose()


def build_registry(
    addresses: Mapping[str, str],
    local_lines: Mapping[str, OutputLine] | None = None,
    simulate: bool = False,
    timeout: float = 5.0,
) -> ProviderRegistry:
    """Build the registry from the address map and the local output lines.

    With *simulate* set, remote providers are replaced by
    :class:`SimulatedSwitch` instances.
    """
    providers: list[Provider] = []
    client = None if simulate or not addresses else httpx.AsyncClient(timeout=timeout)
    for provider_id, address in addresses.items():
        if simulate:
            providers.append(SimulatedSwitch(provider_id, address))
        else:
            providers.append(RemoteSwitch(provider_id, address, client=client))
    for provider_id, line in (local_lines or {}).items():
        providers.append(LocalActuator(provider_id, line))

    registry = ProviderRegistry(providers, http_client=client)
    logger.info(
        "Provider registry built: %d remote, %d local%s",
        len(addresses), len(local_lines or {}), " (simulated)" if simulate else "",
    )
    return registry
