"""Remote switch provider — an HTTP-addressable controller on the LAN.

Controllers answer ``GET /`` with their current state and accept
``GET /?state=<n>`` to change it.  Newer firmware replies with JSON
(``{"on": 1}``); older firmware replies with a text line such as
``light state: 1 4821``.  Both are understood.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from .base import Level, Provider, ProviderKind, ProviderState, ProviderUnavailable

logger = logging.getLogger(__name__)

_TEXT_STATE = re.compile(r"state:\s*(\d+)")


class RemoteSwitch(Provider):
    """Talks to one network-attached switch controller."""

    kind = ProviderKind.REMOTE

    def __init__(
        self,
        provider_id: str,
        address: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ) -> None:
        super().__init__(provider_id)
        self.address = address
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def base_url(self) -> str:
        if self.address.startswith(("http://", "https://")):
            return self.address.rstrip("/")
        return f"http://{self.address}"

    async def get(self) -> ProviderState:
        return await self._request({})

    async def set(self, value: Level) -> ProviderState:
        return await self._request({"state": int(value)})

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _request(self, params: dict[str, Any]) -> ProviderState:
        url = f"{self.base_url}/"
        try:
            response = await self._client.get(url, params=params)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(f"Cannot reach {self.id} at {url}: {exc}") from exc
        level = self._parse(response)
        logger.debug("%s replied %r", self.id, level)
        return ProviderState(self.id, level, {"address": self.address})

    def _parse(self, response: httpx.Response) -> Level:
        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                data = response.json()
            except ValueError as exc:
                raise ProviderUnavailable(f"{self.id} sent invalid JSON") from exc
            value = data.get("on", data.get("state")) if isinstance(data, dict) else None
            if isinstance(value, (bool, int)):
                return value
            if isinstance(value, str) and value.isdigit():
                return int(value)
            raise ProviderUnavailable(f"{self.id} reply has no state: {data!r}")

        match = _TEXT_STATE.search(response.text)
        if match is None:
            raise ProviderUnavailable(f"{self.id} reply has no state: {response.text[:80]!r}")
        return int(match.group(1))
