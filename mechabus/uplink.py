"""Outbound uplink to a peer gateway.

The uplink is a websocket this gateway keeps open to a peer hub.  Once the
peer accepts our shared credential the connection is registered with the
local :class:`Hub` as an ordinary session, so it receives every broadcast and
its requests go through the same routing table as a subscriber's.

Reconnects use exponential backoff over a bounded depth counter.  A trust
failure (credential rejected, expired certificate) stops reconnecting for the
rest of the process lifetime.
"""

from __future__ import annotations

import asyncio
import json
import logging
import ssl
import time
from typing import TYPE_CHECKING, Any, Callable

import websockets
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import InvalidStatus

from mechabus.auth import ROLE_PEER
from mechabus.hub import ROLE_UPLINK, Session

if TYPE_CHECKING:
    from mechabus.hub import Hub

logger = logging.getLogger(__name__)

BACKOFF_BASE = 1.0
BACKOFF_MAX_DEPTH = 6
STABLE_MIN_SECONDS = 30.0
REAUTH_MARGIN_SECONDS = 5 * 60

# OpenSSL X509_V_ERR_CERT_HAS_EXPIRED
_CERT_HAS_EXPIRED = 10


class UplinkTrustError(Exception):
    """Raised when the peer can never accept us without operator action."""


class Backoff:
    """Reconnect delay as a function of a bounded depth counter.

    ``delay(depth) = base * 2**depth``.  Each failure bumps the depth by one
    up to *max_depth*; a connection that stayed open for at least the
    stability window of its depth resets it to zero.
    """

    def __init__(
        self,
        base: float = BACKOFF_BASE,
        max_depth: int = BACKOFF_MAX_DEPTH,
        stable_min: float = STABLE_MIN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base = base
        self.max_depth = max_depth
        self.stable_min = stable_min
        self.depth = 0
        self._clock = clock
        self._opened_at: float | None = None

    def delay(self, depth: int | None = None) -> float:
        return self.base * 2 ** (self.depth if depth is None else depth)

    def stability_window(self, depth: int | None = None) -> float:
        return max(self.stable_min, 2 * self.delay(depth))

    def opened(self) -> None:
        """Record that a connection has just been established."""
        self._opened_at = self._clock()

    def next_delay(self) -> float:
        """Record a disconnect or failed attempt and return the wait."""
        if self._opened_at is not None:
            if self._clock() - self._opened_at >= self.stability_window():
                self.depth = 0
            self._opened_at = None
        delay = self.delay()
        self.depth = min(self.depth + 1, self.max_depth)
        return delay


class UplinkSession(Session):
    """The uplink as seen by the local hub."""

    def __init__(self, websocket: Any, client: UplinkClient) -> None:
        super().__init__(websocket, role=ROLE_UPLINK)
        self.client = client

    async def send(self, message: dict) -> None:
        await self.websocket.send(json.dumps(message))

    async def on_reply(self, envelope: dict) -> None:
        await self.client.on_peer_reply(envelope)


class UplinkClient:
    """Maintains one authenticated connection to a peer gateway."""

    def __init__(
        self,
        hub: Hub,
        url: str,
        credential: str,
        backoff: Backoff | None = None,
        reauth_margin: float = REAUTH_MARGIN_SECONDS,
        ssl_context: ssl.SSLContext | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.hub = hub
        self.url = url
        self.credential = credential
        self.backoff = backoff or Backoff()
        self.reauth_margin = reauth_margin
        self._ssl = ssl_context
        self._clock = clock

        self.token: str | None = None
        self.token_expiry: int | None = None
        self._session: UplinkSession | None = None
        self._running = False
        self._disabled = False
        self._task: asyncio.Task | None = None
        self._reauth_task: asyncio.Task | None = None
        hub.uplink = self

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        """Start the reconnect loop in a background task."""
        if self._running or self._disabled:
            return
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._run_loop())

    async def stop(self) -> None:
        """Close the connection and stop reconnecting."""
        self._running = False
        self._cancel_reauth()
        if self._session is not None:
            await self._session.websocket.close()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    @property
    def connected(self) -> bool:
        """``True`` while the peer has accepted our credential."""
        return self._session is not None and self._session.authenticated

    @property
    def disabled(self) -> bool:
        return self._disabled

    # ------------------------------------------------------------------ #
    # Reconnect loop
    # ------------------------------------------------------------------ #

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self._connect_and_listen()
            except UplinkTrustError as exc:
                self._disable(exc)
                break
            except (websockets.WebSocketException, OSError, asyncio.TimeoutError) as exc:
                logger.warning("Uplink to %s lost: %s", self.url, exc)
            except Exception:
                logger.exception("Unexpected uplink error")

            if not self._running:
                break
            delay = self.backoff.next_delay()
            logger.info("Reconnecting uplink in %.0fs (depth %d)", delay, self.backoff.depth)
            await asyncio.sleep(delay)

    async def _connect_and_listen(self) -> None:
        """Single connection lifecycle: connect → auth → relay messages."""
        ws = await self._open()
        session = UplinkSession(ws, self)
        self._session = session
        self.backoff.opened()
        logger.info("Uplink connected to %s", self.url)
        try:
            await session.send({
                "type": "auth",
                "data": {"role": ROLE_PEER, "credential": self.credential},
            })
            async for raw in ws:
                await self.hub.handle_message(session, raw)
            logger.info("Uplink to %s closed by peer", self.url)
        finally:
            self._cancel_reauth()
            self.hub.remove_session(session)
            self._session = None
            await ws.close()

    async def _open(self) -> ClientConnection:
        kwargs: dict[str, Any] = {"ping_interval": 20, "ping_timeout": 10, "close_timeout": 5}
        if self._ssl is not None:
            kwargs["ssl"] = self._ssl
        try:
            return await connect(self.url, **kwargs)
        except InvalidStatus as exc:
            if exc.response.status_code in (401, 403):
                raise UplinkTrustError(
                    f"Peer refused the uplink (HTTP {exc.response.status_code})"
                ) from exc
            raise
        except ssl.SSLCertVerificationError as exc:
            if exc.verify_code == _CERT_HAS_EXPIRED:
                raise UplinkTrustError(f"Peer certificate expired: {exc.verify_message}") from exc
            raise

    def _disable(self, exc: Exception) -> None:
        self._running = False
        self._disabled = True
        logger.critical(
            "UPLINK DISABLED: %s. No further reconnects to %s until restart; "
            "local sessions are unaffected.",
            exc, self.url,
        )

    # ------------------------------------------------------------------ #
    # Handshake and token rotation
    # ------------------------------------------------------------------ #

    async def on_peer_reply(self, envelope: dict) -> None:
        """Handle auth / error / update envelopes sent back by the peer."""
        msg_type = envelope.get("type")
        data = envelope.get("data") or {}
        session = self._session

        if msg_type == "auth" and session is not None:
            self.token = data.get("token")
            self.token_expiry = data.get("expiry")
            first = not session.authenticated
            session.authenticated = True
            session.token_expiry = self.token_expiry
            if first:
                self.hub.add_session(session)
                logger.info("Uplink authenticated with %s", self.url)
            self._schedule_reauth()

        elif msg_type == "error" and isinstance(data, dict) and data.get("code") == 401:
            if session is None or not session.authenticated:
                raise UplinkTrustError("Peer rejected the uplink credential")
            # Rotation refused; start over with the shared credential.
            logger.warning("Uplink token refresh rejected: %s", data.get("error"))
            await session.websocket.close()

        elif msg_type == "error":
            logger.warning("Peer reported error: %s", data)

        else:
            logger.debug("Ignoring %s from peer", msg_type)

    def _schedule_reauth(self) -> None:
        self._cancel_reauth()
        if self.token_expiry is None:
            return
        delay = max(0.0, self.token_expiry - self.reauth_margin - self._clock())
        self._reauth_task = asyncio.get_running_loop().create_task(self._reauth_after(delay))
        logger.debug("Uplink re-auth scheduled in %.0fs", delay)

    async def _reauth_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        session = self._session
        if session is None:
            return
        try:
            await session.send({"type": "reauth", "token": self.token})
        except websockets.ConnectionClosed:
            logger.info("Uplink closed before re-auth could be sent")

    def _cancel_reauth(self) -> None:
        if self._reauth_task is not None:
            self._reauth_task.cancel()
            self._reauth_task = None
