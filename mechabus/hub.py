"""Gateway hub — sessions, request routing and broadcast fan-out.

Protocol (JSON envelopes over a websocket):

  Session → Hub:
    auth, reauth, get, set, refresh

  Hub → Session:
    auth    (private, reply to auth/reauth)
    error   (private)
    update  (broadcast to every session, including the uplink)

All state is shared: a successful get or set is broadcast, never answered
privately.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping

from fastapi import WebSocket, WebSocketDisconnect

from mechabus.auth import ROLE_PEER, ROLE_SUBSCRIBER, Authenticator
from mechabus.dispatcher import Dispatcher, Intent
from mechabus.errors import BadRequest, GatewayError, InternalFailure, NotFound
from mechabus.providers import Level, ProviderRegistry, ProviderState
from mechabus.safety_timer import SafetyTimerController

if TYPE_CHECKING:
    from mechabus.uplink import UplinkClient

logger = logging.getLogger(__name__)

ROLE_UPLINK = "uplink"
RESPONSE_TYPES = frozenset({"auth", "update", "error"})

Handler = Callable[["Session", dict], Awaitable[None]]


class Session:
    """Tracks one connected subscriber or peer and its websocket."""

    def __init__(self, websocket: Any, role: str = ROLE_SUBSCRIBER) -> None:
        self.websocket = websocket
        self.role = role
        self.session_id = f"sess-{uuid.uuid4().hex[:8]}"
        self.connected_at = time.time()
        self.authenticated = False
        self.token_expiry: int | None = None

    @property
    def is_peer(self) -> bool:
        return self.role in (ROLE_PEER, ROLE_UPLINK)

    async def send(self, message: dict) -> None:
        """Send a JSON message to the session."""
        await self.websocket.send_json(message)

    async def on_reply(self, envelope: dict) -> None:
        """Consume a response envelope sent by a peer gateway."""
        logger.debug("Dropping %s from peer %s", envelope.get("type"), self.session_id)

    def __repr__(self) -> str:
        return f"<Session {self.session_id} {self.role}>"


class Hub:
    """Owns the live session set and routes every inbound message."""

    def __init__(
        self,
        registry: ProviderRegistry,
        authenticator: Authenticator,
        safety_limits: Mapping[str, float] | None = None,
    ) -> None:
        self.registry = registry
        self.auth = authenticator
        self.dispatcher = Dispatcher(registry)
        self.safety = SafetyTimerController(
            safety_limits or {},
            force_off=self._force_off,
            announce=self.broadcast_update,
        )
        self.dispatcher.observer = self.safety.observe
        self.sessions: set[Session] = set()
        self.uplink: UplinkClient | None = None
        self._tasks: set[asyncio.Task] = set()
        self._routes: dict[str, Handler] = {
            "auth": self._handle_auth,
            "reauth": self._handle_reauth,
            "get": self._handle_get,
            "set": self._handle_set,
            "refresh": self._handle_refresh,
        }

    # ── Sessions ──────────────────────────────────────────────────

    def add_session(self, session: Session) -> None:
        self.sessions.add(session)
        logger.info("Session connected: %s (%d active)", session, len(self.sessions))

    def remove_session(self, session: Session) -> None:
        if session in self.sessions:
            self.sessions.discard(session)
            logger.info("Session closed: %s (%d active)", session, len(self.sessions))

    async def serve(self, websocket: WebSocket) -> None:
        """Handle one subscriber websocket for its whole lifetime.

        Mount it in FastAPI via:
            app.add_api_websocket_route("/ws", hub.serve)
        """
        await websocket.accept()
        session = Session(websocket)
        self.add_session(session)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")
                if raw is not None:
                    await self.handle_message(session, raw)
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("Error in websocket for %s", session)
        finally:
            self.remove_session(session)

    # ── Routing ───────────────────────────────────────────────────

    async def handle_message(self, session: Session, raw: str | bytes | dict) -> None:
        """Decode and route one inbound envelope from *session*."""
        try:
            envelope = self._decode(raw)
        except BadRequest as exc:
            await self._reply_error(session, exc)
            return

        msg_type = envelope["type"]
        if session.is_peer and msg_type in RESPONSE_TYPES:
            await session.on_reply(envelope)
            return

        try:
            handler = self._routes.get(msg_type)
            if handler is None:
                raise BadRequest(f"Unknown message type '{msg_type}'")
            await handler(session, envelope)
        except GatewayError as exc:
            await self._reply_error(session, exc)
        except Exception:
            logger.exception("Handler error for %s from %s", msg_type, session)
            await self._reply_error(session, InternalFailure("Internal error"))

    @staticmethod
    def _decode(raw: str | bytes | dict) -> dict:
        if isinstance(raw, dict):
            envelope = raw
        else:
            try:
                envelope = json.loads(raw)
            except ValueError:
                raise BadRequest("Malformed JSON")
        if not isinstance(envelope, dict) or not isinstance(envelope.get("type"), str):
            raise BadRequest("Missing message type")
        data = envelope.get("data")
        if data is None:
            envelope["data"] = {}
        elif not isinstance(data, (dict, list)):
            raise BadRequest("Message data must be an object")
        return envelope

    def _authorize(self, envelope: dict) -> dict:
        return self.auth.verify(envelope.get("token"))

    @staticmethod
    def _provider_id(envelope: dict) -> str:
        data = envelope["data"]
        provider_id = data.get("id") if isinstance(data, dict) else None
        if not isinstance(provider_id, str) or not provider_id:
            raise BadRequest("Missing provider id")
        return provider_id

    # ── Handlers ──────────────────────────────────────────────────

    async def _handle_auth(self, session: Session, envelope: dict) -> None:
        data = envelope["data"] if isinstance(envelope["data"], dict) else {}
        session.authenticated = False
        # bcrypt blocks for a noticeable time; run it in a worker thread.
        if data.get("role") == ROLE_PEER:
            result = await asyncio.to_thread(self.auth.authenticate_peer, data.get("credential"))
            session.role = ROLE_PEER
        else:
            result = await asyncio.to_thread(self.auth.authenticate, data.get("password"))
        session.authenticated = True
        session.token_expiry = result["expiry"]
        await session.send({"type": "auth", "data": result})

    async def _handle_reauth(self, session: Session, envelope: dict) -> None:
        claims = self._authorize(envelope)
        result = self.auth.reauthenticate(claims)
        session.authenticated = True
        session.token_expiry = result["expiry"]
        await session.send({"type": "auth", "data": result})

    async def _handle_get(self, session: Session, envelope: dict) -> None:
        self._authorize(envelope)
        state = await self.dispatcher.get_state(self._provider_id(envelope))
        await self.broadcast_update(state)

    async def _handle_set(self, session: Session, envelope: dict) -> None:
        self._authorize(envelope)
        provider_id = self._provider_id(envelope)
        # Unknown ids answer 404 before the intent is looked at.
        self.registry.resolve(provider_id)
        intent = Intent.from_data(envelope["data"])
        state = await self.dispatcher.set_state(provider_id, intent)
        await self.broadcast_update(state)

    async def _handle_refresh(self, session: Session, envelope: dict) -> None:
        self._authorize(envelope)
        self.refresh()

    # ── Fan-out ───────────────────────────────────────────────────

    async def broadcast(self, message: dict) -> None:
        """Send *message* to every session, dropping the ones that fail."""
        dead = []
        for session in list(self.sessions):
            try:
                await session.send(message)
            except Exception as exc:
                logger.warning("Send to %s failed: %s", session, exc)
                dead.append(session)
        for session in dead:
            self.remove_session(session)

    async def broadcast_update(self, *states: ProviderState) -> None:
        await self.broadcast({"type": "update", "data": [s.to_dict() for s in states]})

    async def _reply_error(self, session: Session, exc: GatewayError) -> None:
        try:
            await session.send({"type": "error", "data": exc.to_dict()})
        except Exception as send_exc:
            logger.warning("Could not send error to %s: %s", session, send_exc)

    def refresh(self) -> list[asyncio.Task]:
        """Re-read every provider, broadcasting each result on its own.

        One task per provider; a slow or unreachable provider never holds
        up the others and its failure is not broadcast.
        """
        tasks = []
        for provider_id in self.registry.ids():
            task = asyncio.get_running_loop().create_task(self._refresh_one(provider_id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            tasks.append(task)
        return tasks

    async def _refresh_one(self, provider_id: str) -> None:
        try:
            state = await self.dispatcher.get_state(provider_id)
        except GatewayError as exc:
            logger.debug("Refresh of %s failed: %s", provider_id, exc.message)
            return
        await self.broadcast_update(state)

    async def notify(self, provider_id: str, on: Level, **extra: Any) -> ProviderState:
        """Broadcast an unsolicited state report from a controller.

        Equivalent to a successful set: the safety timer observes it and
        every session receives the update.
        """
        if provider_id not in self.registry:
            raise NotFound(f"Provider '{provider_id}' not found", provider_id)
        state = ProviderState(provider_id, on, extra)
        self.safety.observe(state)
        await self.broadcast_update(state)
        return state

    async def notify_from(self, address: str, on: Level) -> ProviderState:
        """Like :meth:`notify`, identifying the provider by sender address."""
        provider = self.registry.find_by_address(address)
        if provider is None:
            raise NotFound(f"No provider at {address}")
        return await self.notify(provider.id, on)

    async def _force_off(self, provider_id: str) -> ProviderState:
        return await self.dispatcher.set_state(provider_id, Intent(value=False), notify=False)

    # ── Lifecycle ─────────────────────────────────────────────────

    async def close(self) -> None:
        if self.uplink is not None:
            await self.uplink.stop()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.safety.close()
        await self.registry.aclose()
