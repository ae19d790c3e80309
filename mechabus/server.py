"""Mechabus gateway — FastAPI application.

Exposes:
  WS   /ws        — subscriber protocol (auth / get / set / refresh, broadcasts)
  POST /          — legacy form command endpoint (id, state | action=toggle)
  POST /notify    — unsolicited state report from a paired controller
  GET  /health    — liveness check

Start with::

    python -m mechabus --config /etc/mechabus/config.json
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Form, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from mechabus import __version__
from mechabus.addresses import load_address_map
from mechabus.auth import Authenticator
from mechabus.config import GatewayConfig
from mechabus.dispatcher import Intent
from mechabus.errors import BadRequest, GatewayError
from mechabus.hub import Hub
from mechabus.providers import GPIOLine, ProviderRegistry, build_registry
from mechabus.uplink import UplinkClient

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


class NotifyRequest(BaseModel):
    on: bool | int | None = None
    state: int | None = None


def _uplink_status(uplink: UplinkClient | None) -> str:
    if uplink is None:
        return "none"
    if uplink.disabled:
        return "disabled"
    return "connected" if uplink.connected else "down"


def build_hub(config: GatewayConfig, registry: ProviderRegistry | None = None) -> Hub:
    """Assemble the hub (and uplink, if configured) from *config*."""
    if registry is None:
        addresses = load_address_map(config.address_file)
        lines = {pid: GPIOLine(pin) for pid, pin in config.local_actuators.items()}
        registry = build_registry(addresses, lines, simulate=config.simulate)

    authenticator = Authenticator(
        config.jwt_secret,
        password_hashes=config.password_hashes,
        peer_credential_hashes=config.peer_credential_hashes,
        ttl=config.token_ttl,
    )
    hub = Hub(registry, authenticator, safety_limits=config.safety_limits)
    if config.uplink_url:
        UplinkClient(hub, config.uplink_url, config.uplink_credential)
    return hub


def create_app(config: GatewayConfig, registry: ProviderRegistry | None = None) -> FastAPI:
    hub = build_hub(config, registry)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if hub.uplink is not None:
            await hub.uplink.start()
        logger.info("Mechabus gateway ready: %d providers", len(hub.registry))
        try:
            yield
        finally:
            await hub.close()

    app = FastAPI(title="Mechabus", version=__version__, lifespan=lifespan)
    app.state.hub = hub
    app.state.config = config

    origins = list(config.cors_origins) + [f"http://{a}" for a in hub.registry.addresses()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.add_api_websocket_route("/ws", hub.serve)

    async def require_token(
        creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    ) -> dict:
        """Dependency that ensures the caller has a valid bearer token."""
        if creds is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
        try:
            return hub.auth.verify(creds.credentials)
        except GatewayError as exc:
            raise HTTPException(status_code=exc.code, detail=exc.message)

    @app.exception_handler(GatewayError)
    async def _gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        return JSONResponse(status_code=exc.code, content=exc.to_dict())

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "providers": len(hub.registry),
            "sessions": len(hub.sessions),
            "uplink": _uplink_status(hub.uplink),
            "armed": sorted(hub.safety.pending()),
        }

    @app.post("/")
    async def command(
        id: str = Form(...),
        state: int | None = Form(None),
        action: str | None = Form(None),
        _claims: dict = Depends(require_token),
    ) -> dict[str, Any]:
        if action == "toggle":
            intent = Intent(toggle=True)
        elif state is not None:
            intent = Intent(value=state)
        else:
            # Unknown ids answer 404 before a malformed command answers 400.
            hub.registry.resolve(id)
            raise BadRequest("Invalid request", id)
        result = await hub.dispatcher.set_state(id, intent)
        await hub.broadcast_update(result)
        return result.to_dict()

    @app.post("/notify")
    async def notify(body: NotifyRequest, request: Request) -> dict[str, Any]:
        value = body.on if body.on is not None else body.state
        if value is None:
            raise BadRequest("Missing state")
        sender = request.client.host if request.client else ""
        result = await hub.notify_from(sender, value)
        return result.to_dict()

    return app
