"""Session authentication for the Mechabus gateway.

JWT bearer tokens with bcrypt password hashing.  Tokens are stateless: any
session presenting a valid, unexpired token signed with the gateway secret is
authorized.  Peered gateways share the signing secret, so a token issued by
one hub is honoured by the other.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable

import bcrypt
import jwt

from mechabus.errors import Unauthorized

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
TOKEN_TTL_SECONDS = 30 * 60
BCRYPT_MAX_BYTES = 72

ROLE_SUBSCRIBER = "subscriber"
ROLE_PEER = "peer"


# ── Password helpers ──────────────────────────────────────────────

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    secret = password.encode()
    if len(secret) > BCRYPT_MAX_BYTES:
        logger.warning("Rejected password longer than %d bytes", BCRYPT_MAX_BYTES)
        return False
    try:
        return bcrypt.checkpw(secret, hashed.encode())
    except ValueError:
        logger.error("Configured password hash is not a valid bcrypt hash")
        return False


# ── Authenticator ─────────────────────────────────────────────────

class Authenticator:
    """Verifies credentials and issues / validates bearer tokens."""

    def __init__(
        self,
        secret: str,
        password_hashes: Iterable[str] = (),
        peer_credential_hashes: Iterable[str] = (),
        ttl: int = TOKEN_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secret = secret
        self._password_hashes = list(password_hashes)
        self._peer_hashes = list(peer_credential_hashes)
        self.ttl = ttl
        self._clock = clock

    def authenticate(self, password: str | None) -> dict:
        """Check a subscriber password and return a fresh token."""
        if isinstance(password, str) and password and any(
            verify_password(password, h) for h in self._password_hashes
        ):
            return self.issue(ROLE_SUBSCRIBER)
        logger.warning("Rejected subscriber credential")
        raise Unauthorized("Invalid credentials")

    def authenticate_peer(self, credential: str | None) -> dict:
        """Check the shared credential a peer gateway presents on its uplink."""
        if isinstance(credential, str) and credential and any(
            verify_password(credential, h) for h in self._peer_hashes
        ):
            return self.issue(ROLE_PEER)
        logger.warning("Rejected peer credential")
        raise Unauthorized("Invalid peer credential")

    def reauthenticate(self, claims: dict) -> dict:
        """Rotate the token of an already-authorized session."""
        return self.issue(claims.get("role", ROLE_SUBSCRIBER))

    def issue(self, role: str) -> dict:
        now = int(self._clock())
        expiry = now + self.ttl
        payload = {"role": role, "iat": now, "exp": expiry}
        token = jwt.encode(payload, self._secret, algorithm=JWT_ALGORITHM)
        return {"token": token, "expiry": expiry, "role": role}

    def verify(self, token: str | None) -> dict:
        """Decode *token* or raise :class:`Unauthorized`."""
        if not token or not isinstance(token, str):
            raise Unauthorized("Not authenticated")
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                options={"verify_exp": False, "verify_iat": False, "require": ["exp"]},
            )
        except jwt.InvalidTokenError:
            raise Unauthorized("Invalid token")
        # Expiry is checked here so the clock stays injectable.
        if claims["exp"] <= self._clock():
            raise Unauthorized("Token expired")
        return claims
