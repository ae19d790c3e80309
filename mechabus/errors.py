"""Error taxonomy for the Mechabus gateway.

Every error that can reach a client carries the status code sent back in the
``error`` envelope.  Backends never raise these directly; they raise
:class:`mechabus.providers.base.ProviderError` and the dispatcher translates.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base error for request-level failures."""

    code = 500

    def __init__(self, message: str, provider_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider_id = provider_id

    def to_dict(self) -> dict:
        data = {"code": self.code, "error": self.message}
        if self.provider_id is not None:
            data["id"] = self.provider_id
        return data


class BadRequest(GatewayError):
    """Malformed envelope or intent."""

    code = 400


class Unauthorized(GatewayError):
    """Missing, invalid or expired token, or a bad credential."""

    code = 401


class NotFound(GatewayError):
    """Unknown provider id."""

    code = 404


class InternalFailure(GatewayError):
    """A locally wired actuator failed."""

    code = 500


class Unreachable(GatewayError):
    """A remote provider could not be reached."""

    code = 502
