"""Gateway error taxonomy."""

from __future__ import annotations


class GatewayError(Exception):
    """Base error carrying the HTTP status returned to the caller."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class Unauthorized(GatewayError):
    """Missing, unknown, or disabled gateway API key."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class InvalidRequest(GatewayError):
    """Inbound request cannot be translated (e.g. no user message)."""

    status_code = 400


class InvalidConfiguration(GatewayError):
    """Application config names an interaction mode the backend does not have."""

    status_code = 500


class UpstreamError(GatewayError):
    """Non-2xx response or transport failure talking to the backend."""

    status_code = 500
