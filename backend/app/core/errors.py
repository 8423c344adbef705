"""
Gateway error taxonomy.

Every error a client can see is a GatewayError subclass. A single exception
handler in app.main turns them into JSON bodies of the form
    {"error": <error>, ...extra}
so routers and services raise, and never build error responses by hand.
"""

from __future__ import annotations

from typing import Any

from fastapi import status


class GatewayError(Exception):
    """Base class for errors rendered straight to the client."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error: str = "Internal server error"
    headers: dict[str, str] | None = None

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        super().__init__(message or self.error)
        self.message = message
        self.extra = extra

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error}
        if self.message is not None:
            body["message"] = self.message
        body.update(self.extra)
        return body


class ValidationFailed(GatewayError):
    """Request rejected before any upstream call (e.g. unknown model)."""

    status_code = status.HTTP_400_BAD_REQUEST
    error = "Invalid request"


class InvalidModel(ValidationFailed):
    error = "Invalid model"


class NotFound(GatewayError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not found"


class UpstreamFailure(GatewayError):
    """Anything that blew up after the key was accepted."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Internal server error"
