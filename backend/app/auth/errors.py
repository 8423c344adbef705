"""Auth-specific errors.

Missing credentials and rejected credentials are kept apart even though both
surface as 401: the body tells the caller which one happened. Neither writes
a usage row.
"""

from fastapi import status

from app.core.errors import GatewayError

_BEARER = {"WWW-Authenticate": "Bearer"}


class AuthenticationMissing(GatewayError):
    """No Authorization header, or not a Bearer credential."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error = "API key required"
    headers = _BEARER


class AuthenticationInvalid(GatewayError):
    """Token is unknown or belongs to a disabled key."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Invalid API key"
    headers = _BEARER


class SessionRequired(GatewayError):
    """Dashboard call without a valid identity-provider session."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Unauthorized"
