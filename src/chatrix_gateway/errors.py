from __future__ import annotations


class GatewayError(Exception):
    """Base error for gateway failures."""


class ConfigurationError(GatewayError):
    pass


class InvalidRequestError(GatewayError):
    """Client input rejected before any backend call."""


class AuthenticationError(GatewayError):
    pass


class RateLimitError(GatewayError):
    def __init__(self, message: str = "Backend throttled the request"):
        super().__init__(message)


class BackendInvocationError(GatewayError):
    """Backend streaming call failed (connection, credentials, model errors)."""
