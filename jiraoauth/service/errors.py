from __future__ import annotations

from typing import Optional

RESTART_INSTRUCTION = "Please restart the authentication flow."


class ServiceError(Exception):
    """Base class for OAuth engine failures with stable error codes.

    Each exception class defines an HTTP-style status_code, a machine-readable
    error_code and a human-readable instruction. The codes are:
    - invalid_state (400)
    - token_exchange_failed (502)
    - invalid_token_response (502)
    - store_unavailable (503)
    - configuration_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"
    instruction: str = RESTART_INSTRUCTION

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}

    @property
    def user_message(self) -> str:
        """Message safe to show to an end user."""
        return f"{self.message} {self.instruction}".strip()


class InvalidStateError(ServiceError):
    """The OAuth state is unknown, expired, or already consumed (400).

    The three causes are deliberately reported identically.
    """

    status_code = 400
    error_code = "invalid_state"

    def __init__(self, message: str = "Invalid or expired OAuth state.", **kwargs) -> None:
        super().__init__(message, **kwargs)


class SessionExpiredError(InvalidStateError):
    """The OAuth session outlived its TTL.

    Shares code and message with InvalidStateError; only internal callers
    and logs can tell the difference.
    """

    pass


class TokenExchangeFailedError(ServiceError):
    """The token endpoint rejected the request or could not be reached (502)."""

    status_code = 502
    error_code = "token_exchange_failed"

    def __init__(
        self,
        message: str = "Token exchange with the identity provider failed.",
        *,
        upstream_status: Optional[int] = None,
        upstream_body: Optional[str] = None,
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)
        self.upstream_status = upstream_status
        # Diagnostic only; never copied into user-facing output
        self.upstream_body = upstream_body


class InvalidTokenResponseError(ServiceError):
    """The token endpoint answered 2xx without a usable access token (502)."""

    status_code = 502
    error_code = "invalid_token_response"

    def __init__(
        self, message: str = "The identity provider returned an invalid token response.", **kwargs
    ) -> None:
        super().__init__(message, **kwargs)


class StoreUnavailableError(ServiceError):
    """Every session backend failed to persist a session (503)."""

    status_code = 503
    error_code = "store_unavailable"

    def __init__(
        self, message: str = "Authentication sessions cannot be stored right now.", **kwargs
    ) -> None:
        super().__init__(message, **kwargs)


class ConfigurationError(ServiceError):
    """Required OAuth configuration is missing or malformed (500)."""

    status_code = 500
    error_code = "configuration_error"
    instruction = "Contact the server operator."


__all__ = [
    "RESTART_INSTRUCTION",
    "ServiceError",
    "InvalidStateError",
    "SessionExpiredError",
    "TokenExchangeFailedError",
    "InvalidTokenResponseError",
    "StoreUnavailableError",
    "ConfigurationError",
]
