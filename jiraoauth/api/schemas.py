from __future__ import annotations

from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

_VALID_ERROR_CODES = {
    "invalid_state",
    "token_exchange_failed",
    "invalid_token_response",
    "store_unavailable",
    "configuration_error",
    "validation_error",
    "server_error",
}


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable machine-readable error kind")
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {sorted(_VALID_ERROR_CODES)}"
            )
        return value


class Envelope(BaseModel):
    """Response envelope handed to the tool-invocation layer."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class TokenResponse(BaseModel):
    """Shape of a successful token endpoint response (RFC 6749 section 5.1)."""

    model_config = ConfigDict(extra="allow")

    access_token: str = Field(..., min_length=1)
    token_type: Optional[str] = None
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None
    id_token: Optional[str] = None

    @field_validator("expires_in", mode="before")
    @classmethod
    def _lenient_expires_in(cls, value: Any) -> Optional[int]:
        # Unusable lifetimes fall back to the default instead of failing the exchange
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError):
            return None


class ProtectedResourceMetadata(BaseModel):
    """RFC 9728 protected resource metadata document."""

    model_config = ConfigDict(extra="allow")

    resource: str
    authorization_servers: List[str] = Field(..., min_length=1)
    scopes_supported: List[str] = Field(default_factory=list)
    bearer_methods_supported: List[str] = Field(default_factory=lambda: ["header"])
    resource_documentation: Optional[str] = None


class AuthorizationServerMetadata(BaseModel):
    """RFC 8414 authorization server metadata document."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    revocation_endpoint: Optional[str] = None
    response_types_supported: List[str] = Field(default_factory=lambda: ["code"])
    grant_types_supported: List[str] = Field(
        default_factory=lambda: ["authorization_code", "refresh_token"]
    )
    code_challenge_methods_supported: List[str] = Field(default_factory=lambda: ["S256"])
    scopes_supported: List[str] = Field(default_factory=list)
    token_endpoint_auth_methods_supported: List[str] = Field(default_factory=list)
