from __future__ import annotations

from typing import Any, Dict, Optional

from jiraoauth.api.schemas import _VALID_ERROR_CODES, Envelope, ErrorBody
from jiraoauth.logging import get_logger
from jiraoauth.service.errors import ServiceError, TokenExchangeFailedError

logger = get_logger(__name__)

# Detail keys that may be shown to callers; everything else stays in logs
_SAFE_DETAIL_KEYS = frozenset({"upstream_status", "missing", "field"})


def _safe_details(exc: ServiceError) -> Optional[Dict[str, Any]]:
    details = {k: v for k, v in exc.detail.items() if k in _SAFE_DETAIL_KEYS}
    return details or None


def error_envelope(exc: BaseException, *, request_id: Optional[str] = None) -> Envelope:
    """Convert any failure into the stable error envelope.

    Upstream response bodies are never included, and unknown exceptions
    collapse to a generic server error.
    """
    if isinstance(exc, ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "oauth_service_error",
            status_code=exc.status_code,
            error_code=exc.error_code,
            error_type=type(exc).__name__,
            upstream_status=exc.upstream_status
            if isinstance(exc, TokenExchangeFailedError)
            else None,
        )
        code = exc.error_code if exc.error_code in _VALID_ERROR_CODES else "server_error"
        body = ErrorBody(code=code, message=exc.user_message, details=_safe_details(exc))
    else:
        logger.error("oauth_unexpected_error", error_type=type(exc).__name__, error=str(exc))
        body = ErrorBody(
            code="server_error",
            message="An unexpected error occurred. Please restart the authentication flow.",
        )
    envelope = Envelope(status="error", error=body)
    if request_id:
        envelope.request_id = request_id
    return envelope


def ok_envelope(data: Any, *, request_id: Optional[str] = None) -> Envelope:
    envelope = Envelope(status="ok", data=data)
    if request_id:
        envelope.request_id = request_id
    return envelope
