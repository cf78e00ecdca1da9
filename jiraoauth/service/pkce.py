"""State and PKCE (RFC 7636) primitives.

All randomness comes from ``secrets``; encodings are unpadded base64url so
the values drop into query strings without escaping.
"""

from __future__ import annotations

import base64
import hashlib
import re
import secrets

STATE_BYTES = 32
VERIFIER_BYTES = 32

# RFC 7636 section 4.1: 43-128 characters from the unreserved set
_VERIFIER_RE = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def new_state() -> str:
    """Opaque, URL-safe correlator for one authorization flow."""
    return _b64url(secrets.token_bytes(STATE_BYTES))


def new_code_verifier() -> str:
    """PKCE secret; only ever sent to the token endpoint."""
    return _b64url(secrets.token_bytes(VERIFIER_BYTES))


def challenge_for(verifier: str) -> str:
    """S256 code challenge: BASE64URL(SHA256(verifier)) without padding."""
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def is_valid_verifier(value: str) -> bool:
    return bool(value) and bool(_VERIFIER_RE.match(value))


__all__ = [
    "STATE_BYTES",
    "VERIFIER_BYTES",
    "new_state",
    "new_code_verifier",
    "challenge_for",
    "is_valid_verifier",
]
