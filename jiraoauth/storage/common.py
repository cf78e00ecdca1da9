"""Contract and record codec shared by every session backend."""

from __future__ import annotations

import json
from typing import List, Optional, Protocol

from jiraoauth.service.pkce import is_valid_verifier
from jiraoauth.storage.models import AuthSession


class SessionBackend(Protocol):
    """One tier of the session store.

    Backends raise ``BackendError`` when their medium fails; a missing key is
    not a failure and yields ``None`` / ``False``.
    """

    name: str

    async def put(self, session: AuthSession, ttl_seconds: int) -> None: ...

    async def get(self, state: str) -> Optional[AuthSession]: ...

    async def delete(self, state: str) -> bool: ...

    async def list(self) -> List[AuthSession]: ...

    async def clear(self) -> int: ...


def encode_session(session: AuthSession) -> str:
    return json.dumps(session.to_record(), separators=(",", ":"))


def decode_session(raw: str | bytes) -> AuthSession:
    """Parse a stored record.

    Raises ValueError (including json.JSONDecodeError) on corrupt data.
    """
    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("session record must be a JSON object")
        session = AuthSession.from_record(data)
    except (KeyError, TypeError) as exc:
        raise ValueError(f"malformed session record: {exc}") from exc
    if not is_valid_verifier(session.code_verifier):
        raise ValueError("session record has a malformed code verifier")
    return session


__all__ = ["SessionBackend", "encode_session", "decode_session"]
