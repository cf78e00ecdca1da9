from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

DEFAULT_EXPIRES_IN_SECONDS = 3600


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        dt = raw
    elif isinstance(raw, (int, float)):
        dt = datetime.fromtimestamp(raw, tz=timezone.utc)
    else:
        dt = datetime.fromisoformat(str(raw))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class AuthSession:
    """Pending authorization flow, keyed by its state value.

    Created once by the begin step and only ever deleted afterwards.
    """

    state: str
    code_verifier: str
    redirect_uri: str
    created_at: datetime = field(default_factory=utcnow)
    user_hint: Optional[str] = None

    def age(self, now: Optional[datetime] = None) -> timedelta:
        return (now or utcnow()) - self.created_at

    def is_expired(self, ttl_seconds: int, now: Optional[datetime] = None) -> bool:
        return self.age(now) > timedelta(seconds=ttl_seconds)

    def to_record(self) -> Dict[str, Any]:
        """JSON-safe record written to durable backends."""
        return {
            "state": self.state,
            "code_verifier": self.code_verifier,
            "redirect_uri": self.redirect_uri,
            "created_at": self.created_at.astimezone(timezone.utc).isoformat(),
            "user_hint": self.user_hint,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "AuthSession":
        """Rebuild a session from a stored record; extra keys are ignored.

        Raises KeyError/ValueError/TypeError on malformed records.
        """
        return cls(
            state=str(record["state"]),
            code_verifier=str(record["code_verifier"]),
            redirect_uri=str(record["redirect_uri"]),
            created_at=_parse_datetime(record["created_at"]),
            user_hint=record.get("user_hint"),
        )


@dataclass
class TokenRecord:
    """Tokens returned by the provider; owned by the caller, never persisted here."""

    access_token: str
    token_type: str = "Bearer"
    scope: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    id_token: Optional[str] = None

    @classmethod
    def from_token_response(
        cls, payload: Dict[str, Any], *, now: Optional[datetime] = None
    ) -> "TokenRecord":
        issued = now or utcnow()
        expires_in = payload.get("expires_in")
        try:
            seconds = int(expires_in) if expires_in is not None else DEFAULT_EXPIRES_IN_SECONDS
        except (TypeError, ValueError):
            seconds = DEFAULT_EXPIRES_IN_SECONDS
        return cls(
            access_token=payload["access_token"],
            token_type=payload.get("token_type") or "Bearer",
            scope=payload.get("scope"),
            refresh_token=payload.get("refresh_token"),
            expires_at=issued + timedelta(seconds=seconds),
            id_token=payload.get("id_token"),
        )

    def is_expired(self, leeway_seconds: int = 60, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) + timedelta(seconds=leeway_seconds) >= self.expires_at
