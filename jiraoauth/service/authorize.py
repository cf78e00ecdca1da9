from __future__ import annotations

from typing import Optional, Tuple
from urllib.parse import urlencode, urlparse

from jiraoauth.config import Settings
from jiraoauth.logging import get_logger
from jiraoauth.service.sessions import SessionManager

logger = get_logger(__name__)


def validate_redirect_uri(redirect_uri: str) -> str:
    parsed = urlparse(redirect_uri)
    if parsed.scheme not in {"https", "http"}:
        raise ValueError("OAuth redirect URI must be http(s)")
    if parsed.scheme == "http" and parsed.hostname not in {"localhost", "127.0.0.1"}:
        raise ValueError("Insecure redirect URI not allowed outside localhost")
    if not parsed.netloc:
        raise ValueError("OAuth redirect URI must include host")
    return redirect_uri


class AuthorizationRequestBuilder:
    """Builds the provider authorization URL for a fresh session.

    Purely local: one store write, no network calls.
    """

    def __init__(self, settings: Settings, sessions: SessionManager) -> None:
        self.settings = settings
        self.sessions = sessions

    async def build_auth_url(
        self,
        user_hint: Optional[str] = None,
        *,
        redirect_uri: Optional[str] = None,
    ) -> Tuple[str, str]:
        """Create a session and return ``(authorization_url, state)``.

        Raises:
            ValueError: ``redirect_uri`` override is not an acceptable callback
            StoreUnavailableError: the session could not be persisted
        """
        callback_uri = self.settings.redirect_uri
        if redirect_uri:
            callback_uri = validate_redirect_uri(redirect_uri)

        state, code_challenge = await self.sessions.begin(callback_uri, user_hint)

        params = {
            "client_id": self.settings.client_id,
            "scope": " ".join(self.settings.scopes),
            "redirect_uri": callback_uri,
            "response_type": "code",
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        # Atlassian Cloud needs the API audience and an explicit consent prompt
        if self.settings.is_cloud:
            if self.settings.audience:
                params["audience"] = self.settings.audience
            params["prompt"] = "consent"
        if user_hint:
            params["login_hint"] = user_hint

        authorization_url = f"{self.settings.authorization_url}?{urlencode(params)}"
        logger.info("oauth_authorization_url_built", cloud=self.settings.is_cloud)
        return authorization_url, state
