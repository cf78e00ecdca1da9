from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from jiraoauth.config import Settings
from jiraoauth.logging import get_logger, set_correlation_id
from jiraoauth.service import metadata
from jiraoauth.service.authorize import AuthorizationRequestBuilder
from jiraoauth.service.sessions import SessionManager
from jiraoauth.service.tokens import TokenExchangeClient
from jiraoauth.storage.models import TokenRecord

logger = get_logger(__name__)


@dataclass
class AuthorizationRequest:
    url: str
    state: str


class AuthService:
    """Entry points used by the tool-invocation layer.

    Errors propagate as ``ServiceError`` subclasses; the remedy for every
    recoverable one is to call ``begin_auth`` again, never to retry a code.
    """

    def __init__(
        self,
        settings: Settings,
        sessions: SessionManager,
        builder: AuthorizationRequestBuilder,
        tokens: TokenExchangeClient,
    ) -> None:
        self.settings = settings
        self.sessions = sessions
        self.builder = builder
        self.tokens = tokens
        self.logger = logger

    async def begin_auth(
        self,
        redirect_uri: Optional[str] = None,
        user_hint: Optional[str] = None,
    ) -> AuthorizationRequest:
        set_correlation_id()
        url, state = await self.builder.build_auth_url(user_hint, redirect_uri=redirect_uri)
        return AuthorizationRequest(url=url, state=state)

    async def complete_auth(self, code: str, state: str) -> TokenRecord:
        set_correlation_id()
        return await self.tokens.exchange_code(code, state)

    async def refresh(self, refresh_token: str, *, retries: int = 1) -> TokenRecord:
        return await self.tokens.refresh_token(refresh_token, retries=retries)

    async def clear_all_sessions(self) -> int:
        count = await self.sessions.clear_all()
        self.logger.info("oauth_clear_all_sessions", count=count)
        return count

    async def validate_token(self, access_token: str, probe_url: Optional[str] = None) -> bool:
        return await self.tokens.validate_token(access_token, probe_url)

    async def accessible_resources(self, access_token: str) -> List[Dict[str, Any]]:
        return await self.tokens.get_accessible_resources(access_token)

    async def session_stats(self) -> Dict[str, Any]:
        return await self.sessions.stats()

    def resource_metadata(self) -> Dict[str, Any]:
        return metadata.resource_metadata(self.settings)

    def authorization_server_metadata(self) -> Dict[str, Any]:
        return metadata.authorization_server_metadata(self.settings)
