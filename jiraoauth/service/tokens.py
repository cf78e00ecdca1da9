from __future__ import annotations

import asyncio
import contextlib
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from pydantic import ValidationError

from jiraoauth.api.schemas import TokenResponse
from jiraoauth.config import Settings
from jiraoauth.logging import get_logger
from jiraoauth.service.errors import InvalidTokenResponseError, TokenExchangeFailedError
from jiraoauth.service.sessions import SessionManager
from jiraoauth.storage.models import TokenRecord

logger = get_logger(__name__)

# Upstream error bodies are kept for diagnostics only, and truncated
_MAX_DIAGNOSTIC_BODY = 2000


class TokenExchangeClient:
    """Authorization-code and refresh-token exchanges against the token endpoint.

    A timeout during ``exchange_code`` is reported as a failed exchange and is
    never retried: the code is single-use and the outcome is unknown. Only
    ``refresh_token`` accepts retries.
    """

    def __init__(
        self,
        settings: Settings,
        sessions: SessionManager,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings
        self.sessions = sessions
        self.timeout = settings.http_timeout_seconds
        self._http_client = http_client
        self._owns_client = http_client is None

    @contextlib.asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is None or self._http_client.is_closed:
            # Created lazily and reused; only this instance may close it
            self._http_client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=False)
            self._owns_client = True
        yield self._http_client

    def _base_form(self) -> Dict[str, str]:
        form = {"client_id": self.settings.client_id or ""}
        if self.settings.client_secret:
            form["client_secret"] = self.settings.client_secret
        return form

    async def _post_token(self, form: Dict[str, str]) -> Dict[str, Any]:
        grant_type = form.get("grant_type")
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
            "User-Agent": self.settings.user_agent,
        }
        try:
            async with self._client() as client:
                response = await client.post(
                    self.settings.token_url,
                    data=form,
                    headers=headers,
                    timeout=self.timeout,
                )
        except httpx.TimeoutException as exc:
            logger.error("oauth_token_request_timeout", grant_type=grant_type)
            raise TokenExchangeFailedError(
                "The identity provider did not respond in time."
            ) from exc
        except httpx.HTTPError as exc:
            logger.error(
                "oauth_token_request_error",
                grant_type=grant_type,
                error_type=type(exc).__name__,
            )
            raise TokenExchangeFailedError() from exc

        if not response.is_success:
            body = response.text[:_MAX_DIAGNOSTIC_BODY]
            logger.warning(
                "oauth_token_request_rejected",
                grant_type=grant_type,
                upstream_status=response.status_code,
            )
            logger.debug("oauth_token_rejection_body", upstream_body=body)
            raise TokenExchangeFailedError(
                upstream_status=response.status_code,
                upstream_body=body,
                detail={"upstream_status": response.status_code},
            )

        try:
            payload = response.json()
        except ValueError as exc:
            logger.error("oauth_token_parse_error", grant_type=grant_type)
            raise InvalidTokenResponseError() from exc

        try:
            parsed = TokenResponse.model_validate(payload)
        except ValidationError as exc:
            logger.error(
                "oauth_no_access_token",
                grant_type=grant_type,
                fields=sorted(payload) if isinstance(payload, dict) else None,
            )
            raise InvalidTokenResponseError() from exc
        return parsed.model_dump(exclude_none=True)

    async def exchange_code(self, code: str, state: str) -> TokenRecord:
        """Exchange an authorization code for tokens.

        The session for ``state`` is consumed whatever the outcome, so a code
        can never be exchanged twice and a failure leaves nothing to replay.

        Raises:
            InvalidStateError: unknown, consumed or expired state (no network call)
            TokenExchangeFailedError: non-2xx, timeout or transport failure
            InvalidTokenResponseError: 2xx without an access token
        """
        session = await self.sessions.resolve(state)
        try:
            form = self._base_form()
            form.update(
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    # Must match the authorization request byte-for-byte
                    "redirect_uri": session.redirect_uri,
                    "code_verifier": session.code_verifier,
                }
            )
            payload = await self._post_token(form)
            tokens = TokenRecord.from_token_response(payload)
        finally:
            await self.sessions.consume(state)

        logger.info(
            "oauth_exchange_success",
            token_type=tokens.token_type,
            expires_at=tokens.expires_at.isoformat() if tokens.expires_at else None,
            has_refresh=tokens.refresh_token is not None,
        )
        return tokens

    async def refresh_token(
        self,
        refresh_token: str,
        *,
        retries: int = 0,
        retry_backoff: float = 0.5,
    ) -> TokenRecord:
        """Trade a refresh token for a new token set.

        Transport failures and timeouts are retried up to ``retries`` times;
        a provider rejection is final.
        """
        if not refresh_token:
            raise TokenExchangeFailedError("No refresh token available.")
        form = self._base_form()
        form.update({"grant_type": "refresh_token", "refresh_token": refresh_token})

        attempt = 0
        while True:
            try:
                payload = await self._post_token(form)
                break
            except TokenExchangeFailedError as exc:
                if exc.upstream_status is not None or attempt >= retries:
                    raise
                attempt += 1
                logger.warning("oauth_refresh_retry", attempt=attempt, retries=retries)
                await asyncio.sleep(retry_backoff * (2 ** (attempt - 1)))

        tokens = TokenRecord.from_token_response(payload)
        if tokens.refresh_token is None:
            # Provider did not rotate; the old refresh token stays valid
            tokens.refresh_token = refresh_token
        logger.info("oauth_refresh_success", has_refresh=True, attempts=attempt + 1)
        return tokens

    async def validate_token(self, access_token: str, probe_url: Optional[str] = None) -> bool:
        """Cheap authenticated probe. Not the source of truth for expiry."""
        url = probe_url or self.settings.accessible_resources_url
        try:
            async with self._client() as client:
                response = await client.get(
                    url,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Accept": "application/json",
                        "User-Agent": self.settings.user_agent,
                    },
                    timeout=self.timeout,
                )
        except httpx.HTTPError as exc:
            logger.info("oauth_token_probe_failed", error_type=type(exc).__name__)
            return False
        return response.is_success

    async def get_accessible_resources(self, access_token: str) -> List[Dict[str, Any]]:
        """List the Atlassian sites the token can reach."""
        try:
            async with self._client() as client:
                response = await client.get(
                    self.settings.accessible_resources_url,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Accept": "application/json",
                        "User-Agent": self.settings.user_agent,
                    },
                    timeout=self.timeout,
                )
        except httpx.HTTPError as exc:
            raise TokenExchangeFailedError(
                "Could not reach the identity provider."
            ) from exc
        if not response.is_success:
            logger.warning("oauth_accessible_resources_rejected", upstream_status=response.status_code)
            raise TokenExchangeFailedError(
                "The identity provider rejected the access token.",
                upstream_status=response.status_code,
                upstream_body=response.text[:_MAX_DIAGNOSTIC_BODY],
                detail={"upstream_status": response.status_code},
            )
        try:
            resources = response.json()
        except ValueError as exc:
            raise InvalidTokenResponseError(
                "The identity provider returned an unreadable resource list."
            ) from exc
        if not isinstance(resources, list):
            raise InvalidTokenResponseError(
                "The identity provider returned an unreadable resource list."
            )
        return resources

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it; injected clients stay open."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
