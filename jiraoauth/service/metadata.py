"""Discovery documents derived from static settings.

Neither function touches state or the network; misconfiguration is caught by
``Settings.validate_for_startup`` before either is served.
"""

from __future__ import annotations

from typing import Any, Dict

from jiraoauth.api.schemas import AuthorizationServerMetadata, ProtectedResourceMetadata
from jiraoauth.config import Settings


def resource_metadata(settings: Settings) -> Dict[str, Any]:
    """RFC 9728 protected resource metadata for this server."""
    document = ProtectedResourceMetadata(
        resource=settings.server_url,
        authorization_servers=[settings.issuer],
        scopes_supported=list(settings.scopes),
        bearer_methods_supported=["header"],
        resource_documentation=settings.resource_documentation,
    )
    return document.model_dump(exclude_none=True)


def authorization_server_metadata(settings: Settings) -> Dict[str, Any]:
    """RFC 8414 view of the upstream authorization server."""
    auth_methods = ["client_secret_post"] if settings.client_secret else ["none"]
    document = AuthorizationServerMetadata(
        issuer=settings.issuer,
        authorization_endpoint=settings.authorization_url,
        token_endpoint=settings.token_url,
        revocation_endpoint=settings.revocation_url,
        scopes_supported=list(settings.scopes),
        token_endpoint_auth_methods_supported=auth_methods,
    )
    return document.model_dump(exclude_none=True)
