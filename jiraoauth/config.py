from __future__ import annotations

import os
import tempfile
from typing import Any
from urllib.parse import urlparse

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from jiraoauth.logging import get_logger
from jiraoauth.service.errors import ConfigurationError

logger = get_logger(__name__)

ATLASSIAN_CLOUD_AUTH_URL = "https://auth.atlassian.com/authorize"
ATLASSIAN_CLOUD_TOKEN_URL = "https://auth.atlassian.com/oauth/token"
ATLASSIAN_CLOUD_REVOKE_URL = "https://auth.atlassian.com/oauth/revoke"
ATLASSIAN_ACCESSIBLE_RESOURCES_URL = "https://api.atlassian.com/oauth/token/accessible-resources"
ATLASSIAN_AUDIENCE = "api.atlassian.com"

CLOUD_SCOPES = ["read:jira-work", "read:jira-user", "write:jira-work", "offline_access"]
SERVER_SCOPES = ["READ", "WRITE"]

SESSION_BACKENDS = ("memory", "file", "redis")


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def _split_list(value: Any) -> Any:
    if isinstance(value, str):
        return [item for item in value.replace(",", " ").split() if item]
    return value


class Settings(BaseModel):
    """OAuth engine settings, supplied once at startup and never mutated."""

    company_url: str | None = env_field(
        None,
        "JIRA_COMPANY_URL",
        description="Jira site URL; decides between Atlassian Cloud and Server/DC endpoints",
    )
    authorization_url: str | None = env_field(None, "JIRA_AUTH_URL")
    token_url: str | None = env_field(None, "JIRA_TOKEN_URL")
    revocation_url: str | None = env_field(None, "JIRA_REVOKE_URL")
    accessible_resources_url: str = env_field(
        ATLASSIAN_ACCESSIBLE_RESOURCES_URL, "JIRA_ACCESSIBLE_RESOURCES_URL"
    )
    client_id: str | None = env_field(None, "JIRA_OAUTH_CLIENT_ID")
    client_secret: str | None = env_field(
        None,
        "JIRA_OAUTH_CLIENT_SECRET",
        description="Only set for confidential clients",
    )
    server_url: str = env_field("http://localhost:3000", "SERVER_URL")
    public_hostname: str | None = env_field(None, "SMITHERY_HOSTNAME")
    redirect_uri: str | None = env_field(None, "OAUTH_REDIRECT_URI")
    scopes: list[str] = env_field([], "JIRA_OAUTH_SCOPES")
    audience: str | None = env_field(None, "JIRA_OAUTH_AUDIENCE")
    session_ttl_minutes: int = env_field(
        15,
        "OAUTH_SESSION_TTL_MINUTES",
        ge=1,
        le=60,
        description="Long enough for a browser round-trip, short enough to bound replay",
    )
    session_sweep_interval_seconds: int = env_field(300, "OAUTH_SESSION_SWEEP_SECONDS", ge=1)
    session_backends: list[str] = env_field(
        list(SESSION_BACKENDS),
        "OAUTH_SESSION_BACKENDS",
        description="Ordered session tiers, fastest first",
    )
    session_dir: str = env_field(
        os.path.join(tempfile.gettempdir(), "jiraoauth-sessions"), "OAUTH_SESSION_DIR"
    )
    redis_url: str | None = env_field(None, "REDIS_URL")
    http_timeout_seconds: float = env_field(10.0, "OAUTH_HTTP_TIMEOUT_SECONDS", gt=0)
    user_agent: str = env_field("jiraoauth/1.0", "OAUTH_USER_AGENT")
    resource_documentation: str | None = env_field(None, "RESOURCE_DOCUMENTATION_URL")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("scopes", "session_backends", mode="before")
    @classmethod
    def _split_lists(cls, value: Any) -> Any:
        return _split_list(value)

    @field_validator("session_backends")
    @classmethod
    def _validate_backends(cls, value: list[str]) -> list[str]:
        normalized = [item.strip().lower() for item in value]
        unknown = [item for item in normalized if item not in SESSION_BACKENDS]
        if unknown:
            raise ValueError(f"Unknown session backend(s): {', '.join(unknown)}")
        if len(set(normalized)) != len(normalized):
            raise ValueError("Session backends must not repeat")
        return normalized

    @field_validator("company_url", "server_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        if value:
            return value.rstrip("/")
        return value

    @model_validator(mode="after")
    def _derive_endpoints(self) -> "Settings":
        cloud = self.is_cloud
        if not self.authorization_url:
            self.authorization_url = (
                ATLASSIAN_CLOUD_AUTH_URL
                if cloud
                else f"{self.company_url}/plugins/servlet/oauth2/authorize"
            )
        if not self.token_url:
            self.token_url = (
                ATLASSIAN_CLOUD_TOKEN_URL
                if cloud
                else f"{self.company_url}/plugins/servlet/oauth2/token"
            )
        if not self.revocation_url and cloud:
            self.revocation_url = ATLASSIAN_CLOUD_REVOKE_URL
        if not self.scopes:
            self.scopes = list(CLOUD_SCOPES if cloud else SERVER_SCOPES)
        if not self.audience and cloud:
            self.audience = ATLASSIAN_AUDIENCE
        if not self.redirect_uri:
            if self.public_hostname:
                self.redirect_uri = f"https://{self.public_hostname}/oauth/callback"
            else:
                self.redirect_uri = f"{self.server_url}/oauth/callback"
        return self

    @property
    def is_cloud(self) -> bool:
        """Atlassian Cloud unless a self-hosted Jira site is configured."""
        return not self.company_url or ".atlassian.net" in self.company_url

    @property
    def session_ttl_seconds(self) -> int:
        return self.session_ttl_minutes * 60

    @property
    def issuer(self) -> str:
        parsed = urlparse(self.authorization_url or "")
        return f"{parsed.scheme}://{parsed.netloc}" if parsed.netloc else ""

    def validate_for_startup(self) -> None:
        """Fail fast on configuration that would only break at request time."""
        missing = [
            env_name
            for name, env_name in (
                ("client_id", "JIRA_OAUTH_CLIENT_ID"),
                ("authorization_url", "JIRA_AUTH_URL"),
                ("token_url", "JIRA_TOKEN_URL"),
                ("redirect_uri", "OAUTH_REDIRECT_URI"),
            )
            if not getattr(self, name)
        ]
        if missing:
            logger.error("oauth_config_missing", fields=missing)
            raise ConfigurationError(
                f"Missing required OAuth configuration: {', '.join(missing)}",
                detail={"missing": missing},
            )
        for name in ("authorization_url", "token_url", "redirect_uri"):
            parsed = urlparse(getattr(self, name))
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ConfigurationError(
                    f"OAuth setting {name} must be an absolute http(s) URL",
                    detail={"field": name},
                )
        if "redis" in self.session_backends and not self.redis_url:
            logger.warning("oauth_redis_backend_unconfigured", backends=self.session_backends)


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
