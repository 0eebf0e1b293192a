"""Settings and persisted data model for ntcli.

Two kinds of configuration live here:
- Process settings read from environment variables (NTCLI_*, plus the OAuth
  and identity overrides inherited from earlier releases).
- The on-disk records owned by `ntcli.store.ConfigStore`:
  ~/.ntcli/config.json (domain, active workspace, workspace records) and
  ~/.ntcli/credentials.json (identity session and exchanged platform token).

Usage:
    from ntcli.config import get_settings

    settings = get_settings()
    print(settings.config_dir)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# --- Constants ---

CONFIG_VERSION = "1.0.0"
DEFAULT_DOMAIN = "nimbletools.ai"
DEFAULT_OAUTH_CLIENT_ID = "0MUyvaWYSj4g0lzE"
DEFAULT_OAUTH_DOMAIN = "clerk.nimbletools.ai"
DEFAULT_CALLBACK_PORT = 41247
DEFAULT_OAUTH_TIMEOUT = 300.0
DEFAULT_HTTP_TIMEOUT = 30.0
CONFIG_FILE_NAME = "config.json"
CREDENTIALS_FILE_NAME = "credentials.json"

# Written by releases that had no notion of a token-less workspace
LEGACY_NO_TOKEN = "no-token"


# --- Path utilities ---


def get_ntcli_dir() -> Path:
    """Get the user's ntcli config directory (~/.ntcli)."""
    return Path.home() / ".ntcli"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# --- Settings ---


class NtcliSettings(BaseSettings):
    """Process settings loaded from environment variables.

    NTCLI_DEBUG enables verbose request/response logging.
    """

    debug: bool = False
    config_dir: Path | None = None
    default_port: int = DEFAULT_CALLBACK_PORT
    oauth_timeout: float = DEFAULT_OAUTH_TIMEOUT
    http_timeout: float = DEFAULT_HTTP_TIMEOUT

    oauth_client_id: str = Field(
        default=DEFAULT_OAUTH_CLIENT_ID,
        validation_alias=AliasChoices(
            "CLERK_OAUTH_CLIENT_ID", "NTCLI_OAUTH_CLIENT_ID"
        ),
    )
    oauth_domain: str = Field(
        default=DEFAULT_OAUTH_DOMAIN,
        validation_alias=AliasChoices("CLERK_OAUTH_DOMAIN", "NTCLI_OAUTH_DOMAIN"),
    )
    identity_api_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "NIMBLEBRAIN_API_URL", "NTCLI_IDENTITY_API_URL"
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="NTCLI_",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("debug", mode="before")
    @classmethod
    def _empty_debug_is_off(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return False
        return value

    def get_config_dir(self) -> Path:
        return (self.config_dir or get_ntcli_dir()).expanduser()


@lru_cache(maxsize=1)
def get_settings() -> NtcliSettings:
    """Get the cached process settings.

    Use clear_settings_cache() to force a reload (tests change env vars).
    """
    return NtcliSettings()


def clear_settings_cache() -> None:
    """Clear the cached settings, forcing reload on next get_settings()."""
    get_settings.cache_clear()


# --- Persisted records ---


class WorkspaceRecord(BaseModel):
    """A workspace known to this installation.

    A record without an access token identifies the workspace (switching,
    listing) but cannot authorize API calls until a token is fetched.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    workspace_id: str
    workspace_name: str
    access_token: str | None = None
    token_type: str = "Bearer"
    # Epoch milliseconds when written by ntcli; ISO-8601 strings are accepted
    token_expires_at: int | str | None = Field(
        default=None,
        validation_alias=AliasChoices("token_expires_at", "expires_at"),
    )
    scope: list[str] = Field(default_factory=list)
    jti: str | None = None
    created_at: str = Field(default_factory=_utcnow_iso)

    @field_validator("access_token")
    @classmethod
    def _drop_placeholder_token(cls, value: str | None) -> str | None:
        if not value or value == LEGACY_NO_TOKEN:
            return None
        return value


class ConfigRecord(BaseModel):
    """The single on-disk configuration record (config.json).

    Field aliases are the persisted key names and must not change.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    version: str = CONFIG_VERSION
    last_updated: str | None = Field(default=None, alias="lastUpdated")
    domain: str = DEFAULT_DOMAIN
    insecure: bool = False
    active_workspace_id: str | None = Field(default=None, alias="activeWorkspaceId")
    workspaces: dict[str, WorkspaceRecord] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _lift_legacy_layout(cls, data: Any) -> Any:
        """Flatten the older {"workspaces": {"activeWorkspaceId", "items"}} layout."""
        if not isinstance(data, dict):
            return data
        workspaces = data.get("workspaces")
        if isinstance(workspaces, dict) and isinstance(workspaces.get("items"), dict):
            data = dict(data)
            data["workspaces"] = workspaces["items"]
            if "activeWorkspaceId" not in data and workspaces.get("activeWorkspaceId"):
                data["activeWorkspaceId"] = workspaces["activeWorkspaceId"]
        return data

    @model_validator(mode="after")
    def _check_active_pointer(self) -> "ConfigRecord":
        if (
            self.active_workspace_id is not None
            and self.active_workspace_id not in self.workspaces
        ):
            logger.warning(
                f"Active workspace '{self.active_workspace_id}' has no record; "
                "clearing the active workspace."
            )
            self.active_workspace_id = None
        return self

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class UserProfile(BaseModel):
    """Informational profile of the logged-in user."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    email: str | None = None
    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")
    username: str | None = None

    @property
    def display_name(self) -> str | None:
        full = " ".join(part for part in (self.first_name, self.last_name) if part)
        return full or self.username


class IdentitySession(BaseModel):
    """Identity token issued by the OAuth provider after login."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id_token: str = Field(alias="idToken")
    id_token_expires_at: int | str | None = Field(
        default=None, alias="idTokenExpiresAt"
    )
    refresh_token: str | None = Field(default=None, alias="refreshToken")
    user: UserProfile | None = None


class PlatformToken(BaseModel):
    """Bearer token obtained by exchanging an identity token."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    access_token: str = Field(alias="accessToken")
    token_type: str = Field(default="Bearer", alias="tokenType")
    expires_at: int | str | None = Field(default=None, alias="expiresAt")


class Credentials(BaseModel):
    """Contents of credentials.json."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    identity: IdentitySession | None = None
    platform: PlatformToken | None = None

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
