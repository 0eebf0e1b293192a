import os
import typing
from pathlib import Path
from unittest import mock

import pytest

from ntcli.config import (
    Credentials,
    IdentitySession,
    PlatformToken,
    UserProfile,
    WorkspaceRecord,
)
from ntcli.endpoints import Endpoints, resolve_endpoints
from ntcli.store import ConfigStore
from ntcli.testing import config_dir_override, temp_env_vars
from ntcli.tokens import expires_at_from_ttl

# Read by NtcliSettings without the NTCLI_ prefix
_UNPREFIXED_ENV_VARS = (
    "CLERK_OAUTH_CLIENT_ID",
    "CLERK_OAUTH_DOMAIN",
    "NIMBLEBRAIN_API_URL",
)


def make_identity(
    id_token: str = "id-token",
    ttl_seconds: int = 3600,
    refresh_token: str | None = "refresh-token",
) -> IdentitySession:
    return IdentitySession(
        id_token=id_token,
        id_token_expires_at=expires_at_from_ttl(ttl_seconds),
        refresh_token=refresh_token,
        user=UserProfile(id="user_1", email="dev@example.com", first_name="Dev"),
    )


class FakeIdentityProvider:
    """In-memory identity provider counting login and refresh calls."""

    def __init__(self):
        self.login_calls = 0
        self.refresh_calls = 0
        self.login_error: Exception | None = None
        self.refresh_error: Exception | None = None

    def login(self) -> IdentitySession:
        self.login_calls += 1
        if self.login_error is not None:
            raise self.login_error
        return make_identity(f"id-token-login-{self.login_calls}")

    def refresh(self, session: IdentitySession) -> IdentitySession:
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        return make_identity(
            f"id-token-refreshed-{self.refresh_calls}",
            refresh_token=session.refresh_token,
        )


@pytest.fixture(scope="function", autouse=True)
def cleared_ntcli_env_vars() -> typing.Generator[None, None, None]:
    """Clear NTCLI_* (and legacy OAuth) environment variables for the test."""
    names = [name for name in os.environ if name.startswith("NTCLI_")]
    names.extend(_UNPREFIXED_ENV_VARS)
    with temp_env_vars({name: None for name in names}):
        yield


@pytest.fixture(scope="function")
def config_dir(tmp_path: Path) -> typing.Generator[Path, None, None]:
    with config_dir_override(tmp_path / ".ntcli") as path:
        yield path


@pytest.fixture(scope="function")
def store(config_dir: Path) -> ConfigStore:
    return ConfigStore()


@pytest.fixture(scope="session")
def endpoints() -> Endpoints:
    return resolve_endpoints("example.com")


@pytest.fixture(scope="function")
def provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture(scope="session")
def identity_factory() -> typing.Callable[..., IdentitySession]:
    return make_identity


@pytest.fixture(scope="function")
def identity() -> IdentitySession:
    return make_identity()


@pytest.fixture(scope="function")
def logged_in(store: ConfigStore, identity: IdentitySession) -> Credentials:
    """Valid identity and platform tokens in credentials.json."""
    credentials = Credentials(
        identity=identity,
        platform=PlatformToken(
            access_token="platform-token",
            expires_at=expires_at_from_ttl(3600),
        ),
    )
    store.save_credentials(credentials)
    return credentials


@pytest.fixture(scope="function")
def team_a(store: ConfigStore) -> WorkspaceRecord:
    """Local record of workspace teamA with a valid token."""
    return store.upsert_workspace(
        WorkspaceRecord(
            workspace_id="ws_123",
            workspace_name="teamA",
            access_token="ws-token-cached",
            token_expires_at=expires_at_from_ttl(3600),
            scope=["workspace:read"],
        )
    )


@pytest.fixture(scope="function")
def cli_provider(
    provider: FakeIdentityProvider,
) -> typing.Generator[FakeIdentityProvider, None, None]:
    """Make CLI commands use the fake identity provider."""
    with mock.patch(
        "ntcli._cli._common.build_identity_provider", return_value=provider
    ):
        yield provider
