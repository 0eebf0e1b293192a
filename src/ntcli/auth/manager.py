"""Session and token management.

Obtaining a workspace access token walks these states:

    NO_IDENTITY -> HAVE_IDENTITY -> EXCHANGED -> WORKSPACE_TOKEN_OBTAINED

- HAVE_IDENTITY: a valid identity token, cached, refreshed or from a login.
- EXCHANGED: a valid platform token, cached or from the token exchange.
- WORKSPACE_TOKEN_OBTAINED: a workspace token was issued and stored.

A rejected credential (401/403) unwinds to NO_IDENTITY and forces one fresh
interactive login; a second rejection propagates. Transient failures
propagate without changing state. Results are persisted only after a step
succeeds.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Callable, Protocol, TypeVar

from ntcli.api.management import ManagementClient
from ntcli.auth.exchange import TokenExchangeClient
from ntcli.config import (
    Credentials,
    IdentitySession,
    PlatformToken,
    WorkspaceRecord,
)
from ntcli.endpoints import Endpoints
from ntcli.exceptions import (
    AuthenticationError,
    AuthRejectedError,
    AuthRequiredError,
    WorkspaceNotFoundError,
)
from ntcli.store import ConfigStore
from ntcli.tokens import (
    DEFAULT_SKEW_SECONDS,
    NON_EXPIRING_TOKEN_TTL,
    TokenState,
    classify,
    expires_at_from_ttl,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ManagementFactory = Callable[[str, str], ManagementClient]


class IdentityProvider(Protocol):
    """Source of identity sessions (interactive login and refresh)."""

    def login(self) -> IdentitySession:
        """Run an interactive login. Raises AuthRequiredError on failure."""
        ...

    def refresh(self, session: IdentitySession) -> IdentitySession:
        """Refresh a session. Raises AuthRejectedError if refused."""
        ...


class SessionState(StrEnum):
    NO_IDENTITY = "no_identity"
    HAVE_IDENTITY = "have_identity"
    EXCHANGED = "exchanged"
    WORKSPACE_TOKEN_OBTAINED = "workspace_token_obtained"


class TokenManager:
    """Obtains, caches and persists identity, platform and workspace tokens.

    Args:
        store: Owner of the persisted credentials and workspace records.
        endpoints: Service URLs for the configured domain.
        provider: Identity provider; without one, no login can happen.
        exchange_client: Token exchange client (defaults to the identity URL).
        management_factory: Builds a management client from a token and
            token type.
        skew_seconds: Refresh margin before a token's real expiry.
    """

    def __init__(
        self,
        store: ConfigStore,
        endpoints: Endpoints,
        provider: IdentityProvider | None = None,
        exchange_client: TokenExchangeClient | None = None,
        management_factory: ManagementFactory | None = None,
        skew_seconds: int = DEFAULT_SKEW_SECONDS,
    ):
        self.store = store
        self.endpoints = endpoints
        self.provider = provider
        self.exchange_client = exchange_client or TokenExchangeClient(
            endpoints.identity
        )
        self.management_factory = management_factory or self._default_management
        self.skew_seconds = skew_seconds

        self._credentials: Credentials | None = None
        self._fresh_identity: IdentitySession | None = None
        self._relogin_used = False
        self._state = SessionState.NO_IDENTITY

    def _default_management(self, access_token: str, token_type: str):
        return ManagementClient(
            self.endpoints.management, access_token, token_type=token_type
        )

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def credentials(self) -> Credentials:
        """In-memory credentials, loaded from the store on first use."""
        if self._credentials is None:
            self._credentials = self.store.load_credentials()
            if self.identity_state() is TokenState.VALID:
                self._state = SessionState.HAVE_IDENTITY
                if self.platform_state() is TokenState.VALID:
                    self._state = SessionState.EXCHANGED
        return self._credentials

    @property
    def state(self) -> SessionState:
        _ = self.credentials
        return self._state

    def identity_state(self) -> TokenState:
        identity = self.credentials.identity
        if identity is None:
            return TokenState.MISSING
        return classify(
            identity.id_token,
            identity.id_token_expires_at,
            skew_seconds=self.skew_seconds,
        )

    def platform_state(self) -> TokenState:
        platform = self.credentials.platform
        if platform is None:
            return TokenState.MISSING
        return classify(
            platform.access_token, platform.expires_at, skew_seconds=self.skew_seconds
        )

    def _unwind(self) -> None:
        """Forget identity and platform tokens in memory only."""
        logger.debug("Credential rejected, discarding cached identity")
        self._credentials = Credentials()
        self._fresh_identity = None
        self._state = SessionState.NO_IDENTITY

    def _store_identity(self, session: IdentitySession) -> IdentitySession:
        # A new identity invalidates any platform token from the previous one
        credentials = Credentials(identity=session, platform=None)
        self.store.save_credentials(credentials)
        self._credentials = credentials
        self._fresh_identity = session
        self._state = SessionState.HAVE_IDENTITY
        return session

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    def ensure_identity(self, interactive: bool = True) -> IdentitySession:
        """Return a usable identity session, refreshing or logging in if needed.

        Raises:
            AuthRequiredError: No valid identity and no way to get one.
        """
        if self._fresh_identity is not None:
            return self._fresh_identity

        session = self.credentials.identity
        if session is not None and self.identity_state() is TokenState.VALID:
            return session

        if session is not None and session.refresh_token and self.provider:
            try:
                refreshed = self.provider.refresh(session)
            except AuthRejectedError as e:
                logger.debug(f"Identity refresh rejected: {e}")
            else:
                logger.debug("Identity token refreshed")
                return self._store_identity(refreshed)

        if not interactive:
            raise AuthRequiredError()
        return self._interactive_login()

    def _interactive_login(self) -> IdentitySession:
        if self.provider is None:
            raise AuthRequiredError()
        try:
            session = self.provider.login()
        except AuthRequiredError:
            raise
        except AuthenticationError as e:
            raise AuthRequiredError("Login failed", detail=str(e)) from e
        finally:
            self._relogin_used = True
        return self._store_identity(session)

    def login(self, force: bool = False) -> IdentitySession:
        """Interactive login followed by the token exchange.

        Without `force`, a still-valid cached identity is kept.
        """
        if not force and self.identity_state() is TokenState.VALID:
            session = self.ensure_identity(interactive=False)
        else:
            session = self._interactive_login()
        self.ensure_platform_token(interactive=True)
        return self._fresh_identity or session

    def logout(self) -> bool:
        """Clear cached identity and platform tokens.

        Workspace records, and their tokens, are kept.

        Returns:
            True if credentials were cleared.
        """
        cleared = self.store.clear_credentials()
        self._credentials = Credentials()
        self._fresh_identity = None
        self._state = SessionState.NO_IDENTITY
        return cleared

    # -------------------------------------------------------------------------
    # Platform token
    # -------------------------------------------------------------------------

    def _with_relogin(self, step: Callable[[], T], interactive: bool) -> T:
        try:
            return step()
        except AuthRejectedError as e:
            self._unwind()
            if self._relogin_used or not interactive or self.provider is None:
                raise
            logger.info(f"{e}; logging in again")
            self._relogin_used = True
            self._interactive_login()
            return step()

    def _exchange(self, session: IdentitySession) -> PlatformToken:
        platform = self.exchange_client.exchange(session.id_token)
        if platform.expires_at is None:
            platform = platform.model_copy(
                update={"expires_at": session.id_token_expires_at}
            )
        credentials = Credentials(identity=session, platform=platform)
        self.store.save_credentials(credentials)
        self._credentials = credentials
        self._state = SessionState.EXCHANGED
        return platform

    def ensure_platform_token(self, interactive: bool = True) -> PlatformToken:
        """Return a valid platform token, exchanging the identity if needed.

        Raises:
            AuthRequiredError: No identity could be obtained.
            AuthRejectedError: Rejected again after a fresh login, or
                rejected while `interactive` is off.
            ServiceUnavailableError, NetworkError: Transient failures.
        """
        platform = self.credentials.platform
        if platform is not None and self.platform_state() is TokenState.VALID:
            if self._state is SessionState.NO_IDENTITY:
                self._state = SessionState.EXCHANGED
            return platform

        return self._with_relogin(
            lambda: self._exchange(self.ensure_identity(interactive)), interactive
        )

    def call_platform_api(
        self,
        operation: Callable[[ManagementClient], T],
        interactive: bool = True,
    ) -> T:
        """Run `operation` with a management client bound to the platform token.

        A rejected platform token triggers the same single re-login as the
        exchange.
        """

        def attempt() -> T:
            platform = self.ensure_platform_token(interactive)
            with self.management_factory(
                platform.access_token, platform.token_type
            ) as api:
                return operation(api)

        return self._with_relogin(attempt, interactive)

    # -------------------------------------------------------------------------
    # Workspace token
    # -------------------------------------------------------------------------

    def fetch_workspace_token(
        self,
        workspace_id: str,
        expires_in: int | None = None,
        interactive: bool = True,
        expires_at: int | None = None,
    ) -> WorkspaceRecord:
        """Issue a new workspace token and store it on the workspace record.

        `expires_in` (seconds) or `expires_at` (epoch seconds) request a
        lifetime; with neither the server default applies. Tokens issued
        without an expiry are stored with a one-year expiry.

        Raises:
            WorkspaceNotFoundError: No local record for `workspace_id`.
        """
        if self.store.get_workspace(workspace_id) is None:
            raise WorkspaceNotFoundError(
                workspace_id,
                known_workspaces=[
                    (w.workspace_name, w.workspace_id)
                    for w in self.store.list_workspaces()
                ],
            )

        grant = self.call_platform_api(
            lambda api: api.issue_workspace_token(
                workspace_id, expires_in=expires_in, expires_at=expires_at
            ),
            interactive,
        )
        ttl = grant.expires_in or NON_EXPIRING_TOKEN_TTL
        record = self.store.update_workspace_token(
            workspace_id,
            access_token=grant.access_token,
            expires_at=expires_at_from_ttl(ttl),
            token_type=grant.token_type,
            scope=grant.scope,
            jti=grant.jti,
        )
        self._state = SessionState.WORKSPACE_TOKEN_OBTAINED
        logger.debug(f"Stored new token for workspace {workspace_id}")
        return record
