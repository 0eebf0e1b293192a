"""Browser-based OAuth login against the NimbleTools identity provider (Clerk).

Flow:
1. Start a local callback server on http://localhost:{port}/callback
2. Open the browser at the authorization endpoint (PKCE S256 + state)
3. Exchange the returned code for tokens at the token endpoint
4. Fetch the user profile from the userinfo endpoint

The result is an IdentitySession; turning it into a platform token is the job
of `ntcli.auth.exchange`.
"""

import base64
import errno
import hashlib
import http.server
import json
import logging
import secrets
import time
import urllib.parse
import webbrowser
from dataclasses import dataclass
from typing import Any, Callable

from ntcli.api._http import (
    extract_error_detail,
    get_http_client,
    handle_response_error,
    parse_json,
    transport_errors,
)
from ntcli.config import (
    DEFAULT_CALLBACK_PORT,
    DEFAULT_OAUTH_TIMEOUT,
    IdentitySession,
    NtcliSettings,
    UserProfile,
    get_settings,
)
from ntcli.exceptions import (
    APIError,
    AuthRejectedError,
    AuthRequiredError,
    MalformedResponseError,
)
from ntcli.tokens import expires_at_from_ttl

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = ("openid", "email", "profile")

# Further ports tried when the callback port is taken
MAX_PORT_ATTEMPTS = 10

# Identity lifetime assumed when the provider reports none
DEFAULT_IDENTITY_TTL = 3600


@dataclass
class AuthResult:
    """Result from OAuth callback."""

    code: str | None = None
    state: str | None = None
    error: str | None = None


class _CallbackServer(http.server.HTTPServer):
    auth_result: AuthResult | None = None


class OAuthCallbackHandler(http.server.BaseHTTPRequestHandler):
    """HTTP handler for the OAuth redirect."""

    server: _CallbackServer

    def do_GET(self):
        parsed = urllib.parse.urlparse(self.path)
        if parsed.path != "/callback":
            self.send_response(404)
            self.end_headers()
            return

        params = urllib.parse.parse_qs(parsed.query)
        if "error" in params:
            error = params["error"][0]
            error_desc = params.get("error_description", [""])[0]
            self.server.auth_result = AuthResult(error=f"{error}: {error_desc}")
            self._send_error_response(error, error_desc)
        elif "code" in params and "state" in params:
            self.server.auth_result = AuthResult(
                code=params["code"][0], state=params["state"][0]
            )
            self._send_success_response()
        else:
            self.server.auth_result = AuthResult(
                error="Missing authorization code or state parameter"
            )
            self._send_error_response(
                "invalid_response", "No authorization code received"
            )

    def _send_success_response(self):
        self.send_response(200)
        self.send_header("Content-type", "text/html")
        self.end_headers()
        html = """
        <html>
        <head><title>ntcli - Login Successful</title></head>
        <body style="font-family: sans-serif; text-align: center; padding: 50px;">
            <h1>Login Successful!</h1>
            <p>You can close this window and return to the terminal.</p>
        </body>
        </html>
        """
        self.wfile.write(html.encode())

    def _send_error_response(self, error: str, description: str):
        self.send_response(400)
        self.send_header("Content-type", "text/html")
        self.end_headers()
        html = f"""
        <html>
        <head><title>ntcli - Login Failed</title></head>
        <body style="font-family: sans-serif; text-align: center; padding: 50px;">
            <h1>Login Failed</h1>
            <p>Error: {error}</p>
            <p>{description}</p>
        </body>
        </html>
        """
        self.wfile.write(html.encode())

    def log_message(self, format, *args):
        """Suppress default logging."""
        pass


def generate_pkce() -> tuple[str, str]:
    """Generate PKCE code verifier and S256 challenge."""
    verifier = secrets.token_urlsafe(32)
    digest = hashlib.sha256(verifier.encode()).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode()
    return verifier, challenge


def jwt_expiry(token: str) -> int | None:
    """Return the `exp` claim of a JWT in epoch milliseconds, if readable.

    The signature is not verified; the value only schedules a refresh.
    """
    parts = token.split(".")
    if len(parts) != 3:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except ValueError:
        return None
    exp = claims.get("exp") if isinstance(claims, dict) else None
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return int(exp * 1000)


def parse_user_info(data: Any) -> UserProfile:
    """Build a profile from either a standard OIDC userinfo body or Clerk's format.

    Raises:
        MalformedResponseError: If neither format matches.
    """
    if not isinstance(data, dict):
        raise MalformedResponseError("Invalid user data received from OAuth provider")

    if data.get("sub") and data.get("email"):
        return UserProfile(
            id=data["sub"],
            email=data["email"],
            first_name=data.get("given_name"),
            last_name=data.get("family_name"),
            username=data.get("preferred_username"),
        )

    if data.get("id") and data.get("email_addresses"):
        addresses = data["email_addresses"]
        primary = next(
            (
                a
                for a in addresses
                if (a.get("verification") or {}).get("status") == "verified"
            ),
            addresses[0],
        )
        return UserProfile(
            id=data["id"],
            email=primary.get("email_address"),
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            username=data.get("username"),
        )

    raise MalformedResponseError(
        "Invalid user data format received from OAuth provider"
    )


class OAuthIdentityProvider:
    """Interactive identity provider using the browser and a local callback.

    Args:
        client_id: OAuth client id.
        oauth_domain: Host of the OAuth provider (no scheme).
        port: Local port for the callback server.
        timeout: Seconds to wait for the browser callback.
        notify: Called with progress messages meant for the user.
        open_browser: Called with the authorization URL.
    """

    def __init__(
        self,
        client_id: str,
        oauth_domain: str,
        port: int = DEFAULT_CALLBACK_PORT,
        timeout: float = DEFAULT_OAUTH_TIMEOUT,
        scopes: tuple[str, ...] = DEFAULT_SCOPES,
        notify: Callable[[str], None] | None = None,
        open_browser: Callable[[str], Any] = webbrowser.open,
        http_timeout: float | None = None,
    ):
        self.client_id = client_id
        self.oauth_domain = oauth_domain
        self.port = port
        self.timeout = timeout
        self.scopes = scopes
        self.notify = notify or logger.info
        self.open_browser = open_browser
        self.http_timeout = http_timeout
        self.callback_port: int | None = None

    @classmethod
    def from_settings(
        cls,
        settings: NtcliSettings | None = None,
        notify: Callable[[str], None] | None = None,
    ) -> "OAuthIdentityProvider":
        settings = settings or get_settings()
        return cls(
            client_id=settings.oauth_client_id,
            oauth_domain=settings.oauth_domain,
            port=settings.default_port,
            timeout=settings.oauth_timeout,
            notify=notify,
            http_timeout=settings.http_timeout,
        )

    @property
    def base_url(self) -> str:
        return f"https://{self.oauth_domain}/oauth"

    @property
    def redirect_uri(self) -> str:
        port = self.port if self.callback_port is None else self.callback_port
        return f"http://localhost:{port}/callback"

    def build_authorization_url(self, code_challenge: str, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.scopes),
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{self.base_url}/authorize?{urllib.parse.urlencode(params)}"

    # -------------------------------------------------------------------------
    # IdentityProvider interface
    # -------------------------------------------------------------------------

    def login(self) -> IdentitySession:
        """Run the interactive browser login.

        Raises:
            AuthRequiredError: The user denied access, the callback timed out,
                no callback port was free, or the state parameter did not
                match.
        """
        code_verifier, code_challenge = generate_pkce()
        state = secrets.token_urlsafe(16)

        server = self._start_callback_server()
        try:
            auth_url = self.build_authorization_url(code_challenge, state)
            result = self._wait_for_callback(server, auth_url)
        finally:
            server.server_close()

        if result.error:
            raise AuthRequiredError("Login failed", detail=result.error)
        if result.state != state:
            raise AuthRequiredError(
                "Login failed",
                detail="Invalid state parameter, possible CSRF attack",
            )
        if not result.code:
            raise AuthRequiredError(
                "Login failed", detail="No authorization code received"
            )

        self.notify("Exchanging authorization code for tokens...")
        tokens = self._token_request(
            {
                "grant_type": "authorization_code",
                "code": result.code,
                "redirect_uri": self.redirect_uri,
                "client_id": self.client_id,
                "code_verifier": code_verifier,
            },
            "Authorization code exchange",
        )
        return self._session_from_tokens(tokens)

    def refresh(self, session: IdentitySession) -> IdentitySession:
        """Obtain a new identity token using the session's refresh token.

        Raises:
            AuthRejectedError: No refresh token, or the provider refused it.
        """
        if not session.refresh_token:
            raise AuthRejectedError(
                "Identity refresh failed", detail="No refresh token"
            )

        tokens = self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": session.refresh_token,
                "client_id": self.client_id,
            },
            "Identity refresh",
        )
        return self._session_from_tokens(
            tokens,
            fallback_refresh_token=session.refresh_token,
            fallback_user=session.user,
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _start_callback_server(self) -> _CallbackServer:
        """Bind the callback server, moving to the next port while one is taken.

        Port 0 lets the OS choose. The bound port is kept in `callback_port`
        so that `redirect_uri` matches it.
        """
        if self.port == 0:
            ports = [0]
        else:
            ports = list(range(self.port, self.port + MAX_PORT_ATTEMPTS + 1))

        last_error: OSError | None = None
        for port in ports:
            try:
                server = _CallbackServer(("localhost", port), OAuthCallbackHandler)
            except OSError as e:
                if e.errno != errno.EADDRINUSE:
                    raise AuthRequiredError(
                        "Login failed",
                        detail=f"Failed to start callback server: {e}",
                    ) from e
                logger.debug(f"Callback port {port} in use")
                last_error = e
                continue
            self.callback_port = server.server_address[1]
            if port != self.port:
                logger.debug(f"Callback server listening on port {self.callback_port}")
            return server

        raise AuthRequiredError(
            "Login failed",
            detail=(
                f"Failed to start callback server: ports {ports[0]}-{ports[-1]} "
                f"are in use ({last_error})"
            ),
        )

    def _wait_for_callback(self, server: _CallbackServer, auth_url: str) -> AuthResult:
        server.timeout = 0.5
        self.notify("Opening browser for authentication...")
        self.notify(f"If the browser doesn't open, visit: {auth_url}")
        self.open_browser(auth_url)

        self.notify("Waiting for authentication...")
        deadline = time.monotonic() + self.timeout
        while server.auth_result is None and time.monotonic() < deadline:
            server.handle_request()

        if server.auth_result is None:
            raise AuthRequiredError(
                "Login failed",
                detail=f"Authentication timed out after {int(self.timeout)}s",
            )
        return server.auth_result

    def _token_request(self, data: dict[str, str], operation: str) -> dict[str, Any]:
        with get_http_client(timeout=self.http_timeout) as client:
            with transport_errors(operation):
                response = client.post(f"{self.base_url}/token", data=data)
            # invalid_grant and friends come back as 400
            if response.status_code in (400, 401, 403):
                raise AuthRejectedError(
                    f"{operation} failed",
                    status_code=response.status_code,
                    detail=extract_error_detail(response),
                )
            handle_response_error(response, operation)
            tokens = parse_json(response, operation)

        if not isinstance(tokens, dict) or not tokens.get("access_token"):
            raise MalformedResponseError(f"{operation} response missing access_token")
        return tokens

    def fetch_user_info(self, access_token: str) -> UserProfile:
        operation = "Fetch user info"
        with get_http_client(access_token, timeout=self.http_timeout) as client:
            with transport_errors(operation):
                response = client.get(
                    f"{self.base_url}/userinfo",
                    headers={"Accept": "application/json"},
                )
            handle_response_error(response, operation)
            return parse_user_info(parse_json(response, operation))

    def _session_from_tokens(
        self,
        tokens: dict[str, Any],
        fallback_refresh_token: str | None = None,
        fallback_user: UserProfile | None = None,
    ) -> IdentitySession:
        id_token = tokens.get("id_token")
        if not id_token:
            logger.warning("OAuth provider returned no id_token, using access token")
            id_token = tokens["access_token"]

        expires_in = tokens.get("expires_in")
        if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool):
            expires_at = expires_at_from_ttl(expires_in)
        else:
            expires_at = jwt_expiry(id_token)
            if expires_at is None:
                logger.warning(
                    "OAuth provider returned no token lifetime, "
                    f"assuming {DEFAULT_IDENTITY_TTL}s"
                )
                expires_at = expires_at_from_ttl(DEFAULT_IDENTITY_TTL)
            else:
                logger.debug("Identity expiry taken from the id_token exp claim")

        try:
            user = self.fetch_user_info(tokens["access_token"])
        except APIError as e:
            if fallback_user is None:
                raise
            logger.debug(f"Keeping previous user profile: {e}")
            user = fallback_user

        return IdentitySession(
            id_token=id_token,
            id_token_expires_at=expires_at,
            refresh_token=tokens.get("refresh_token") or fallback_refresh_token,
            user=user,
        )
