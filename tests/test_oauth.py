import base64
import hashlib
import json
import socket
import threading
import urllib.error
import urllib.parse
import urllib.request

import httpx
import pytest

from ntcli.auth.oauth import (
    AuthResult,
    OAuthCallbackHandler,
    OAuthIdentityProvider,
    _CallbackServer,
    generate_pkce,
    jwt_expiry,
    parse_user_info,
)
from ntcli.config import IdentitySession, UserProfile, get_settings
from ntcli.exceptions import (
    AuthRejectedError,
    AuthRequiredError,
    MalformedResponseError,
    ServiceUnavailableError,
)
from ntcli.testing import temp_env_vars
from ntcli.tokens import seconds_remaining

OAUTH_URL = "https://clerk.example.com/oauth"

CLERK_USER = {
    "id": "user_2abc",
    "first_name": "Ada",
    "last_name": "Lovelace",
    "email_addresses": [
        {"email_address": "old@example.com", "verification": {"status": "unverified"}},
        {"email_address": "ada@example.com", "verification": {"status": "verified"}},
    ],
}


@pytest.fixture
def oauth_provider():
    return OAuthIdentityProvider(
        client_id="client-123",
        oauth_domain="clerk.example.com",
        port=41247,
        notify=lambda message: None,
        open_browser=lambda url: True,
    )


def test_generate_pkce():
    verifier, challenge = generate_pkce()
    expected = (
        base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
        .rstrip(b"=")
        .decode()
    )
    assert challenge == expected
    assert len(verifier) >= 43
    assert generate_pkce()[0] != verifier


def test_authorization_url(oauth_provider):
    url = oauth_provider.build_authorization_url("challenge", "state-1")
    parsed = urllib.parse.urlparse(url)
    params = dict(urllib.parse.parse_qsl(parsed.query))

    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == (
        f"{OAUTH_URL}/authorize"
    )
    assert params == {
        "client_id": "client-123",
        "response_type": "code",
        "redirect_uri": "http://localhost:41247/callback",
        "scope": "openid email profile",
        "state": "state-1",
        "code_challenge": "challenge",
        "code_challenge_method": "S256",
    }


def test_from_settings_reads_legacy_env_vars():
    with temp_env_vars(
        {
            "CLERK_OAUTH_CLIENT_ID": "legacy-client",
            "CLERK_OAUTH_DOMAIN": "auth.example.org",
            "NTCLI_DEFAULT_PORT": "5555",
        }
    ):
        provider = OAuthIdentityProvider.from_settings(get_settings())
    assert provider.client_id == "legacy-client"
    assert provider.base_url == "https://auth.example.org/oauth"
    assert provider.redirect_uri == "http://localhost:5555/callback"


class TestParseUserInfo:
    def test_oidc_format(self):
        profile = parse_user_info(
            {
                "sub": "user_1",
                "email": "dev@example.com",
                "given_name": "Dev",
                "family_name": "Eloper",
            }
        )
        assert profile == UserProfile(
            id="user_1", email="dev@example.com", first_name="Dev", last_name="Eloper"
        )
        assert profile.display_name == "Dev Eloper"

    def test_clerk_format_prefers_verified_email(self):
        profile = parse_user_info(CLERK_USER)
        assert profile.id == "user_2abc"
        assert profile.email == "ada@example.com"
        assert profile.display_name == "Ada Lovelace"

    def test_clerk_format_without_verified_email(self):
        data = dict(
            CLERK_USER,
            email_addresses=[{"email_address": "only@example.com"}],
        )
        assert parse_user_info(data).email == "only@example.com"

    @pytest.mark.parametrize(
        "data", [None, [], {}, {"sub": "user_1"}, {"id": "user_1"}]
    )
    def test_unknown_format(self, data):
        with pytest.raises(MalformedResponseError):
            parse_user_info(data)


class TestCallbackHandler:
    def _serve_one(self, query: str) -> tuple[int, AuthResult | None]:
        server = _CallbackServer(("127.0.0.1", 0), OAuthCallbackHandler)
        port = server.server_address[1]
        thread = threading.Thread(target=server.handle_request)
        thread.start()
        try:
            url = f"http://127.0.0.1:{port}/callback?{query}"
            try:
                with urllib.request.urlopen(url, timeout=5) as response:
                    status = response.status
            except urllib.error.HTTPError as e:
                status = e.code
        finally:
            thread.join(timeout=5)
            server.server_close()
        return status, server.auth_result

    def test_success(self):
        status, result = self._serve_one("code=abc&state=xyz")
        assert status == 200
        assert result == AuthResult(code="abc", state="xyz")

    def test_provider_error(self):
        status, result = self._serve_one(
            "error=access_denied&error_description=User+cancelled"
        )
        assert status == 400
        assert result.error == "access_denied: User cancelled"

    def test_missing_code(self):
        status, result = self._serve_one("state=xyz")
        assert status == 400
        assert result.code is None
        assert result.error


class TestLogin:
    def _answer_with(self, oauth_provider, monkeypatch, **overrides):
        def fake_wait(server, auth_url: str) -> AuthResult:
            params = dict(urllib.parse.parse_qsl(urllib.parse.urlparse(auth_url).query))
            result = AuthResult(code="auth-code", state=params["state"])
            for name, value in overrides.items():
                setattr(result, name, value)
            return result

        monkeypatch.setattr(oauth_provider, "_wait_for_callback", fake_wait)

    def test_login(self, oauth_provider, monkeypatch, respx_mock):
        self._answer_with(oauth_provider, monkeypatch)
        token_route = respx_mock.post(f"{OAUTH_URL}/token").mock(
            return_value=httpx.Response(
                200,
                json={
                    "access_token": "oauth-access",
                    "id_token": "oauth-id",
                    "refresh_token": "oauth-refresh",
                    "expires_in": 3600,
                },
            )
        )
        userinfo_route = respx_mock.get(f"{OAUTH_URL}/userinfo").mock(
            return_value=httpx.Response(200, json=CLERK_USER)
        )

        session = oauth_provider.login()

        assert session.id_token == "oauth-id"
        assert session.refresh_token == "oauth-refresh"
        assert 3590 <= seconds_remaining(session.id_token_expires_at) <= 3600
        assert session.user.email == "ada@example.com"
        body = token_route.calls.last.request.content.decode()
        form = dict(urllib.parse.parse_qsl(body))
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "auth-code"
        assert form["client_id"] == "client-123"
        assert form["code_verifier"]
        assert userinfo_route.calls.last.request.headers["Authorization"] == (
            "Bearer oauth-access"
        )

    @pytest.mark.parametrize(
        "overrides",
        [
            {"state": "forged"},
            {"code": None},
            {"error": "access_denied: User cancelled"},
        ],
    )
    def test_login_rejects_bad_callback(
        self, oauth_provider, monkeypatch, respx_mock, overrides
    ):
        self._answer_with(oauth_provider, monkeypatch, **overrides)
        with pytest.raises(AuthRequiredError):
            oauth_provider.login()
        assert respx_mock.calls.call_count == 0

    def test_callback_timeout(self, monkeypatch):
        provider = OAuthIdentityProvider(
            client_id="client-123",
            oauth_domain="clerk.example.com",
            port=0,
            timeout=0.1,
            notify=lambda message: None,
            open_browser=lambda url: True,
        )
        with pytest.raises(AuthRequiredError) as exc_info:
            provider.login()
        assert "timed out" in str(exc_info.value)


@pytest.fixture
def busy_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("localhost", 0))
    sock.listen(1)
    yield sock.getsockname()[1]
    sock.close()


class TestCallbackPort:
    def _provider(self, port: int) -> OAuthIdentityProvider:
        return OAuthIdentityProvider(
            client_id="client-123",
            oauth_domain="clerk.example.com",
            port=port,
            notify=lambda message: None,
            open_browser=lambda url: True,
        )

    def test_taken_port_moves_to_next(self, busy_port, monkeypatch):
        provider = self._provider(busy_port)
        seen = {}

        def fake_wait(server, auth_url: str) -> AuthResult:
            seen["bound"] = server.server_address[1]
            params = dict(urllib.parse.parse_qsl(urllib.parse.urlparse(auth_url).query))
            seen["redirect_uri"] = params["redirect_uri"]
            return AuthResult(error="access_denied: User cancelled")

        monkeypatch.setattr(provider, "_wait_for_callback", fake_wait)

        with pytest.raises(AuthRequiredError):
            provider.login()

        assert seen["bound"] != busy_port
        assert busy_port < seen["bound"] <= busy_port + 10
        assert seen["redirect_uri"] == f"http://localhost:{seen['bound']}/callback"
        assert provider.redirect_uri == seen["redirect_uri"]

    def test_no_free_port(self, busy_port, monkeypatch):
        monkeypatch.setattr("ntcli.auth.oauth.MAX_PORT_ATTEMPTS", 0)
        provider = self._provider(busy_port)

        with pytest.raises(AuthRequiredError) as exc_info:
            provider.login()

        assert "Failed to start callback server" in str(exc_info.value)


def _jwt(claims: dict) -> str:
    payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).rstrip(b"=")
    return f"header.{payload.decode()}.signature"


class TestIdentityExpiry:
    def test_jwt_expiry(self):
        assert jwt_expiry(_jwt({"exp": 1704067200})) == 1704067200000

    @pytest.mark.parametrize(
        "token", ["opaque-token", _jwt({"sub": "user_1"}), "a.!!!.c", _jwt([1])]
    )
    def test_jwt_expiry_unreadable(self, token):
        assert jwt_expiry(token) is None

    def test_expiry_from_id_token_claim(self, oauth_provider, respx_mock):
        id_token = _jwt({"exp": 4102444800})
        respx_mock.post(f"{OAUTH_URL}/token").mock(
            return_value=httpx.Response(
                200, json={"access_token": "new-access", "id_token": id_token}
            )
        )
        respx_mock.get(f"{OAUTH_URL}/userinfo").mock(
            return_value=httpx.Response(
                200, json={"sub": "user_1", "email": "dev@example.com"}
            )
        )
        session = IdentitySession(id_token="old", refresh_token="old-refresh")

        refreshed = oauth_provider.refresh(session)

        assert refreshed.id_token_expires_at == 4102444800000

    def test_default_lifetime_without_expiry(self, oauth_provider, respx_mock):
        respx_mock.post(f"{OAUTH_URL}/token").mock(
            return_value=httpx.Response(
                200, json={"access_token": "new-access", "id_token": "opaque"}
            )
        )
        respx_mock.get(f"{OAUTH_URL}/userinfo").mock(
            return_value=httpx.Response(
                200, json={"sub": "user_1", "email": "dev@example.com"}
            )
        )
        session = IdentitySession(id_token="old", refresh_token="old-refresh")

        refreshed = oauth_provider.refresh(session)

        assert 3590 <= seconds_remaining(refreshed.id_token_expires_at) <= 3600


class TestRefresh:
    @pytest.fixture
    def session(self):
        return IdentitySession(
            id_token="old-id",
            id_token_expires_at=0,
            refresh_token="old-refresh",
            user=UserProfile(id="user_1", email="dev@example.com"),
        )

    def test_refresh(self, oauth_provider, session, respx_mock):
        token_route = respx_mock.post(f"{OAUTH_URL}/token").mock(
            return_value=httpx.Response(
                200,
                json={
                    "access_token": "new-access",
                    "id_token": "new-id",
                    "expires_in": 60,
                },
            )
        )
        respx_mock.get(f"{OAUTH_URL}/userinfo").mock(
            return_value=httpx.Response(
                200, json={"sub": "user_1", "email": "new@example.com"}
            )
        )

        refreshed = oauth_provider.refresh(session)

        assert refreshed.id_token == "new-id"
        assert refreshed.refresh_token == "old-refresh"
        assert refreshed.user.email == "new@example.com"
        body = token_route.calls.last.request.content.decode()
        form = dict(urllib.parse.parse_qsl(body))
        assert form == {
            "grant_type": "refresh_token",
            "refresh_token": "old-refresh",
            "client_id": "client-123",
        }

    def test_refresh_keeps_user_when_userinfo_fails(
        self, oauth_provider, session, respx_mock
    ):
        respx_mock.post(f"{OAUTH_URL}/token").mock(
            return_value=httpx.Response(
                200, json={"access_token": "new-access", "refresh_token": "rotated"}
            )
        )
        respx_mock.get(f"{OAUTH_URL}/userinfo").mock(return_value=httpx.Response(500))

        refreshed = oauth_provider.refresh(session)

        # Without an id_token the access token stands in for it
        assert refreshed.id_token == "new-access"
        assert refreshed.refresh_token == "rotated"
        assert refreshed.user == session.user

    @pytest.mark.parametrize("status_code", [400, 401, 403])
    def test_refresh_rejected(self, oauth_provider, session, respx_mock, status_code):
        respx_mock.post(f"{OAUTH_URL}/token").mock(
            return_value=httpx.Response(status_code, json={"error": "invalid_grant"})
        )
        with pytest.raises(AuthRejectedError) as exc_info:
            oauth_provider.refresh(session)
        assert exc_info.value.detail == "invalid_grant"

    def test_refresh_server_error(self, oauth_provider, session, respx_mock):
        respx_mock.post(f"{OAUTH_URL}/token").mock(return_value=httpx.Response(503))
        with pytest.raises(ServiceUnavailableError):
            oauth_provider.refresh(session)

    def test_refresh_without_refresh_token(self, oauth_provider, session, respx_mock):
        session.refresh_token = None
        with pytest.raises(AuthRejectedError):
            oauth_provider.refresh(session)
        assert respx_mock.calls.call_count == 0
