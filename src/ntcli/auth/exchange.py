"""Exchange an OAuth identity token for a NimbleTools platform token."""

import logging

import httpx
from pydantic import ValidationError

from ntcli.api._http import (
    get_http_client,
    handle_response_error,
    parse_json,
    transport_errors,
)
from ntcli.config import PlatformToken
from ntcli.exceptions import MalformedResponseError
from ntcli.tokens import expires_at_from_ttl

logger = logging.getLogger(__name__)

TOKEN_EXCHANGE_PATH = "/api/v1/auth/token-exchange"


def _truncate(token: str, length: int = 12) -> str:
    return token[:length] + "..." if len(token) > length else token


class TokenExchangeClient:
    """Client for the identity service token-exchange endpoint.

    Failures are mapped onto the ntcli exception hierarchy and never retried.

    Usage:
        with TokenExchangeClient(endpoints.identity) as exchange:
            platform = exchange.exchange(session.id_token)
    """

    def __init__(self, identity_url: str, timeout: float | None = None):
        self.identity_url = identity_url.rstrip("/")
        self.timeout = timeout
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = get_http_client(timeout=self.timeout)
        return self._client

    @property
    def url(self) -> str:
        return f"{self.identity_url}{TOKEN_EXCHANGE_PATH}"

    def exchange(self, id_token: str) -> PlatformToken:
        """Exchange an identity token for a platform bearer token.

        Raises:
            AuthRejectedError: The identity token was rejected (401/403).
            ServiceUnavailableError: The identity service failed (5xx).
            MalformedResponseError: The response lacks an access token.
            NetworkError: The request did not complete.
            APIError: Any other HTTP error.
        """
        operation = "Token exchange"
        logger.debug(f"{operation} request: POST {self.url}")
        logger.debug(f"{operation} identity token: {_truncate(id_token)}")

        with transport_errors(operation):
            response = self.client.post(self.url, json={"oauth_token": id_token})

        logger.debug(f"{operation} response status: {response.status_code}")
        if response.status_code >= 400:
            logger.debug(f"{operation} error body: {response.text[:500]}")
        handle_response_error(response, operation)

        data = parse_json(response, operation)
        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token or not isinstance(access_token, str):
            raise MalformedResponseError(
                f"{operation} response missing access_token",
                status_code=response.status_code,
            )

        expires_in = data.get("expires_in")
        expires_at = None
        if isinstance(expires_in, (int, float)) and expires_in > 0:
            expires_at = expires_at_from_ttl(expires_in)

        try:
            platform = PlatformToken(
                access_token=access_token,
                token_type=data.get("token_type") or "Bearer",
                expires_at=expires_at,
            )
        except ValidationError as e:
            raise MalformedResponseError(
                f"{operation} returned an unexpected response",
                status_code=response.status_code,
                detail=str(e),
            ) from e

        logger.debug(f"{operation} succeeded, token expires at {expires_at}")
        return platform

    # -------------------------------------------------------------------------
    # Client lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
