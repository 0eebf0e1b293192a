"""Shared HTTP client utilities for NimbleTools API calls."""

import logging
from contextlib import contextmanager
from typing import Any, Iterator

import httpx

from ntcli import __version__
from ntcli.config import get_settings
from ntcli.exceptions import (
    APIError,
    AuthRejectedError,
    MalformedResponseError,
    NetworkError,
    NotFoundError,
    ServiceUnavailableError,
)

logger = logging.getLogger(__name__)

USER_AGENT = f"ntcli/{__version__}"


def get_http_client(
    access_token: str | None = None,
    timeout: float | None = None,
    token_type: str = "Bearer",
) -> httpx.Client:
    """Create an HTTP client with the ntcli user agent and optional auth."""
    headers = {"User-Agent": USER_AGENT}
    if access_token:
        headers["Authorization"] = f"{token_type} {access_token}"
    if timeout is None:
        timeout = get_settings().http_timeout
    return httpx.Client(timeout=timeout, headers=headers)


def extract_error_detail(response: httpx.Response) -> str | None:
    """Best-effort error message from a response body.

    JSON bodies are searched for `detail`, `message`, `error` and
    `error.message`; anything else falls back to the raw text.
    """
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] if response.text else None

    if isinstance(data, dict):
        for key in ("detail", "message"):
            if data.get(key):
                return str(data[key])
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if error:
            return str(error)
    return str(data)


def handle_response_error(
    response: httpx.Response, operation: str = "API operation"
) -> None:
    """Check response for errors and raise appropriate exceptions.

    Raises:
        AuthRejectedError: 401 or 403.
        NotFoundError: 404.
        ServiceUnavailableError: 5xx.
        APIError: Any other 4xx.
    """
    if response.status_code < 400:
        return

    detail = extract_error_detail(response)
    status_code = response.status_code
    message = f"{operation} failed"

    if status_code in (401, 403):
        raise AuthRejectedError(message, status_code=status_code, detail=detail)
    if status_code == 404:
        raise NotFoundError(message, detail=detail)
    if status_code >= 500:
        raise ServiceUnavailableError(message, status_code=status_code, detail=detail)
    raise APIError(message, status_code=status_code, detail=detail)


def parse_json(response: httpx.Response, operation: str) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise MalformedResponseError(
            f"{operation} returned invalid JSON",
            status_code=response.status_code,
            detail=response.text[:200] or str(e),
        ) from e


@contextmanager
def transport_errors(operation: str) -> Iterator[None]:
    """Turn httpx transport failures (DNS, refused, timeout) into NetworkError."""
    try:
        yield
    except httpx.RequestError as e:
        logger.debug(f"{operation}: {type(e).__name__}: {e}")
        raise NetworkError(
            f"{operation} failed", detail=str(e) or type(e).__name__
        ) from e
