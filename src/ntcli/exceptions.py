"""ntcli exceptions.

This module provides exception classes for configuration, workspace lookup,
authentication and API errors, with clear error messages that can be
propagated to CLI output.
"""

from pathlib import Path


class NtcliError(Exception):
    """Base exception for all ntcli errors."""

    pass


class ConfigCorruptError(NtcliError):
    """The persisted configuration exists but cannot be parsed.

    Fatal: the user must fix the file or run 'ntcli config reset'.

    Attributes:
        path: Path of the unreadable file.
        reason: Parser or validation error message.
    """

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(
            f"Configuration file {path} is corrupt: {reason}. "
            "Fix it by hand or run 'ntcli config reset'."
        )


class WorkspaceNotFoundError(NtcliError):
    """A workspace name or id did not resolve locally or on the server.

    Attributes:
        identifier: The name or id that was looked up.
        known_workspaces: Local workspaces, as (name, id) pairs, to suggest.
        lookup_errors: Errors from lookup steps that could not complete
            (e.g. the server was unreachable), kept so that a transient
            failure is not reported as a plain "not found".
    """

    def __init__(
        self,
        identifier: str | None,
        known_workspaces: list[tuple[str, str]] | None = None,
        lookup_errors: list[Exception] | None = None,
    ):
        self.identifier = identifier
        self.known_workspaces = known_workspaces or []
        self.lookup_errors = lookup_errors or []
        if identifier is None:
            msg = "No active workspace"
        else:
            msg = f"Workspace '{identifier}' not found"
        super().__init__(msg)


class APIError(NtcliError):
    """Error communicating with a remote API.

    Attributes:
        status_code: HTTP status code (if available)
        detail: Error detail message from the API
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        detail: str | None = None,
    ):
        self.status_code = status_code
        self.detail = detail
        # Build a clear message
        parts = [message]
        if status_code:
            parts.append(f"(HTTP {status_code})")
        if detail:
            parts.append(f": {detail}")
        super().__init__(" ".join(parts))


class AuthenticationError(APIError):
    """Base class for missing or invalid identity credentials."""

    pass


class AuthRequiredError(AuthenticationError):
    """No usable identity credential and no way to obtain one.

    Run 'ntcli auth login' to authenticate.
    """

    def __init__(
        self,
        message: str = "Not authenticated. Run 'ntcli auth login' to log in.",
        detail: str | None = None,
    ):
        super().__init__(message, status_code=None, detail=detail)


class AuthRejectedError(AuthenticationError):
    """The server rejected a credential (401/403).

    Never retried with the same credential; the user has to log in again.
    """

    def __init__(
        self,
        message: str = "Authentication rejected",
        status_code: int | None = 401,
        detail: str | None = None,
    ):
        super().__init__(message, status_code, detail)


class ServiceUnavailableError(APIError):
    """The server failed with a 5xx status. Transient; retry later."""

    pass


class NetworkError(APIError):
    """The request never produced a response (DNS, refused, timeout)."""

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(message, status_code=None, detail=detail)


class MalformedResponseError(APIError):
    """The server answered successfully but broke the response contract."""

    pass


class NotFoundError(APIError):
    """Resource not found (404)."""

    def __init__(
        self,
        message: str = "Resource not found",
        detail: str | None = None,
    ):
        super().__init__(message, status_code=404, detail=detail)
