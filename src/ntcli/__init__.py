from importlib.metadata import version

from ntcli.exceptions import (
    APIError,
    AuthRejectedError,
    AuthRequiredError,
    ConfigCorruptError,
    MalformedResponseError,
    NetworkError,
    NtcliError,
    ServiceUnavailableError,
    WorkspaceNotFoundError,
)

__version__ = version("ntcli")

__all__ = [
    "__version__",
    "APIError",
    "AuthRejectedError",
    "AuthRequiredError",
    "ConfigCorruptError",
    "MalformedResponseError",
    "NetworkError",
    "NtcliError",
    "ServiceUnavailableError",
    "WorkspaceNotFoundError",
]
