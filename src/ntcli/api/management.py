"""Client for the NimbleTools management API (workspaces and workspace tokens)."""

import logging
import re
from typing import Any, TypeVar

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from ntcli.api._http import (
    get_http_client,
    handle_response_error,
    parse_json,
    transport_errors,
)
from ntcli.exceptions import MalformedResponseError

logger = logging.getLogger(__name__)

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

ModelT = TypeVar("ModelT", bound=BaseModel)


def extract_workspace_uuid(workspace_id: str) -> str:
    """Reduce a "<name>-<uuid>" workspace id to the UUID used in API paths.

    Ids that are already a UUID, or that have too few parts to hold one, are
    returned unchanged.
    """
    if _UUID_RE.match(workspace_id):
        return workspace_id
    parts = workspace_id.split("-")
    if len(parts) >= 5:
        return "-".join(parts[-5:])
    return workspace_id


# --- Response models ---


class RemoteWorkspace(BaseModel):
    """A workspace as listed by the server."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    workspace_id: str = Field(validation_alias=AliasChoices("workspace_id", "id"))
    workspace_name: str = Field(
        validation_alias=AliasChoices("workspace_name", "name")
    )
    description: str | None = None
    created: str | None = None


class WorkspaceTokenGrant(BaseModel):
    """A workspace-scoped access token issued by the server.

    `expires_in` is None for tokens issued without an expiry.
    """

    model_config = ConfigDict(extra="ignore")

    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    scope: list[str] = Field(default_factory=list)
    jti: str | None = None
    message: str | None = None


class CreatedWorkspace(RemoteWorkspace):
    """Response to workspace creation, which also carries a first token."""

    access_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None
    scope: list[str] = Field(default_factory=list)
    jti: str | None = None
    message: str | None = None

    def token_grant(self) -> WorkspaceTokenGrant | None:
        if not self.access_token:
            return None
        return WorkspaceTokenGrant(
            access_token=self.access_token,
            token_type=self.token_type,
            expires_in=self.expires_in,
            scope=self.scope,
            jti=self.jti,
            message=self.message,
        )


class WorkspaceTokenInfo(BaseModel):
    """An active token of a workspace, as listed by the server."""

    model_config = ConfigDict(extra="ignore")

    jti: str
    created_at: float | None = None


def _validate(model: type[ModelT], data: Any, operation: str) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MalformedResponseError(
            f"{operation} returned an unexpected response", detail=str(e)
        ) from e


class ManagementClient:
    """Management API handle authorized by a single bearer token.

    The token is either a platform token (account-level calls such as listing
    workspaces and issuing workspace tokens) or a workspace token (calls
    scoped to one workspace).

    Usage:
        with ManagementClient(endpoints.management, platform.access_token) as api:
            workspaces = api.list_workspaces()
    """

    def __init__(
        self,
        base_url: str,
        access_token: str | None,
        timeout: float | None = None,
        token_type: str = "Bearer",
    ):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.token_type = token_type
        self.timeout = timeout
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = get_http_client(
                access_token=self.access_token,
                timeout=self.timeout,
                token_type=self.token_type,
            )
        return self._client

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        json: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug(f"{operation}: {method} {url}")
        with transport_errors(operation):
            response = self.client.request(method, url, json=json)
        logger.debug(f"{operation}: HTTP {response.status_code}")
        handle_response_error(response, operation)
        if not response.content:
            return None
        return parse_json(response, operation)

    # -------------------------------------------------------------------------
    # Workspaces
    # -------------------------------------------------------------------------

    def list_workspaces(self) -> list[RemoteWorkspace]:
        operation = "List workspaces"
        data = self._request("GET", "/v1/workspaces", operation)
        if not isinstance(data, dict) or not isinstance(data.get("workspaces"), list):
            raise MalformedResponseError(f"{operation} response missing workspaces")
        return [
            _validate(RemoteWorkspace, item, operation) for item in data["workspaces"]
        ]

    def create_workspace(
        self, name: str, description: str | None = None
    ) -> CreatedWorkspace:
        operation = f"Create workspace {name}"
        body: dict[str, Any] = {"name": name}
        if description:
            body["description"] = description
        data = self._request("POST", "/v1/workspaces", operation, json=body)
        workspace = _validate(CreatedWorkspace, data, operation)
        logger.info(f"Created workspace: {workspace.workspace_name}")
        return workspace

    def delete_workspace(self, workspace_id: str) -> None:
        uuid = extract_workspace_uuid(workspace_id)
        operation = f"Delete workspace {workspace_id}"
        self._request("DELETE", f"/v1/workspaces/{uuid}", operation)
        logger.info(f"Deleted workspace: {workspace_id}")

    # -------------------------------------------------------------------------
    # Workspace tokens
    # -------------------------------------------------------------------------

    def issue_workspace_token(
        self,
        workspace_id: str,
        expires_in: int | None = None,
        expires_at: int | None = None,
    ) -> WorkspaceTokenGrant:
        """Issue a new workspace-scoped token.

        Args:
            workspace_id: Workspace id, with or without the name prefix.
            expires_in: Requested lifetime in seconds (server default if None).
            expires_at: Requested absolute expiry, epoch seconds.
        """
        uuid = extract_workspace_uuid(workspace_id)
        operation = f"Issue token for workspace {workspace_id}"
        body: dict[str, Any] = {}
        if expires_in is not None:
            body["expires_in"] = expires_in
        if expires_at is not None:
            body["expires_at"] = expires_at
        data = self._request(
            "POST", f"/v1/workspaces/{uuid}/tokens", operation, json=body
        )
        return _validate(WorkspaceTokenGrant, data, operation)

    def list_workspace_tokens(self, workspace_id: str) -> list[WorkspaceTokenInfo]:
        """List the active tokens of a workspace.

        Requires a client bound to a token of that workspace.
        """
        uuid = extract_workspace_uuid(workspace_id)
        operation = f"List tokens of workspace {workspace_id}"
        data = self._request("GET", f"/v1/workspaces/{uuid}/tokens", operation)
        if not isinstance(data, dict) or not isinstance(data.get("tokens"), list):
            raise MalformedResponseError(f"{operation} response missing tokens")
        return [
            _validate(WorkspaceTokenInfo, item, operation) for item in data["tokens"]
        ]

    def revoke_workspace_token(self, workspace_id: str, jti: str) -> str | None:
        """Revoke one workspace token by its id; returns the server's message."""
        uuid = extract_workspace_uuid(workspace_id)
        operation = f"Revoke token {jti}"
        data = self._request(
            "POST", f"/v1/workspaces/{uuid}/tokens/{jti}/revoke", operation
        )
        logger.info(f"Revoked token {jti} of workspace {workspace_id}")
        if isinstance(data, dict) and isinstance(data.get("message"), str):
            return data["message"]
        return None

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
