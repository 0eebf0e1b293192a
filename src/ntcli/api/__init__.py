from ntcli.api.management import (
    CreatedWorkspace,
    ManagementClient,
    RemoteWorkspace,
    WorkspaceTokenGrant,
    WorkspaceTokenInfo,
    extract_workspace_uuid,
)

__all__ = [
    "CreatedWorkspace",
    "ManagementClient",
    "RemoteWorkspace",
    "WorkspaceTokenGrant",
    "WorkspaceTokenInfo",
    "extract_workspace_uuid",
]
