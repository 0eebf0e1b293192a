"""Resolve a workspace name or id to an authenticated API session.

Lookup runs an ordered list of strategies, each returning a LookupResult:

1. LocalLookup: the config store, id first then name.
2. RemoteLookup: the server's workspace list; a match is recorded locally
   without a token, unless the resolver is told not to materialize it.

The first FOUND wins. Transient server failures are recorded as ERROR results
and the chain continues, so that "not found" and "server unreachable" can be
told apart in the final WorkspaceNotFoundError. Any other error propagates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

from ntcli.api.management import (
    ManagementClient,
    RemoteWorkspace,
    extract_workspace_uuid,
)
from ntcli.auth.manager import TokenManager
from ntcli.config import WorkspaceRecord
from ntcli.endpoints import Endpoints
from ntcli.exceptions import (
    NetworkError,
    ServiceUnavailableError,
    WorkspaceNotFoundError,
)
from ntcli.store import ConfigStore
from ntcli.tokens import classify

logger = logging.getLogger(__name__)

RECOVERABLE_LOOKUP_ERRORS = (NetworkError, ServiceUnavailableError)


class LookupStatus(StrEnum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass
class LookupResult:
    """Result of one lookup strategy."""

    status: LookupStatus
    record: WorkspaceRecord | None = None
    error: Exception | None = None


class WorkspaceLookup(Protocol):
    name: str

    def lookup(self, identifier: str) -> LookupResult: ...


class LocalLookup:
    name = "local"

    def __init__(self, store: ConfigStore):
        self.store = store

    def lookup(self, identifier: str) -> LookupResult:
        record = self.store.get_workspace(identifier)
        if record is None:
            return LookupResult(LookupStatus.NOT_FOUND)
        return LookupResult(LookupStatus.FOUND, record=record)


def match_remote_workspace(
    workspaces: list[RemoteWorkspace], identifier: str
) -> RemoteWorkspace | None:
    """Pick the server workspace with this id, else the first with this name."""
    for workspace in workspaces:
        if workspace.workspace_id == identifier:
            return workspace
    for workspace in workspaces:
        if workspace.workspace_name == identifier:
            return workspace
    return None


class RemoteLookup:
    """Search the server's workspace list, materializing a match locally.

    Requires a platform token, which may start a login when `interactive`.
    With `materialize` off, a match is returned without being stored.
    """

    name = "server"

    def __init__(
        self,
        store: ConfigStore,
        manager: TokenManager,
        interactive: bool = True,
        materialize: bool = True,
    ):
        self.store = store
        self.manager = manager
        self.interactive = interactive
        self.materialize = materialize

    def lookup(self, identifier: str) -> LookupResult:
        try:
            workspaces = self.manager.call_platform_api(
                lambda api: api.list_workspaces(), self.interactive
            )
        except RECOVERABLE_LOOKUP_ERRORS as e:
            logger.debug(f"Server lookup of '{identifier}' failed: {e}")
            return LookupResult(LookupStatus.ERROR, error=e)

        match = match_remote_workspace(workspaces, identifier)
        if match is None:
            return LookupResult(LookupStatus.NOT_FOUND)

        record = self.store.get_workspace(match.workspace_id)
        if record is None:
            record = WorkspaceRecord(
                workspace_id=match.workspace_id,
                workspace_name=match.workspace_name,
            )
            if self.materialize:
                logger.debug(f"Recording server workspace {match.workspace_id}")
                self.store.upsert_workspace(record)
        return LookupResult(LookupStatus.FOUND, record=record)


@dataclass
class WorkspaceSession:
    """Management API handle bound to a workspace token."""

    client: ManagementClient
    workspace_id: str
    workspace_name: str
    access_token: str
    endpoints: Endpoints
    record: WorkspaceRecord | None = field(default=None, repr=False)

    def close(self) -> None:
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class WorkspaceResolver:
    """Turns a workspace name or id into a WorkspaceSession.

    Usage:
        resolver = WorkspaceResolver(store, manager)
        with resolver.resolve("teamA") as session:
            ...
    """

    def __init__(
        self,
        store: ConfigStore,
        manager: TokenManager,
        lookups: list[WorkspaceLookup] | None = None,
        interactive: bool = True,
        materialize: bool = True,
    ):
        self.store = store
        self.manager = manager
        self.interactive = interactive
        self.lookups: list[WorkspaceLookup] = lookups or [
            LocalLookup(store),
            RemoteLookup(
                store, manager, interactive=interactive, materialize=materialize
            ),
        ]

    def _known_workspaces(self) -> list[tuple[str, str]]:
        return [
            (w.workspace_name, w.workspace_id) for w in self.store.list_workspaces()
        ]

    def find(self, identifier: str) -> WorkspaceRecord:
        """Find a workspace record, locally first and then on the server.

        Raises:
            WorkspaceNotFoundError: No strategy found it. Failed lookups are
                attached as `lookup_errors`.
        """
        errors: list[Exception] = []
        for lookup in self.lookups:
            result = lookup.lookup(identifier)
            if result.status is LookupStatus.FOUND and result.record is not None:
                logger.debug(f"Workspace '{identifier}' found by {lookup.name}")
                return result.record
            if result.status is LookupStatus.ERROR and result.error is not None:
                errors.append(result.error)

        raise WorkspaceNotFoundError(
            identifier,
            known_workspaces=self._known_workspaces(),
            lookup_errors=errors,
        )

    def find_or_active(self, identifier: str | None) -> WorkspaceRecord:
        """Like `find`, with None meaning the active workspace."""
        if identifier is not None:
            return self.find(identifier)
        record = self.store.get_active_workspace()
        if record is None:
            raise WorkspaceNotFoundError(
                None, known_workspaces=self._known_workspaces()
            )
        return record

    def resolve(
        self,
        identifier: str | None = None,
        force_refresh: bool = False,
        expires_in: int | None = None,
        expires_at: int | None = None,
    ) -> WorkspaceSession:
        """Resolve a workspace and make sure it carries a usable token.

        Args:
            identifier: Workspace name or id; None for the active workspace.
            force_refresh: Fetch a new token even if the cached one is valid.
            expires_in: Requested token lifetime in seconds when fetching.
            expires_at: Requested token expiry, epoch seconds, when fetching.

        Raises:
            WorkspaceNotFoundError: Unknown workspace, or no active workspace.
        """
        record = self.find_or_active(identifier)

        state = classify(
            record.access_token,
            record.token_expires_at,
            skew_seconds=self.manager.skew_seconds,
        )
        if force_refresh or state.needs_refresh:
            logger.debug(f"Token of workspace {record.workspace_id} is {state}")
            record = self.manager.fetch_workspace_token(
                record.workspace_id,
                expires_in=expires_in,
                interactive=self.interactive,
                expires_at=expires_at,
            )

        assert record.access_token is not None
        endpoints = self.manager.endpoints
        return WorkspaceSession(
            client=ManagementClient(
                endpoints.management,
                record.access_token,
                token_type=record.token_type,
            ),
            workspace_id=record.workspace_id,
            workspace_name=record.workspace_name,
            access_token=record.access_token,
            endpoints=endpoints,
            record=record,
        )


@dataclass
class SyncResult:
    """Outcome of reconciling local workspace records with the server."""

    in_sync: list[WorkspaceRecord] = field(default_factory=list)
    added: list[WorkspaceRecord] = field(default_factory=list)
    renamed: list[WorkspaceRecord] = field(default_factory=list)
    local_only: list[WorkspaceRecord] = field(default_factory=list)
    removed: list[WorkspaceRecord] = field(default_factory=list)


def sync_workspaces(
    store: ConfigStore, remote: list[RemoteWorkspace], prune: bool = False
) -> SyncResult:
    """Bring local workspace records in line with the server's list.

    Records are matched on the workspace UUID, so "<name>-<uuid>" ids and
    bare UUIDs refer to the same workspace. Server workspaces missing locally
    are recorded without a token; renamed ones take the server's name and
    keep their token. Local records the server does not list are kept unless
    `prune` is set.
    """
    result = SyncResult()
    local = {
        extract_workspace_uuid(w.workspace_id): w for w in store.list_workspaces()
    }
    remote_uuids = set()

    for workspace in remote:
        uuid = extract_workspace_uuid(workspace.workspace_id)
        remote_uuids.add(uuid)
        record = local.get(uuid)
        if record is None:
            record = store.upsert_workspace(
                WorkspaceRecord(
                    workspace_id=workspace.workspace_id,
                    workspace_name=workspace.workspace_name,
                )
            )
            result.added.append(record)
        elif record.workspace_name != workspace.workspace_name:
            record = store.upsert_workspace(
                record.model_copy(update={"workspace_name": workspace.workspace_name})
            )
            result.renamed.append(record)
        else:
            result.in_sync.append(record)

    for uuid, record in local.items():
        if uuid in remote_uuids:
            continue
        if prune:
            store.remove_workspace(record.workspace_id)
            result.removed.append(record)
        else:
            result.local_only.append(record)

    logger.debug(
        f"Workspace sync: {len(result.added)} added, {len(result.renamed)} renamed, "
        f"{len(result.removed)} removed"
    )
    return result
