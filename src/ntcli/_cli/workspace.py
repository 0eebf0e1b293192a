"""Workspace commands: list, switch, sync, create and delete workspaces."""

import typer

from ntcli._cli._common import (
    build_resolver,
    build_token_manager,
    describe_token,
    get_store,
    handle_errors,
)
from ntcli.api.management import RemoteWorkspace
from ntcli.config import WorkspaceRecord
from ntcli.exceptions import (
    AuthenticationError,
    NetworkError,
    NotFoundError,
    ServiceUnavailableError,
)
from ntcli.tokens import NON_EXPIRING_TOKEN_TTL, expires_at_from_ttl
from ntcli.workspace import sync_workspaces

app = typer.Typer(help="Manage workspaces")


@app.command("list")
def list_workspaces(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show creation time and token details"
    ),
) -> None:
    """List workspaces.

    When logged in, server workspaces are merged with the local token state.
    Otherwise only locally known workspaces are shown; this command never
    starts a login.
    """
    store = get_store()
    with handle_errors():
        manager = build_token_manager(store)
        remote: list[RemoteWorkspace] | None = None
        try:
            remote = manager.call_platform_api(
                lambda api: api.list_workspaces(), interactive=False
            )
        except AuthenticationError:
            typer.echo("Not logged in, showing local workspaces only.")
            typer.echo("")
        except (NetworkError, ServiceUnavailableError) as e:
            typer.echo(f"Warning: Could not reach the server: {e}", err=True)
            typer.echo("Showing local workspaces only.")
            typer.echo("")

        local = {w.workspace_id: w for w in store.list_workspaces()}
        active = store.get_active_workspace()

    rows: list[tuple[str, str, str | None]] = []
    if remote is not None:
        for workspace in remote:
            rows.append(
                (workspace.workspace_id, workspace.workspace_name, workspace.created)
            )
    seen = {row[0] for row in rows}
    for workspace_id, record in local.items():
        if workspace_id not in seen:
            rows.append((workspace_id, record.workspace_name, record.created_at))

    if not rows:
        typer.echo("No workspaces found.")
        typer.echo("Create one with: ntcli workspace create <name>")
    else:
        typer.echo("Workspaces:")
        active_id = active.workspace_id if active else None
        for workspace_id, name, created in rows:
            marker = "*" if workspace_id == active_id else " "
            typer.echo(f"{marker} {name} ({workspace_id})")
            record = local.get(workspace_id)
            if verbose:
                if created:
                    typer.echo(f"    Created: {created}")
                if record is not None and record.scope:
                    typer.echo(f"    Scope: {', '.join(record.scope)}")
            if record is None:
                typer.echo("    Token: not stored locally")
            else:
                token_state = describe_token(
                    record.access_token, record.token_expires_at
                )
                typer.echo(f"    Token: {token_state}")

    typer.echo("")
    if active is not None:
        typer.echo(f"Active workspace: {active.workspace_name}")
    else:
        typer.echo("No active workspace")
        typer.echo("Select one with: ntcli workspace switch <name>")


@app.command()
def switch(
    name: str = typer.Argument(..., help="Workspace name or id"),
    no_token: bool = typer.Option(
        False, "--no-token", help="Switch without fetching a workspace token"
    ),
) -> None:
    """Switch the active workspace.

    The workspace is looked up locally, then on the server. A workspace
    token is fetched unless the cached one is still valid.
    """
    store = get_store()
    with handle_errors():
        manager = build_token_manager(store)
        resolver = build_resolver(store, manager)
        record = resolver.find(name)
        if not no_token:
            record = resolver.resolve(record.workspace_id).record or record
        store.set_active_workspace(record.workspace_id)

    typer.echo(f"Active workspace: {record.workspace_name} ({record.workspace_id})")
    typer.echo(
        "  Token: " + describe_token(record.access_token, record.token_expires_at)
    )


@app.command()
def sync(
    prune: bool = typer.Option(
        False, "--prune", help="Remove local workspaces the server no longer lists"
    ),
) -> None:
    """Reconcile local workspace records with the server.

    Workspaces found only on the server are recorded without a token and
    renamed ones take the server's name. Local-only workspaces are reported,
    or removed with --prune.
    """
    store = get_store()
    with handle_errors():
        manager = build_token_manager(store)
        remote = manager.call_platform_api(lambda api: api.list_workspaces())
        previous_active = store.get_active_workspace()
        result = sync_workspaces(store, remote, prune=prune)
        active = store.get_active_workspace()

    typer.echo("Workspace sync completed")
    typer.echo(f"  Server workspaces: {len(remote)}")
    typer.echo(f"  In sync: {len(result.in_sync)}")
    typer.echo(f"  Added from server: {len(result.added)}")
    typer.echo(f"  Renamed: {len(result.renamed)}")
    typer.echo(f"  Local only: {len(result.local_only)}")
    if prune:
        typer.echo(f"  Removed: {len(result.removed)}")

    if result.added:
        typer.echo("")
        typer.echo("Added (no token yet, get one with: ntcli token refresh <name>):")
        for record in result.added:
            typer.echo(f"  {record.workspace_name} ({record.workspace_id})")
    if result.local_only:
        typer.echo("")
        typer.echo("Not found on the server (remove with --prune):")
        for record in result.local_only:
            typer.echo(f"  {record.workspace_name} ({record.workspace_id})")
    if result.removed:
        typer.echo("")
        typer.echo("Removed:")
        for record in result.removed:
            typer.echo(f"  {record.workspace_name} ({record.workspace_id})")
    if previous_active is not None and active is None:
        typer.echo("")
        typer.echo("No active workspace (the active one was removed)")


@app.command()
def clear() -> None:
    """Clear the active workspace."""
    store = get_store()
    with handle_errors():
        previous = store.clear_active_workspace()
    if previous is None:
        typer.echo("No active workspace.")
    else:
        typer.echo(f"Cleared active workspace: {previous.workspace_name}")


@app.command()
def create(
    name: str = typer.Argument(..., help="Workspace name"),
    description: str = typer.Option(
        None, "--description", "-d", help="Workspace description"
    ),
) -> None:
    """Create a new workspace on the server.

    The first workspace created becomes the active one.
    """
    store = get_store()
    with handle_errors():
        manager = build_token_manager(store)
        created = manager.call_platform_api(
            lambda api: api.create_workspace(name, description)
        )
        record = store.upsert_workspace(
            WorkspaceRecord(
                workspace_id=created.workspace_id,
                workspace_name=created.workspace_name,
            )
        )
        grant = created.token_grant()
        if grant is not None:
            record = store.update_workspace_token(
                created.workspace_id,
                access_token=grant.access_token,
                expires_at=expires_at_from_ttl(
                    grant.expires_in or NON_EXPIRING_TOKEN_TTL
                ),
                token_type=grant.token_type,
                scope=grant.scope,
                jti=grant.jti,
            )
        activated = store.get_active_workspace() is None
        if activated:
            store.set_active_workspace(record.workspace_id)

    typer.echo(f"Created workspace {record.workspace_name} ({record.workspace_id})")
    if activated:
        typer.echo("Set as active workspace.")
    else:
        typer.echo(f"Switch with: ntcli workspace switch {record.workspace_name}")


@app.command()
def delete(
    name: str = typer.Argument(..., help="Workspace name or id"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
) -> None:
    """Delete a workspace on the server and remove it locally.

    A workspace the server no longer knows is removed locally anyway.
    """
    store = get_store()
    with handle_errors():
        manager = build_token_manager(store)
        # A match found only on the server is not recorded locally
        record = build_resolver(store, manager, materialize=False).find(name)

        if not force:
            typer.confirm(
                f"Delete workspace '{record.workspace_name}' "
                f"({record.workspace_id})? This cannot be undone.",
                abort=True,
            )

        try:
            manager.call_platform_api(
                lambda api: api.delete_workspace(record.workspace_id)
            )
        except NotFoundError:
            typer.echo("Workspace not found on the server, removing local record.")

        active = store.get_active_workspace()
        was_active = active is not None and active.workspace_id == record.workspace_id
        store.remove_workspace(record.workspace_id)

    typer.echo(f"Workspace deleted: {record.workspace_name}")
    if was_active:
        typer.echo("No active workspace")
