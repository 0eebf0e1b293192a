"""Workspace token commands."""

import typer

from ntcli._cli._common import (
    build_resolver,
    build_token_manager,
    describe_token,
    format_epoch_seconds,
    get_store,
    handle_errors,
    mask_token,
)
from ntcli.exceptions import WorkspaceNotFoundError

app = typer.Typer(help="Manage workspace access tokens")


@app.command()
def refresh(
    workspace: str = typer.Argument(
        None, help="Workspace name or id (defaults to the active workspace)"
    ),
    expires_in: int = typer.Option(
        None, "--expires-in", min=1, help="Token lifetime in seconds"
    ),
    expires_at: int = typer.Option(
        None, "--expires-at", min=1, help="Token expiry as a unix timestamp"
    ),
    no_expiry: bool = typer.Option(
        False, "--no-expiry", help="Request a non-expiring token (server default)"
    ),
    print_token: bool = typer.Option(
        False, "--print", help="Print only the new token, for use in scripts"
    ),
) -> None:
    """Fetch a new token for a workspace."""
    chosen = [
        flag
        for flag, value in (
            ("--expires-in", expires_in is not None),
            ("--expires-at", expires_at is not None),
            ("--no-expiry", no_expiry),
        )
        if value
    ]
    if len(chosen) > 1:
        typer.echo(f"Error: {' and '.join(chosen)} cannot be combined", err=True)
        raise typer.Exit(1)

    store = get_store()
    with handle_errors():
        manager = build_token_manager(store)
        resolver = build_resolver(store, manager)
        with resolver.resolve(
            workspace,
            force_refresh=True,
            expires_in=expires_in,
            expires_at=expires_at,
        ) as session:
            record = session.record

    if print_token:
        typer.echo(session.access_token)
        return

    typer.echo(f"Token refreshed for workspace: {session.workspace_name}")
    typer.echo(f"  Token: {mask_token(session.access_token)}")
    if record is not None:
        typer.echo(
            "  Status: " + describe_token(record.access_token, record.token_expires_at)
        )
        if record.scope:
            typer.echo(f"  Scope: {', '.join(record.scope)}")
        if record.jti:
            typer.echo(f"  Token ID: {record.jti}")


@app.command()
def show(
    workspace: str = typer.Argument(
        None, help="Workspace name or id (defaults to the active workspace)"
    ),
    print_token: bool = typer.Option(
        False, "--print", help="Print only the stored token, for use in scripts"
    ),
) -> None:
    """Show the stored token of a workspace. Makes no network calls."""
    store = get_store()
    with handle_errors():
        if workspace is None:
            record = store.get_active_workspace()
        else:
            record = store.get_workspace(workspace)
        if record is None:
            raise WorkspaceNotFoundError(
                workspace,
                known_workspaces=[
                    (w.workspace_name, w.workspace_id) for w in store.list_workspaces()
                ],
            )

    if print_token:
        if not record.access_token:
            typer.echo("Error: No token stored for this workspace", err=True)
            raise typer.Exit(1)
        typer.echo(record.access_token)
        return

    typer.echo(f"Workspace: {record.workspace_name} ({record.workspace_id})")
    typer.echo(f"  Token: {mask_token(record.access_token)}")
    typer.echo(f"  Type: {record.token_type}")
    typer.echo(
        "  Status: " + describe_token(record.access_token, record.token_expires_at)
    )
    if record.scope:
        typer.echo(f"  Scope: {', '.join(record.scope)}")
    if record.jti:
        typer.echo(f"  Token ID: {record.jti}")


@app.command("list")
def list_tokens(
    workspace: str = typer.Argument(
        None, help="Workspace name or id (defaults to the active workspace)"
    ),
) -> None:
    """List the active tokens of a workspace.

    The server only answers to a token of the workspace itself, so one is
    fetched first if none is stored.
    """
    store = get_store()
    with handle_errors():
        manager = build_token_manager(store)
        with build_resolver(store, manager).resolve(workspace) as session:
            tokens = session.client.list_workspace_tokens(session.workspace_id)
            current_jti = session.record.jti if session.record else None

    typer.echo(f"Workspace: {session.workspace_name} ({session.workspace_id})")
    if not tokens:
        typer.echo("No active tokens.")
        typer.echo("Create one with: ntcli token refresh")
        return

    typer.echo("")
    for token in tokens:
        marker = "*" if token.jti == current_jti else " "
        created = format_epoch_seconds(token.created_at)
        typer.echo(f"{marker} {token.jti}  created {created}")
    typer.echo("")
    plural = "" if len(tokens) == 1 else "s"
    typer.echo(f"Total: {len(tokens)} active token{plural}")
    typer.echo("Revoke one with: ntcli token revoke <token-id>")


@app.command()
def revoke(
    jti: str = typer.Argument(..., help="Id (jti) of the token to revoke"),
    workspace: str = typer.Argument(
        None, help="Workspace name or id (defaults to the active workspace)"
    ),
) -> None:
    """Revoke a workspace token.

    Revoking the token stored for the workspace also removes it locally.
    """
    store = get_store()
    with handle_errors():
        manager = build_token_manager(store)
        record = build_resolver(store, manager, materialize=False).find_or_active(
            workspace
        )
        message = manager.call_platform_api(
            lambda api: api.revoke_workspace_token(record.workspace_id, jti)
        )
        was_stored = record.jti == jti
        if was_stored:
            store.clear_workspace_token(record.workspace_id)

    typer.echo(f"Token revoked: {jti}")
    typer.echo(f"  Workspace: {record.workspace_name} ({record.workspace_id})")
    if message:
        typer.echo(f"  Message: {message}")
    if was_stored:
        typer.echo("")
        typer.echo("This was the stored token of the workspace.")
        typer.echo("Get a new one with: ntcli token refresh")
