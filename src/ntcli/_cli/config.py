"""Configuration commands."""

import typer

from ntcli._cli._common import (
    build_endpoints,
    build_token_manager,
    describe_token,
    get_store,
    handle_errors,
)
from ntcli.config import get_settings

app = typer.Typer(help="Manage ntcli configuration")


@app.command("show")
def show_config() -> None:
    """Show current configuration."""
    store = get_store()
    with handle_errors():
        record = store.load()
        endpoints = build_endpoints(store)
        manager = build_token_manager(store)
        identity = manager.credentials.identity
        active = store.get_active_workspace()

    typer.echo("Configuration:")
    typer.echo(f"  Config file: {store.config_path}")
    typer.echo(f"  Credentials file: {store.credentials_path}")
    typer.echo(f"  Version: {record.version}")
    if record.last_updated:
        typer.echo(f"  Last updated: {record.last_updated}")
    typer.echo(f"  Debug logging: {'on' if get_settings().debug else 'off'}")
    typer.echo("")

    typer.echo("Domain:")
    typer.echo(f"  Domain: {record.domain}")
    typer.echo(f"  Protocol: {'http' if record.insecure else 'https'}")
    typer.echo(f"  Management API: {endpoints.management}")
    typer.echo(f"  MCP Runtime: {endpoints.runtime}")
    typer.echo(f"  Identity API: {endpoints.identity}")
    typer.echo("")

    typer.echo("Authentication:")
    if identity is None:
        typer.echo("  Not logged in")
    else:
        who = identity.user.email if identity.user else None
        typer.echo(f"  User: {who or '(unknown)'}")
        typer.echo(
            "  Identity token: "
            + describe_token(identity.id_token, identity.id_token_expires_at)
        )
    typer.echo("")

    typer.echo("Workspaces:")
    typer.echo(f"  Known: {len(record.workspaces)}")
    if active is not None:
        typer.echo(f"  Active: {active.workspace_name} ({active.workspace_id})")
    else:
        typer.echo("  Active: (none)")


@app.command()
def reset(
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
) -> None:
    """Delete all configuration and credentials."""
    store = get_store()
    if not force:
        typer.confirm(
            "This removes your login and all workspace records. Continue?",
            abort=True,
        )
    with handle_errors():
        removed = store.reset()
    if removed:
        typer.echo("Configuration reset.")
    else:
        typer.echo("Nothing to reset.")
