"""Authentication commands for ntcli.

Login opens the browser for the OAuth (PKCE) flow, then exchanges the
identity token for a platform token. Both are cached in
~/.ntcli/credentials.json; workspace tokens live with the workspace records
in ~/.ntcli/config.json.
"""

import typer

from ntcli._cli._common import (
    build_token_manager,
    describe_token,
    get_store,
    handle_errors,
)
from ntcli.config import IdentitySession
from ntcli.tokens import TokenState

app = typer.Typer(help="Authentication commands for the NimbleTools platform")


def _echo_user(session: IdentitySession) -> None:
    user = session.user
    if user is None:
        return
    if user.email:
        typer.echo(f"  Email: {user.email}")
    if user.display_name:
        typer.echo(f"  Name: {user.display_name}")
    if user.id:
        typer.echo(f"  User ID: {user.id}")


@app.command()
def login(
    force: bool = typer.Option(
        False, "--force", "-f", help="Log in again even if already logged in"
    ),
) -> None:
    """Log in via browser.

    Opens your browser to authenticate with the identity provider. After a
    successful login the credentials are stored locally.
    """
    store = get_store()
    with handle_errors():
        manager = build_token_manager(store)
        if not force and manager.identity_state() is TokenState.VALID:
            session = manager.credentials.identity
            assert session is not None
            who = session.user.email if session.user and session.user.email else None
            typer.echo(f"Already logged in{f' as {who}' if who else ''}.")
            typer.echo("Use 'ntcli auth login --force' to log in again.")
            return

        session = manager.login(force=True)

    typer.echo("")
    typer.echo("Login successful!")
    _echo_user(session)
    typer.echo(
        "  Token: " + describe_token(session.id_token, session.id_token_expires_at)
    )


@app.command()
def logout() -> None:
    """Logout and clear stored credentials.

    Workspace records are kept; use 'ntcli config reset' to remove everything.
    """
    store = get_store()
    with handle_errors():
        manager = build_token_manager(store)
        cleared = manager.logout()
    if cleared:
        typer.echo("Credentials cleared successfully.")
    else:
        typer.echo("No credentials found.")


@app.command()
def status() -> None:
    """Show current authentication status and active workspace."""
    store = get_store()
    with handle_errors():
        manager = build_token_manager(store)
        credentials = manager.credentials
        active = store.get_active_workspace()
        record = store.load()

    typer.echo("Configuration:")
    typer.echo(f"  Config file: {store.config_path}")
    typer.echo(f"  Domain: {record.domain}")
    typer.echo("")

    typer.echo("Authentication:")
    identity = credentials.identity
    if identity is None:
        typer.echo("  Status: Not logged in")
        typer.echo("")
        typer.echo("Run 'ntcli auth login' to authenticate")
        return

    if manager.identity_state() is TokenState.VALID:
        typer.echo("  Status: Logged in")
    else:
        typer.echo("  Status: Session expired")
    _echo_user(identity)
    typer.echo(
        "  Identity token: "
        + describe_token(identity.id_token, identity.id_token_expires_at)
    )
    platform = credentials.platform
    if platform is None:
        typer.echo("  Platform token: (not exchanged)")
    else:
        typer.echo(
            "  Platform token: "
            + describe_token(platform.access_token, platform.expires_at)
        )

    typer.echo("")
    typer.echo("Active Workspace:")
    if active is None:
        typer.echo("  (none)")
    else:
        typer.echo(f"  {active.workspace_name} ({active.workspace_id})")
        typer.echo(
            "  Token: " + describe_token(active.access_token, active.token_expires_at)
        )
