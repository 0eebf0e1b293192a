"""ntcli - Command line interface for the NimbleTools platform.

Usage:
    ntcli auth login [--force]
    ntcli auth logout
    ntcli auth status

    ntcli domain set <host>[:port] [--insecure] [--verbose]
    ntcli domain show

    ntcli workspace list [--verbose]
    ntcli workspace switch <name-or-id> [--no-token]
    ntcli workspace clear
    ntcli workspace sync [--prune]
    ntcli workspace create <name> [--description TEXT]
    ntcli workspace delete <name-or-id> [--force]

    ntcli token refresh [<name-or-id>] [--expires-in SECONDS | --expires-at TS
                        | --no-expiry] [--print]
    ntcli token show [<name-or-id>] [--print]
    ntcli token list [<name-or-id>]
    ntcli token revoke <token-id> [<name-or-id>]

    ntcli config show
    ntcli config reset [--force]

Configuration:
    Set NTCLI_CONFIG_DIR to use a config directory other than ~/.ntcli.
    Set NTCLI_DEBUG=1 (or pass --debug) for verbose request logging.
"""

import logging

import typer

from ntcli._cli import auth, config, domain, token, workspace
from ntcli.config import get_settings

# Main CLI app
app = typer.Typer(
    name="ntcli",
    help="ntcli - Command line interface for the NimbleTools platform",
    no_args_is_help=True,
)

# Add subcommands
app.add_typer(auth.app, name="auth")
app.add_typer(domain.app, name="domain")
app.add_typer(workspace.app, name="workspace")
app.add_typer(token.app, name="token")
app.add_typer(config.app, name="config")


@app.command()
def version() -> None:
    """Show the ntcli version."""
    from ntcli import __version__

    typer.echo(f"ntcli {__version__}")


@app.callback()
def main(
    debug: bool = typer.Option(
        False, "--debug", help="Enable verbose request/response logging"
    ),
) -> None:
    """ntcli - Command line interface for the NimbleTools platform.

    Use 'ntcli auth login' to authenticate.
    Use 'ntcli workspace switch <name>' to select a workspace.
    """
    level = logging.DEBUG if debug or get_settings().debug else logging.WARNING
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


if __name__ == "__main__":
    app()
