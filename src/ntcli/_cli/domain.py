"""Domain commands: choose which NimbleTools deployment ntcli talks to."""

import typer

from ntcli._cli._common import build_endpoints, get_store, handle_errors

app = typer.Typer(help="Configure the platform domain")


def _echo_endpoints(store) -> None:
    endpoints = build_endpoints(store)
    typer.echo("")
    typer.echo("API Endpoints:")
    typer.echo(f"  Management API: {endpoints.management}")
    typer.echo(f"  MCP Runtime: {endpoints.runtime}")
    typer.echo(f"  Identity API: {endpoints.identity}")


@app.command("set")
def set_domain(
    domain: str = typer.Argument(
        ..., help="Domain, e.g. nimbletools.ai or localhost:3000"
    ),
    insecure: bool = typer.Option(
        False, "--insecure", help="Use HTTP instead of HTTPS"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show the resulting API endpoints"
    ),
) -> None:
    """Set the domain for all API endpoints."""
    store = get_store()
    with handle_errors():
        previous = store.load().domain
        try:
            record = store.set_domain(domain, insecure=insecure)
        except ValueError:
            typer.echo("Error: Domain cannot be empty", err=True)
            typer.echo("Examples:", err=True)
            typer.echo("  ntcli domain set nimbletools.ai", err=True)
            typer.echo("  ntcli domain set localhost:3000 --insecure", err=True)
            raise typer.Exit(1)

        typer.echo("Domain Configuration:")
        typer.echo(f"  Previous: {previous}")
        typer.echo(f"  Current: {record.domain}")
        protocol = "HTTP (insecure)" if record.insecure else "HTTPS (secure)"
        typer.echo(f"  Protocol: {protocol}")

        if verbose:
            _echo_endpoints(store)

    if record.domain != previous:
        typer.echo("")
        typer.echo(
            "Warning: Existing tokens were issued for the previous domain and "
            "may not work with the new one.",
            err=True,
        )
        typer.echo("You may need to authenticate again: ntcli auth login --force")


@app.command("show")
def show_domain() -> None:
    """Show the configured domain and API endpoints."""
    store = get_store()
    with handle_errors():
        record = store.load()
        typer.echo(f"Domain: {record.domain}")
        protocol = "HTTP (insecure)" if record.insecure else "HTTPS (secure)"
        typer.echo(f"Protocol: {protocol}")
        _echo_endpoints(store)
