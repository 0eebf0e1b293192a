"""Shared wiring and output helpers for CLI commands."""

import dataclasses
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

import typer

from ntcli.auth.manager import IdentityProvider, TokenManager
from ntcli.auth.oauth import OAuthIdentityProvider
from ntcli.config import get_settings
from ntcli.endpoints import Endpoints, resolve_endpoints
from ntcli.exceptions import (
    AuthRejectedError,
    AuthRequiredError,
    ConfigCorruptError,
    MalformedResponseError,
    NetworkError,
    NtcliError,
    ServiceUnavailableError,
    WorkspaceNotFoundError,
)
from ntcli.store import ConfigStore
from ntcli.tokens import TokenState, classify, seconds_remaining
from ntcli.workspace import WorkspaceResolver


def get_store() -> ConfigStore:
    return ConfigStore()


def build_endpoints(store: ConfigStore) -> Endpoints:
    """Endpoints for the configured domain, honoring the identity URL override."""
    record = store.load()
    endpoints = resolve_endpoints(record.domain, record.insecure)
    override = get_settings().identity_api_url
    if override:
        endpoints = dataclasses.replace(endpoints, identity=override.rstrip("/"))
    return endpoints


def build_identity_provider() -> IdentityProvider:
    return OAuthIdentityProvider.from_settings(notify=typer.echo)


def build_token_manager(store: ConfigStore) -> TokenManager:
    return TokenManager(
        store,
        build_endpoints(store),
        provider=build_identity_provider(),
    )


def build_resolver(
    store: ConfigStore,
    manager: TokenManager,
    interactive: bool = True,
    materialize: bool = True,
) -> WorkspaceResolver:
    return WorkspaceResolver(
        store, manager, interactive=interactive, materialize=materialize
    )


# --- Output helpers ---


def mask_token(token: str | None) -> str:
    if not token:
        return "(none)"
    return "********" + token[-8:]


def format_epoch_seconds(value: float | None) -> str:
    if value is None:
        return "(unknown)"
    moment = datetime.fromtimestamp(value, tz=timezone.utc)
    return moment.strftime("%Y-%m-%d %H:%M:%S UTC")


def describe_token(token: str | None, expires_at, now=None) -> str:
    """Human-readable token state, e.g. 'valid, expires in 59m'."""
    state = classify(token, expires_at, now=now)
    if state is TokenState.MISSING:
        return "no token"
    remaining = seconds_remaining(expires_at, now=now)
    if state is TokenState.EXPIRED:
        return "expired" if remaining is None or remaining <= 0 else "expiring"
    minutes = (remaining or 0) // 60
    if minutes >= 60 * 24:
        return f"{state}, expires in {minutes // (60 * 24)}d"
    if minutes >= 60:
        return f"{state}, expires in {minutes // 60}h {minutes % 60}m"
    return f"{state}, expires in {minutes}m"


def echo_workspace_not_found(error: WorkspaceNotFoundError) -> None:
    typer.echo(f"Error: {error}", err=True)
    if error.lookup_errors:
        typer.echo("", err=True)
        typer.echo("The server could not be searched:", err=True)
        for lookup_error in error.lookup_errors:
            typer.echo(f"  {lookup_error}", err=True)
    typer.echo("", err=True)
    if error.known_workspaces:
        typer.echo("Available local workspaces:", err=True)
        for name, workspace_id in error.known_workspaces:
            typer.echo(f"  - {name} ({workspace_id})", err=True)
    elif error.identifier is None:
        typer.echo(
            "Use 'ntcli workspace switch <name>' to select a workspace.", err=True
        )
    else:
        typer.echo(
            "No workspaces found locally. "
            "Try 'ntcli workspace list' to see workspaces on the server.",
            err=True,
        )


@contextmanager
def handle_errors() -> Iterator[None]:
    """Print ntcli errors with a hint and exit with status 1."""
    try:
        yield
    except WorkspaceNotFoundError as e:
        echo_workspace_not_found(e)
        raise typer.Exit(1)
    except ConfigCorruptError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    except AuthRequiredError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    except AuthRejectedError as e:
        typer.echo(f"Error: {e}", err=True)
        typer.echo("Please log in again: ntcli auth login --force", err=True)
        raise typer.Exit(1)
    except (NetworkError, ServiceUnavailableError) as e:
        typer.echo(f"Error: {e}", err=True)
        typer.echo(
            "The service may be temporarily unavailable. Try again later.", err=True
        )
        raise typer.Exit(1)
    except MalformedResponseError as e:
        typer.echo(f"Error: {e}", err=True)
        typer.echo(
            "The server sent an unexpected response. Please report this.", err=True
        )
        raise typer.Exit(1)
    except NtcliError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
