"""Derive service base URLs from the configured platform domain."""

from dataclasses import dataclass

LOCAL_HOSTS = ("localhost", "127.0.0.1")


@dataclass(frozen=True)
class Endpoints:
    """Base URLs (scheme://host[:port], no trailing slash) of the services."""

    management: str
    runtime: str
    identity: str


def clean_domain(value: str) -> str:
    """Normalize user input to a bare host[:port].

    >>> clean_domain("https://example.com/")
    'example.com'

    Raises:
        ValueError: If nothing is left after cleaning.
    """
    domain = value.strip()
    for scheme in ("https://", "http://"):
        if domain.lower().startswith(scheme):
            domain = domain[len(scheme) :]
            break
    domain = domain.rstrip("/").strip()
    if not domain:
        raise ValueError(f"Invalid domain: {value!r}")
    return domain


def _is_local(domain: str) -> bool:
    host = domain.split(":", 1)[0].lower()
    return host in LOCAL_HOSTS


def resolve_endpoints(domain: str, insecure: bool = False) -> Endpoints:
    """Build the management, runtime and identity URLs for a domain.

    Each service lives on its own subdomain (api., mcp., studio-api.), except
    for local development hosts where everything runs on the bare domain.
    The scheme is http only when `insecure` is set.
    """
    domain = clean_domain(domain)
    protocol = "http" if insecure else "https"

    if _is_local(domain):
        base = f"{protocol}://{domain}"
        return Endpoints(management=base, runtime=base, identity=base)

    return Endpoints(
        management=f"{protocol}://api.{domain}",
        runtime=f"{protocol}://mcp.{domain}",
        identity=f"{protocol}://studio-api.{domain}",
    )
