"""Token expiry classification.

Pure functions only: nothing here touches the filesystem or the network.
Stored timestamps are epoch milliseconds; ISO-8601 strings and datetimes are
accepted wherever a timestamp is read.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from enum import StrEnum

DEFAULT_SKEW_SECONDS = 60

# Tokens issued without an expiry are kept for a year
NON_EXPIRING_TOKEN_TTL = 365 * 24 * 60 * 60

Timestamp = int | float | str | datetime


class TokenState(StrEnum):
    MISSING = "missing"
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"

    @property
    def needs_refresh(self) -> bool:
        return self is not TokenState.VALID


def _datetime_to_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(round(value.timestamp() * 1000))


def to_epoch_ms(value: Timestamp | None) -> int | None:
    """Convert a stored timestamp to epoch milliseconds.

    Numbers and digit strings are taken as epoch milliseconds. Returns None
    for missing or unparseable values.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _datetime_to_ms(value)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.isdigit():
            return int(text)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return _datetime_to_ms(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def to_epoch_seconds(value: Timestamp | None) -> float | None:
    ms = to_epoch_ms(value)
    return None if ms is None else ms / 1000


def _now_ms(now: datetime | None) -> int:
    if now is None:
        return int(time.time() * 1000)
    return _datetime_to_ms(now)


def expires_at_from_ttl(seconds: int | float, now: datetime | None = None) -> int:
    """Absolute expiry (epoch ms) for a token valid for `seconds` from now."""
    return _now_ms(now) + int(seconds * 1000)


def seconds_remaining(
    expires_at: Timestamp | None, now: datetime | None = None
) -> int | None:
    """Whole seconds until expiry (negative once expired), None if unknown."""
    expires_ms = to_epoch_ms(expires_at)
    if expires_ms is None:
        return None
    return (expires_ms - _now_ms(now)) // 1000


def classify(
    token: str | None,
    expires_at: Timestamp | None,
    now: datetime | None = None,
    skew_seconds: int = DEFAULT_SKEW_SECONDS,
) -> TokenState:
    """Classify a token by how close it is to expiry.

    An unknown expiry is never assumed safe and classifies as EXPIRED. A
    token with exactly `skew_seconds` left is EXPIRING_SOON; anything less
    is EXPIRED.

    Args:
        token: The token string, empty or None when absent.
        expires_at: Expiry timestamp (epoch ms, ISO-8601 or datetime).
        now: Reference time, defaults to the current time.
        skew_seconds: Safety margin before the real expiry.
    """
    if not token:
        return TokenState.MISSING

    expires_ms = to_epoch_ms(expires_at)
    if expires_ms is None:
        return TokenState.EXPIRED

    now_ms = _now_ms(now)
    remaining = (expires_ms - now_ms) // 1000
    if now_ms >= expires_ms or remaining < skew_seconds:
        return TokenState.EXPIRED
    if remaining == skew_seconds:
        return TokenState.EXPIRING_SOON
    return TokenState.VALID
