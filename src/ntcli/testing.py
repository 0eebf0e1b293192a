"""Helpers for testing code that uses ntcli settings and storage."""

import os
import typing
from collections.abc import Mapping
from contextlib import contextmanager
from pathlib import Path

from ntcli.config import clear_settings_cache

__all__ = [
    "config_dir_override",
    "temp_env_vars",
]


@contextmanager
def temp_env_vars(name_value: Mapping[str, str | None]):
    """Temporarily set or unset environment variables within a context.

    Settings are re-read on entry and exit so the change is visible to
    get_settings().

    Args:
        name_value: Mapping of env var name to value. Use None to temporarily
            unset a variable.
    """
    original = {name: os.getenv(name, None) for name in name_value}
    for name, value in name_value.items():
        if value is None:
            os.environ.pop(name, None)
        else:
            os.environ[name] = value
    clear_settings_cache()
    try:
        yield
    finally:
        for name in name_value:
            if original[name] is None:
                os.environ.pop(name, None)
            else:
                os.environ[name] = original[name]  # type: ignore
        clear_settings_cache()


@contextmanager
def config_dir_override(config_dir: Path) -> typing.Generator[Path, None, None]:
    """Point ntcli at another config directory (NTCLI_CONFIG_DIR)."""
    with temp_env_vars({"NTCLI_CONFIG_DIR": str(config_dir)}):
        yield config_dir
