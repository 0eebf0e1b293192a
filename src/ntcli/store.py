"""Persistent storage for ntcli configuration and credentials.

Storage model:
- Config in ~/.ntcli/config.json (domain, active workspace, workspace records)
- Identity and platform tokens in ~/.ntcli/credentials.json (mode 0600)

Both files are written atomically: the new content goes to a temporary file in
the same directory, is flushed to disk, then replaces the target.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ntcli.config import (
    CONFIG_FILE_NAME,
    CREDENTIALS_FILE_NAME,
    ConfigRecord,
    Credentials,
    WorkspaceRecord,
    get_settings,
)
from ntcli.endpoints import clean_domain
from ntcli.exceptions import ConfigCorruptError, WorkspaceNotFoundError

logger = logging.getLogger(__name__)


def _write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Write JSON to `path` so readers see either the old or the new file."""
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _read_json(path: Path) -> dict[str, Any] | None:
    """Read a JSON object from `path`, None if the file does not exist."""
    if not path.exists():
        return None
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to read {path}: {e}")
        raise ConfigCorruptError(path, str(e)) from e
    if not isinstance(data, dict):
        logger.error(f"Failed to read {path}: top level is not an object")
        raise ConfigCorruptError(path, "top level is not a JSON object")
    return data


class ConfigStore:
    """Owner of config.json and credentials.json.

    The configuration record is read lazily, once, and every mutation
    persists the whole record before returning.
    """

    def __init__(self, config_dir: Path | None = None):
        self.config_dir = Path(config_dir or get_settings().get_config_dir())
        self._record: ConfigRecord | None = None

    @property
    def config_path(self) -> Path:
        return self.config_dir / CONFIG_FILE_NAME

    @property
    def credentials_path(self) -> Path:
        return self.config_dir / CREDENTIALS_FILE_NAME

    # --- Config record ---

    def load(self) -> ConfigRecord:
        """Load the configuration record, reading the file on first use.

        Returns:
            The cached record, or defaults when no file exists yet.

        Raises:
            ConfigCorruptError: If the file exists but cannot be parsed.
        """
        if self._record is not None:
            return self._record

        data = _read_json(self.config_path)
        if data is None:
            logger.debug(f"No config at {self.config_path}, using defaults")
            self._record = ConfigRecord()
            return self._record

        try:
            self._record = ConfigRecord.model_validate(data)
        except ValidationError as e:
            logger.error(f"Invalid config in {self.config_path}: {e}")
            raise ConfigCorruptError(self.config_path, str(e)) from e
        return self._record

    def save(self, record: ConfigRecord | None = None) -> None:
        """Persist the configuration record atomically."""
        if record is not None:
            self._record = record
        record = self.load()
        record.last_updated = datetime.now(timezone.utc).isoformat()
        _write_json_atomic(self.config_path, record.to_json_dict())
        logger.debug(f"Saved config to {self.config_path}")

    def reset(self) -> bool:
        """Delete config and credentials files.

        Returns:
            True if any file was removed.
        """
        removed = False
        for path in (self.config_path, self.credentials_path):
            if path.exists():
                path.unlink()
                removed = True
        self._record = None
        return removed

    # --- Domain ---

    def set_domain(self, domain: str, insecure: bool = False) -> ConfigRecord:
        """Store the platform domain.

        Raises:
            ValueError: If the domain is empty after cleaning.
        """
        record = self.load()
        record.domain = clean_domain(domain)
        record.insecure = insecure
        self.save()
        return record

    # --- Workspaces ---

    def list_workspaces(self) -> list[WorkspaceRecord]:
        return list(self.load().workspaces.values())

    def get_workspace(self, id_or_name: str) -> WorkspaceRecord | None:
        """Find a workspace by exact id, falling back to exact name."""
        workspaces = self.load().workspaces
        if id_or_name in workspaces:
            return workspaces[id_or_name]
        for record in workspaces.values():
            if record.workspace_name == id_or_name:
                return record
        return None

    def get_active_workspace(self) -> WorkspaceRecord | None:
        record = self.load()
        if record.active_workspace_id is None:
            return None
        return record.workspaces.get(record.active_workspace_id)

    def upsert_workspace(self, workspace: WorkspaceRecord) -> WorkspaceRecord:
        """Insert or replace a workspace record, keyed by its id."""
        record = self.load()
        record.workspaces[workspace.workspace_id] = workspace
        self.save()
        return workspace

    def remove_workspace(self, workspace_id: str) -> WorkspaceRecord | None:
        """Remove a workspace record, clearing the active pointer if needed."""
        record = self.load()
        removed = record.workspaces.pop(workspace_id, None)
        if removed is None:
            return None
        if record.active_workspace_id == workspace_id:
            record.active_workspace_id = None
        self.save()
        return removed

    def set_active_workspace(self, workspace_id: str) -> WorkspaceRecord:
        """Make an existing workspace the active one.

        Raises:
            WorkspaceNotFoundError: If no record has this id.
        """
        record = self.load()
        workspace = record.workspaces.get(workspace_id)
        if workspace is None:
            raise WorkspaceNotFoundError(
                workspace_id, known_workspaces=self._known_workspaces()
            )
        record.active_workspace_id = workspace_id
        self.save()
        return workspace

    def clear_active_workspace(self) -> WorkspaceRecord | None:
        """Unset the active workspace, returning the previously active record."""
        previous = self.get_active_workspace()
        record = self.load()
        if record.active_workspace_id is not None:
            record.active_workspace_id = None
            self.save()
        return previous

    def update_workspace_token(
        self,
        workspace_id: str,
        access_token: str,
        expires_at: int | str | None,
        token_type: str = "Bearer",
        scope: list[str] | None = None,
        jti: str | None = None,
    ) -> WorkspaceRecord:
        """Store a freshly issued workspace token on an existing record.

        Raises:
            WorkspaceNotFoundError: If no record has this id.
        """
        record = self.load()
        workspace = record.workspaces.get(workspace_id)
        if workspace is None:
            raise WorkspaceNotFoundError(
                workspace_id, known_workspaces=self._known_workspaces()
            )
        updated = workspace.model_copy(
            update={
                "access_token": access_token,
                "token_expires_at": expires_at,
                "token_type": token_type,
                "scope": list(scope) if scope is not None else workspace.scope,
                "jti": jti,
            }
        )
        record.workspaces[workspace_id] = updated
        self.save()
        return updated

    def clear_workspace_token(self, workspace_id: str) -> WorkspaceRecord | None:
        """Drop the stored token of a workspace, keeping the record itself."""
        record = self.load()
        workspace = record.workspaces.get(workspace_id)
        if workspace is None:
            return None
        cleared = workspace.model_copy(
            update={"access_token": None, "token_expires_at": None, "jti": None}
        )
        record.workspaces[workspace_id] = cleared
        self.save()
        return cleared

    def _known_workspaces(self) -> list[tuple[str, str]]:
        return [(w.workspace_name, w.workspace_id) for w in self.list_workspaces()]

    # --- Credentials ---

    def load_credentials(self) -> Credentials:
        """Load cached identity and platform tokens.

        Raises:
            ConfigCorruptError: If the file exists but cannot be parsed.
        """
        data = _read_json(self.credentials_path)
        if data is None:
            return Credentials()
        try:
            return Credentials.model_validate(data)
        except ValidationError as e:
            logger.error(f"Invalid credentials in {self.credentials_path}: {e}")
            raise ConfigCorruptError(self.credentials_path, str(e)) from e

    def save_credentials(self, credentials: Credentials) -> None:
        _write_json_atomic(self.credentials_path, credentials.to_json_dict())
        logger.debug(f"Saved credentials to {self.credentials_path}")

    def clear_credentials(self) -> bool:
        """Delete the credentials file.

        Returns:
            True if credentials were cleared, False if none existed.
        """
        if self.credentials_path.exists():
            self.credentials_path.unlink()
            return True
        return False
