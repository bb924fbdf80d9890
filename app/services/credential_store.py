"""Pairing credentials on disk, one directory per connection."""

import json
import os
import re
import shutil
from pathlib import Path
from typing import Optional

from app.logging_config import get_logger
from app.services.errors import GatewayError

logger = get_logger("credential_store")

CREDS_FILENAME = "creds.json"
_CONNECTION_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class CredentialError(GatewayError):
    code = "credentials_unreadable"


class CredentialStore:
    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)

    def _dir(self, connection_id: str) -> Path:
        if not connection_id or connection_id in {".", ".."} or not _CONNECTION_ID_RE.match(connection_id):
            raise ValueError(f"Invalid connection id: {connection_id!r}")
        return self.base_dir / connection_id

    def list(self) -> list[str]:
        """Connection ids that have a stored credential blob."""
        if not self.base_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.base_dir.iterdir()
            if entry.is_dir() and (entry / CREDS_FILENAME).is_file()
        )

    def exists(self, connection_id: str) -> bool:
        return (self._dir(connection_id) / CREDS_FILENAME).is_file()

    def read(self, connection_id: str) -> Optional[dict]:
        path = self._dir(connection_id) / CREDS_FILENAME
        if not path.is_file():
            return None
        try:
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, ValueError) as e:
            raise CredentialError(f"Cannot read credentials: {e}", connection_id) from e

    def write(self, connection_id: str, blob: dict) -> None:
        directory = self._dir(connection_id)
        directory.mkdir(parents=True, exist_ok=True)
        tmp_path = directory / f"{CREDS_FILENAME}.tmp"
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(blob, handle, ensure_ascii=False)
        os.replace(tmp_path, directory / CREDS_FILENAME)
        logger.debug(f"Credentials saved: {connection_id}")

    def delete(self, connection_id: str) -> bool:
        directory = self._dir(connection_id)
        if not directory.exists():
            return False
        shutil.rmtree(directory)
        logger.info(f"Credentials deleted: {connection_id}")
        return True
