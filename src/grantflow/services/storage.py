"""Credential stores for client credentials and tokens.

A flow persists two records per service: its client credentials and its
current tokens. Stores only see JSON-compatible dictionaries.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import stat
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

CREDENTIALS_ACCOUNT = "clientCredentials"
TOKENS_ACCOUNT = "currentTokens"


class CredentialStore(Protocol):
    """Protocol for persisting credential and token records."""

    def save(self, service: str, account: str, data: dict[str, Any]) -> None:
        """Store ``data`` under the service and account keys."""
        ...

    def load(self, service: str, account: str) -> dict[str, Any] | None:
        """Return the stored data, or None if nothing is stored."""
        ...

    def delete(self, service: str, account: str) -> None:
        """Remove stored data. Deleting a missing entry is not an error."""
        ...


class MemoryCredentialStore:
    """Keeps records in a dictionary for the lifetime of the process."""

    def __init__(self):
        self._items: dict[tuple[str, str], dict[str, Any]] = {}

    def save(self, service: str, account: str, data: dict[str, Any]) -> None:
        self._items[(service, account)] = dict(data)

    def load(self, service: str, account: str) -> dict[str, Any] | None:
        data = self._items.get((service, account))
        return dict(data) if data is not None else None

    def delete(self, service: str, account: str) -> None:
        self._items.pop((service, account), None)


class FileCredentialStore:
    """File-based store writing one JSON file per service and account.

    Files are chmod 0600 (owner-only read/write). Service keys are usually
    URLs, so file names use a digest of the service key.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path(self, service: str, account: str) -> Path:
        digest = hashlib.sha256(service.encode("utf-8")).hexdigest()[:16]
        return self.directory / f"{digest}-{account}.json"

    def save(self, service: str, account: str, data: dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(service, account)
        path.write_text(json.dumps(data, indent=2))
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
        logger.debug(f"Saved {account} for {service}")

    def load(self, service: str, account: str) -> dict[str, Any] | None:
        path = self._path(service, account)
        if not path.exists():
            return None

        try:
            data = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load {account} for {service}: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed {account} record for {service}")
            return None
        return data

    def delete(self, service: str, account: str) -> None:
        path = self._path(service, account)
        if path.exists():
            path.unlink()
            logger.debug(f"Deleted {account} for {service}")
