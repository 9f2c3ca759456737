"""Storage backends for persisted session records.

The session store only needs get/put/delete keyed by Target, so the
backend is injected:
- FileSessionStorage: one JSON file per target (the CLI default)
- MemorySessionStorage: plain dict, for tests and embedding
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from nrepleval.core.paths import target_file_name
from nrepleval.core.target import Target
from nrepleval.exceptions import StorageError

logger = logging.getLogger(__name__)


class SessionStorage(Protocol):
    """Key-value storage for session data, keyed by Target."""

    def get(self, target: Target) -> Optional[Dict[str, Any]]:
        """Return stored data, or None if absent or unreadable."""
        ...

    def put(self, target: Target, data: Dict[str, Any]) -> None:
        ...

    def delete(self, target: Target) -> None:
        """Delete stored data; no error if absent."""
        ...

    def targets(self) -> List[Target]:
        """Every target that currently has stored data."""
        ...


class FileSessionStorage:
    """
    Stores each target's session as a JSON file.

    Files live at {directory}/target-{host}-{port}.json. The directory is
    created lazily on first write, so read-only use leaves no trace.

    No locking: concurrent writers race and the last write wins.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, target: Target) -> Path:
        return self.directory / target_file_name(target.host, target.port)

    def get(self, target: Target) -> Optional[Dict[str, Any]]:
        path = self.path_for(target)
        if not path.exists():
            return None
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable session file {path}: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed session file {path}")
            return None
        return data

    def put(self, target: Target, data: Dict[str, Any]) -> None:
        """
        Write the record to a temp file in the same directory, then rename
        it over the target file. Readers see the old record or the new one.

        Raises:
            StorageError: If the directory or file cannot be written
        """
        payload = {"host": target.host, "port": target.port, **data}
        path = self.path_for(target)
        tmp_name = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", dir=self.directory, prefix=".tmp-", suffix=".json", delete=False
            ) as f:
                tmp_name = f.name
                json.dump(payload, f, indent=2)
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise StorageError(f"Cannot write session file {path}: {e}") from e

    def delete(self, target: Target) -> None:
        path = self.path_for(target)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot remove session file {path}: {e}") from e

    def targets(self) -> List[Target]:
        if not self.directory.exists():
            return []

        found = []
        for path in sorted(self.directory.glob("target-*.json")):
            try:
                with open(path, "r") as f:
                    data = json.load(f)
                found.append(Target(data["host"], data["port"]))
            except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError):
                logger.debug(f"Skipping unreadable session file {path}")
        return found


class MemorySessionStorage:
    """In-memory storage; contents vanish with the process."""

    def __init__(self):
        self._data: Dict[Target, Dict[str, Any]] = {}

    def get(self, target: Target) -> Optional[Dict[str, Any]]:
        data = self._data.get(target)
        return dict(data) if data is not None else None

    def put(self, target: Target, data: Dict[str, Any]) -> None:
        self._data[target] = dict(data)

    def delete(self, target: Target) -> None:
        self._data.pop(target, None)

    def targets(self) -> List[Target]:
        return list(self._data)
