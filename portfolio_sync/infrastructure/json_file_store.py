"""JSON file implementations of the key/value store."""
import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union
from portfolio_sync.domain.errors import StorageError
from portfolio_sync.domain.store_interface import IKeyValueStore


logger = logging.getLogger(__name__)

ENCODING = "utf-8"


class JsonFileStore(IKeyValueStore):
    """Key/value store keeping one JSON file per key in a directory.

    The directory is created on first use and persists across sessions.
    """

    def __init__(self, directory: Union[str, Path]):
        """Initialize the store.

        Args:
            directory: Directory holding the ``<key>.json`` files
        """
        self._directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self._directory / f"{key}.json"

    def read(self, key: str) -> Optional[Any]:
        """Read a blob, returning None when missing or undecodable."""
        try:
            with self._path(key).open(encoding=ENCODING, mode="r") as blob:
                return json.load(blob)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable blob {key}: {e}")
            return None

    def write(self, key: str, value: Any) -> None:
        """Write a blob atomically by replacing a temporary file."""
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            with tmp_path.open(encoding=ENCODING, mode="w") as blob:
                json.dump(value, blob, indent=2, sort_keys=False)
            tmp_path.replace(path)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(key, str(e)) from e


class InMemoryStore(IKeyValueStore):
    """Dict-backed store; state lives only as long as the process."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def read(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self._data.get(key))

    def write(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)
