"""Key/value store interface (port) for client-local persisted state.

This is the port in hexagonal architecture that the infrastructure layer implements.
"""
from abc import ABC, abstractmethod
from typing import Any, Optional


class IKeyValueStore(ABC):
    """Abstract interface for persisted blobs keyed by name."""

    @abstractmethod
    def read(self, key: str) -> Optional[Any]:
        """Read the blob stored under a key.

        Args:
            key: Blob name

        Returns:
            The deserialized blob, or None when absent or unreadable
        """
        pass

    @abstractmethod
    def write(self, key: str, value: Any) -> None:
        """Persist a blob under a key, replacing any previous value.

        Args:
            key: Blob name
            value: JSON-serializable value

        Raises:
            StorageError: When the blob cannot be written
        """
        pass
