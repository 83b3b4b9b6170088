"""Time-boxed cache of the whole merged snapshot."""
import logging
import time
from typing import Callable, Optional
from portfolio_sync.domain.errors import StorageError
from portfolio_sync.domain.models import Snapshot
from portfolio_sync.domain.store_interface import IKeyValueStore


logger = logging.getLogger(__name__)

DEFAULT_KEY = "portfolio_snapshot_v1"
DEFAULT_TTL = 60 * 60


class SnapshotCache:
    """Snapshot fast path consulted before any network call.

    Bump the key name to invalidate blobs written with an older shape.
    """

    def __init__(
        self,
        store: IKeyValueStore,
        ttl: float = DEFAULT_TTL,
        key: str = DEFAULT_KEY,
        clock: Callable[[], float] = time.time
    ):
        self._store = store
        self._ttl = ttl
        self._key = key
        self._clock = clock

    @property
    def ttl(self) -> float:
        return self._ttl

    def read_stale(self) -> Optional[Snapshot]:
        """Return the last stored snapshot regardless of its age."""
        raw = self._store.read(self._key)
        if raw is None:
            return None
        try:
            return Snapshot.from_dict(raw)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring incompatible snapshot blob: {e}")
            return None

    def read(self) -> Optional[Snapshot]:
        """Return the stored snapshot only while it is fresh."""
        snapshot = self.read_stale()
        if snapshot is None:
            return None
        if not snapshot.is_fresh(self._clock(), self._ttl):
            logger.info("Cached snapshot expired")
            return None
        return snapshot

    def write(self, snapshot: Snapshot) -> Snapshot:
        """Store a snapshot stamped with the current time.

        Returns:
            The stamped snapshot, whether or not it could be persisted
        """
        stamped = snapshot.with_captured_at(self._clock())
        try:
            self._store.write(self._key, stamped.to_dict())
        except StorageError as e:
            logger.warning(f"Could not persist snapshot: {e}")
        return stamped
