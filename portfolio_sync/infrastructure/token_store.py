"""Persistent mapping from request URL to its last validation token and body."""
import logging
import time
from typing import Any, Callable, Dict, Optional
from portfolio_sync.domain.errors import StorageError
from portfolio_sync.domain.models import ValidationCacheEntry
from portfolio_sync.domain.store_interface import IKeyValueStore


logger = logging.getLogger(__name__)

DEFAULT_KEY = "gh_etags_v1"


class ValidationTokenStore:
    """Validation-token cache backed by a single key/value blob.

    The blob has the shape ``{url: {token, body, captured_at}}``. Entries are
    never deleted explicitly.
    """

    def __init__(
        self,
        store: IKeyValueStore,
        key: str = DEFAULT_KEY,
        clock: Callable[[], float] = time.time,
        autosave: bool = True
    ):
        """Initialize the token store.

        Args:
            store: Backing key/value store
            key: Name of the blob holding all entries
            clock: Source of epoch seconds for entry timestamps
            autosave: Persist the blob on every put; when False, pending
                entries are written by flush()
        """
        self._store = store
        self._key = key
        self._clock = clock
        self._autosave = autosave
        self._dirty = False
        self._entries: Optional[Dict[str, ValidationCacheEntry]] = None

    def _load(self) -> Dict[str, ValidationCacheEntry]:
        if self._entries is not None:
            return self._entries

        entries: Dict[str, ValidationCacheEntry] = {}
        raw = self._store.read(self._key)
        if isinstance(raw, dict):
            for url, data in raw.items():
                try:
                    entries[url] = ValidationCacheEntry.from_dict(data)
                except (AttributeError, KeyError, TypeError, ValueError):
                    logger.warning(f"Discarding malformed validation entry for {url}")
        elif raw is not None:
            logger.warning(f"Discarding malformed validation blob {self._key}")

        self._entries = entries
        return entries

    def get(self, url: str) -> Optional[ValidationCacheEntry]:
        """Return the stored entry for a URL, if any."""
        return self._load().get(url)

    def put(self, url: str, token: str, body: Any) -> None:
        """Record a fresh token and decoded body for a URL.

        Persistence failures are logged and ignored; the in-memory entry is
        still updated.
        """
        entries = self._load()
        entries[url] = ValidationCacheEntry(
            token=token,
            body=body,
            captured_at=self._clock()
        )
        self._dirty = True
        if self._autosave:
            self.flush()

    def flush(self) -> None:
        """Write pending entries to the backing store as one blob."""
        if not self._dirty or self._entries is None:
            return
        try:
            self._store.write(
                self._key,
                {u: entry.to_dict() for u, entry in self._entries.items()}
            )
        except StorageError as e:
            logger.warning(f"Could not persist validation tokens: {e}")
            return
        self._dirty = False

    def __len__(self) -> int:
        return len(self._load())
