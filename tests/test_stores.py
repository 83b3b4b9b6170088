"""Tests for the key/value stores, token store and snapshot cache."""
import pytest
from fakes import ManualClock
from portfolio_sync.domain.errors import StorageError
from portfolio_sync.domain.models import (
    DerivedStats,
    Repository,
    Snapshot,
    UserProfile
)
from portfolio_sync.domain.store_interface import IKeyValueStore
from portfolio_sync.infrastructure.json_file_store import InMemoryStore, JsonFileStore
from portfolio_sync.infrastructure.snapshot_cache import SnapshotCache
from portfolio_sync.infrastructure.token_store import ValidationTokenStore


class FullStore(IKeyValueStore):
    """Store whose writes always fail, like an exceeded quota."""

    def __init__(self):
        self.inner = InMemoryStore()

    def read(self, key):
        return self.inner.read(key)

    def write(self, key, value):
        raise StorageError(key, "quota exceeded")


def _snapshot() -> Snapshot:
    return Snapshot(
        user=UserProfile(login="octocat"),
        repos=(Repository(id=1, name="hello", full_name="octocat/hello"),),
        pinned_repos=(),
        followers=(),
        tags={},
        stats=DerivedStats(0, 0, (), "hello", 0, "Mild Roast"),
        captured_at=0.0
    )


def test_json_file_store_round_trip(tmp_path):
    store = JsonFileStore(tmp_path / "cache")

    store.write("blob", {"a": [1, 2]})

    assert store.read("blob") == {"a": [1, 2]}
    assert (tmp_path / "cache" / "blob.json").exists()


def test_json_file_store_missing_and_corrupt(tmp_path):
    store = JsonFileStore(tmp_path)
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")

    assert store.read("absent") is None
    assert store.read("broken") is None


def test_json_file_store_write_failure_raises_storage_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("", encoding="utf-8")
    store = JsonFileStore(blocker / "cache")

    with pytest.raises(StorageError):
        store.write("blob", {"a": 1})


def test_token_store_persists_across_instances():
    clock = ManualClock()
    backing = InMemoryStore()
    ValidationTokenStore(backing, clock=clock).put("u", '"etag"', {"x": 1})

    entry = ValidationTokenStore(backing, clock=clock).get("u")

    assert entry.token == '"etag"'
    assert entry.body == {"x": 1}
    assert entry.captured_at == clock.now


def test_token_store_ignores_malformed_blob():
    backing = InMemoryStore({"gh_etags_v1": ["not", "a", "mapping"]})

    assert ValidationTokenStore(backing).get("u") is None


def test_token_store_survives_write_failure():
    tokens = ValidationTokenStore(FullStore())

    tokens.put("u", '"etag"', {"x": 1})

    assert tokens.get("u").body == {"x": 1}


def test_snapshot_cache_fresh_within_ttl():
    clock = ManualClock()
    cache = SnapshotCache(InMemoryStore(), ttl=3600, clock=clock)
    cache.write(_snapshot())

    clock.advance(30 * 60)
    assert cache.read() is not None

    clock.advance(60 * 60)
    assert cache.read() is None
    assert cache.read_stale() is not None


def test_snapshot_cache_write_stamps_current_time():
    clock = ManualClock()
    cache = SnapshotCache(InMemoryStore(), clock=clock)

    stamped = cache.write(_snapshot())

    assert stamped.captured_at == clock.now
    assert cache.read().captured_at == clock.now


def test_snapshot_cache_tolerates_quota_failure():
    cache = SnapshotCache(FullStore(), clock=ManualClock())

    stamped = cache.write(_snapshot())

    assert stamped.user.login == "octocat"
    assert cache.read() is None


def test_snapshot_cache_ignores_incompatible_blob():
    broken = _snapshot().to_dict()
    broken["repos"] = ["oops"]

    for blob in ({"user": {}}, broken, "not a mapping"):
        cache = SnapshotCache(InMemoryStore({"portfolio_snapshot_v1": blob}))
        assert cache.read() is None
        assert cache.read_stale() is None


def test_token_store_defers_writes_until_flush():
    backing = InMemoryStore()
    tokens = ValidationTokenStore(backing, autosave=False)

    tokens.put("a", '"1"', [1])
    tokens.put("b", '"2"', [2])
    assert backing.read("gh_etags_v1") is None

    tokens.flush()

    assert set(backing.read("gh_etags_v1")) == {"a", "b"}
