"""Tests for the portfolio orchestrator."""
import asyncio
import aiohttp
import pytest
from fakes import (
    FOLLOWERS_URL,
    PINNED_URL,
    REPOS_URL,
    USER_URL,
    FakeResponse,
    FakeSession,
    ManualClock,
    make_service,
    repo_payload,
    tags_url,
    user_payload
)
from portfolio_sync.domain.errors import PrimaryFetchFailed, RateLimitError
from portfolio_sync.domain.models import RefreshOutcome
from portfolio_sync.infrastructure.json_file_store import InMemoryStore


def _backend() -> FakeSession:
    return FakeSession({
        USER_URL: FakeResponse(200, user_payload(), {"ETag": '"user"'}),
        REPOS_URL: FakeResponse(200, [
            repo_payload("alpha", stars=40, forks=4, language="Go", issues=1),
            repo_payload("beta", stars=300, forks=10, language="Rust"),
            repo_payload("gamma", stars=5, language="Go"),
        ], {"ETag": '"repos"'}),
        FOLLOWERS_URL: FakeResponse(200, [
            {"login": "hubot", "avatar_url": "https://example.com/hubot.png"},
        ]),
        PINNED_URL: FakeResponse(200, [
            {"owner": "octocat", "repo": "gamma", "stars": "999", "forks": "99",
             "image": "https://example.com/gamma.png"},
            {"owner": "octocat", "repo": "alpha", "stars": "1", "forks": "0"},
        ]),
        tags_url("gamma"): FakeResponse(200, [{"name": "v0.3.0"}]),
        tags_url("beta"): FakeResponse(200, []),
    })


def test_snapshot_merges_all_sources():
    session = _backend()
    service = make_service(session, ManualClock())

    snapshot = asyncio.run(service.get_snapshot(force_refresh=True))

    assert snapshot.user.login == "octocat"
    assert [r.name for r in snapshot.repos] == ["alpha", "beta", "gamma"]
    assert [f.login for f in snapshot.followers] == ["hubot"]
    assert [r.name for r in snapshot.pinned_repos] == ["gamma", "alpha"]
    assert snapshot.tags == {"gamma": "v0.3.0"}
    assert snapshot.stats.total_stars == 345
    assert snapshot.stats.most_starred_repo == "beta"
    assert snapshot.stats.tier == "Ristretto"


def test_pinned_counts_come_from_general_set():
    service = make_service(_backend(), ManualClock())

    snapshot = asyncio.run(service.get_snapshot(force_refresh=True))

    general = {r.name: r for r in snapshot.repos}
    for pinned in snapshot.pinned_repos:
        assert pinned.stars == general[pinned.name].stars
        assert pinned.forks == general[pinned.name].forks
        assert pinned.open_issues == general[pinned.name].open_issues
    gamma = snapshot.pinned_repos[0]
    assert gamma.preview_image == "https://example.com/gamma.png"
    assert gamma.latest_tag == "v0.3.0"
    assert general["alpha"].preview_image == "https://opengraph.githubassets.com/1/octocat/alpha"


def test_fresh_cache_skips_network():
    clock = ManualClock()
    store = InMemoryStore()
    asyncio.run(make_service(_backend(), clock, store).get_snapshot(force_refresh=True))

    clock.advance(30 * 60)
    session = _backend()
    snapshot = asyncio.run(make_service(session, clock, store).get_snapshot(force_refresh=False))

    assert snapshot.user.login == "octocat"
    assert session.requests == []


def test_expired_cache_goes_to_network():
    clock = ManualClock()
    store = InMemoryStore()
    asyncio.run(make_service(_backend(), clock, store).get_snapshot(force_refresh=True))

    clock.advance(90 * 60)
    session = _backend()
    asyncio.run(make_service(session, clock, store).get_snapshot(force_refresh=False))

    assert USER_URL in session.urls()


def test_force_refresh_bypasses_fresh_cache():
    clock = ManualClock()
    store = InMemoryStore()
    asyncio.run(make_service(_backend(), clock, store).get_snapshot(force_refresh=True))

    session = _backend()
    asyncio.run(make_service(session, clock, store).get_snapshot(force_refresh=True))

    assert session.count(USER_URL) == 1


def test_second_refresh_uses_validation_tokens():
    clock = ManualClock()
    store = InMemoryStore()
    asyncio.run(make_service(_backend(), clock, store).get_snapshot(force_refresh=True))

    session = _backend()
    session.add(USER_URL, FakeResponse(304))
    snapshot = asyncio.run(make_service(session, clock, store).get_snapshot(force_refresh=True))

    user_request = session.requests[session.urls().index(USER_URL)]
    assert user_request["headers"] == {"If-None-Match": '"user"'}
    assert snapshot.user.login == "octocat"


def test_repeated_forced_refresh_is_idempotent():
    clock = ManualClock()
    service = make_service(_backend(), clock)

    first = asyncio.run(service.get_snapshot(force_refresh=True))
    clock.advance(1)
    second = asyncio.run(service.get_snapshot(force_refresh=True))

    assert first.with_captured_at(0) == second.with_captured_at(0)


def test_throttled_user_raises_and_caches_nothing():
    clock = ManualClock()
    store = InMemoryStore()
    session = _backend()
    session.add(USER_URL, FakeResponse(403, headers={"X-RateLimit-Reset": str(int(clock.now) + 5)}))

    with pytest.raises(RateLimitError) as exc_info:
        asyncio.run(make_service(session, clock, store).get_snapshot())

    assert exc_info.value.reset_at == int(clock.now) + 5
    assert store.read("portfolio_snapshot_v1") is None
    # the other requests of the cycle still ran to completion
    assert REPOS_URL in session.urls()
    assert FOLLOWERS_URL in session.urls()


def test_throttled_listing_raises():
    session = _backend()
    session.add(REPOS_URL, FakeResponse(429, headers={"Retry-After": "30"}))

    with pytest.raises(RateLimitError):
        asyncio.run(make_service(session, ManualClock()).get_snapshot())


def test_missing_user_is_fatal():
    session = _backend()
    session.add(USER_URL, FakeResponse(404))

    with pytest.raises(PrimaryFetchFailed):
        asyncio.run(make_service(session, ManualClock()).get_snapshot())


def test_unreachable_user_is_fatal():
    session = _backend()
    session.add(USER_URL, aiohttp.ClientConnectionError("refused"))

    with pytest.raises(PrimaryFetchFailed):
        asyncio.run(make_service(session, ManualClock()).get_snapshot())


def test_optional_listings_degrade_to_empty():
    session = _backend()
    session.add(FOLLOWERS_URL, FakeResponse(500))
    session.add(REPOS_URL, aiohttp.ClientConnectionError("reset"))
    session.add(PINNED_URL, FakeResponse(503))

    snapshot = asyncio.run(make_service(session, ManualClock()).get_snapshot())

    assert snapshot.followers == ()
    assert snapshot.repos == ()
    assert snapshot.pinned_repos == ()
    assert snapshot.stats.most_starred_repo == "N/A"


def test_pinned_service_outage_falls_back_to_top_starred():
    session = _backend()
    session.add(PINNED_URL, FakeResponse(500))

    snapshot = asyncio.run(make_service(session, ManualClock()).get_snapshot())

    assert [r.name for r in snapshot.pinned_repos] == ["beta", "alpha", "gamma"]


def test_refresh_reports_tagged_results():
    clock = ManualClock()
    throttled = _backend()
    throttled.add(USER_URL, FakeResponse(429, headers={"Retry-After": "120"}))
    missing = _backend()
    missing.add(USER_URL, FakeResponse(404))

    ok = asyncio.run(make_service(_backend(), clock).refresh(True))
    limited = asyncio.run(make_service(throttled, clock).refresh(True))
    failed = asyncio.run(make_service(missing, clock).refresh(True))

    assert ok.kind is RefreshOutcome.OK
    assert ok.snapshot.user.login == "octocat"
    assert limited.kind is RefreshOutcome.RATE_LIMITED
    assert limited.reset_at == clock.now + 120
    assert failed.kind is RefreshOutcome.FAILED
    assert "octocat" in failed.reason


def test_repo_details_falls_back_across_branches():
    session = _backend()
    readme_url = "https://raw.githubusercontent.com/octocat/alpha/master/README.md"
    session.add(readme_url, FakeResponse(200, text="# Alpha"))
    session.add(
        "https://api.github.com/repos/octocat/alpha/stats/participation",
        FakeResponse(200, {"all": [1, 2, 3], "owner": [0, 1, 1]})
    )
    service = make_service(session, ManualClock())
    snapshot = asyncio.run(service.get_snapshot(force_refresh=True))
    alpha = snapshot.repos[0]

    readme, participation = asyncio.run(service.repo_details(alpha))

    assert readme.content == "# Alpha"
    assert readme.branch == "master"
    assert participation.all == [1, 2, 3]
    assert participation.owner == [0, 1, 1]


def test_repo_details_absent_data():
    session = _backend()
    session.add(
        "https://api.github.com/repos/octocat/beta/stats/participation",
        FakeResponse(202, {})
    )
    service = make_service(session, ManualClock())
    snapshot = asyncio.run(service.get_snapshot(force_refresh=True))

    readme, participation = asyncio.run(service.repo_details(snapshot.repos[1]))

    assert readme is None
    assert participation is None


def test_undecodable_pinned_reply_falls_back_to_top_starred():
    session = _backend()
    session.add(PINNED_URL, FakeResponse(
        200, headers={"Content-Type": "application/json; charset=utf-8"},
        raw=b'[{"owner":"octocat","repo":"\xff\xfe"}]'
    ))

    snapshot = asyncio.run(make_service(session, ManualClock()).get_snapshot(force_refresh=True))

    assert snapshot.user.login == "octocat"
    assert [r.name for r in snapshot.pinned_repos] == ["beta", "alpha", "gamma"]


def test_refresh_reports_unexpected_errors_as_failed():
    session = _backend()
    session.add(USER_URL, RuntimeError("decoder exploded"))

    result = asyncio.run(make_service(session, ManualClock()).refresh(True))

    assert result.kind is RefreshOutcome.FAILED
    assert "decoder exploded" in result.reason


class CountingStore(InMemoryStore):
    """In-memory store recording how often each key is written."""

    def __init__(self):
        super().__init__()
        self.writes = {}

    def write(self, key, value):
        self.writes[key] = self.writes.get(key, 0) + 1
        super().write(key, value)


def test_validation_tokens_are_written_once_per_cycle():
    store = CountingStore()

    asyncio.run(make_service(_backend(), ManualClock(), store).get_snapshot(force_refresh=True))

    assert store.writes["gh_etags_v1"] == 1
    assert set(store.read("gh_etags_v1")) == {USER_URL, REPOS_URL}


def test_validation_tokens_are_flushed_when_a_cycle_fails():
    store = CountingStore()
    session = _backend()
    session.add(FOLLOWERS_URL, FakeResponse(429, headers={"Retry-After": "30"}))

    with pytest.raises(RateLimitError):
        asyncio.run(make_service(session, ManualClock(), store).get_snapshot(force_refresh=True))

    assert store.writes["gh_etags_v1"] == 1
