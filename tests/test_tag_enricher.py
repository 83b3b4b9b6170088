"""Tests for the tag enricher."""
import asyncio
import aiohttp
from fakes import FakeResponse, FakeSession, ManualClock, tags_url
from portfolio_sync.application.tag_enricher import TagEnricher, apply_tags
from portfolio_sync.domain.models import Account, Repository
from portfolio_sync.infrastructure.conditional_fetcher import ConditionalFetcher
from portfolio_sync.infrastructure.github_client import GitHubRestClient
from portfolio_sync.infrastructure.json_file_store import InMemoryStore
from portfolio_sync.infrastructure.token_store import ValidationTokenStore


def _enricher(session: FakeSession) -> TagEnricher:
    fetcher = ConditionalFetcher(
        session, ValidationTokenStore(InMemoryStore()), clock=ManualClock(),
        max_attempts=1, max_backoff=0
    )
    return TagEnricher(GitHubRestClient(fetcher, Account("octocat")))


def _repo(name: str) -> Repository:
    return Repository(id=1, name=name, full_name=f"octocat/{name}")


def test_select_caps_general_set_and_deduplicates():
    enricher = _enricher(FakeSession())
    pinned = [_repo("p1"), _repo("g2")]
    general = [_repo(f"g{i}") for i in range(10)]

    selected = enricher.select(pinned, general)

    assert [r.name for r in selected] == ["p1", "g2", "g0", "g1", "g3", "g4"]


def test_enrich_omits_missing_and_failed_lookups():
    session = FakeSession({
        tags_url("tagged"): FakeResponse(200, [{"name": "v2.1.0"}, {"name": "v2.0.0"}]),
        tags_url("untagged"): FakeResponse(200, []),
        tags_url("throttled"): FakeResponse(403, headers={"X-RateLimit-Reset": "1"}),
        tags_url("offline"): aiohttp.ClientConnectionError("refused"),
    })
    repos = [_repo("tagged"), _repo("untagged"), _repo("throttled"), _repo("offline"), _repo("missing")]

    tags = asyncio.run(_enricher(session).enrich(repos))

    assert tags == {"tagged": "v2.1.0"}
    assert len(session.requests) == 5


def test_apply_tags():
    repos = [_repo("a"), _repo("b")]

    tagged = apply_tags(repos, {"a": "v1"})

    assert tagged[0].latest_tag == "v1"
    assert tagged[1].latest_tag is None
