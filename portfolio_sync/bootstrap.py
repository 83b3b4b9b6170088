"""Object graph construction shared by the entry scripts."""
import time
from typing import Callable, Optional
import aiohttp
from portfolio_sync.application.pinned_resolver import PinnedRepositoryResolver
from portfolio_sync.application.portfolio_service import PortfolioService
from portfolio_sync.application.tag_enricher import TagEnricher
from portfolio_sync.config import Settings
from portfolio_sync.domain.models import Account
from portfolio_sync.domain.store_interface import IKeyValueStore
from portfolio_sync.infrastructure.conditional_fetcher import ConditionalFetcher
from portfolio_sync.infrastructure.github_client import GitHubRestClient
from portfolio_sync.infrastructure.json_file_store import InMemoryStore, JsonFileStore
from portfolio_sync.infrastructure.snapshot_cache import SnapshotCache
from portfolio_sync.infrastructure.token_store import ValidationTokenStore


def open_store(settings: Settings) -> IKeyValueStore:
    """JSON file store in the configured cache dir, or memory when it is unset."""
    if settings.cache_dir:
        return JsonFileStore(settings.cache_dir)
    return InMemoryStore()


def build_portfolio_service(
    session: aiohttp.ClientSession,
    settings: Settings,
    store: Optional[IKeyValueStore] = None,
    clock: Callable[[], float] = time.time
) -> PortfolioService:
    """Wire the fetch layer, resolvers and caches into a PortfolioService."""
    if store is None:
        store = open_store(settings)

    account = Account(username=settings.username)
    token_store = ValidationTokenStore(store, clock=clock, autosave=False)
    fetcher = ConditionalFetcher(
        session=session,
        token_store=token_store,
        clock=clock,
        rate_limit_fallback=settings.rate_limit_fallback
    )
    client = GitHubRestClient(
        fetcher,
        account,
        api_base=settings.api_base,
        raw_base=settings.raw_base
    )

    return PortfolioService(
        client=client,
        pinned_resolver=PinnedRepositoryResolver(fetcher, account, pinned_url=settings.pinned_url),
        tag_enricher=TagEnricher(client),
        snapshot_cache=SnapshotCache(store, ttl=settings.cache_ttl, clock=clock),
        clock=clock,
        token_store=token_store
    )
