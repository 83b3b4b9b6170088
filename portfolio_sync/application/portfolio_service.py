"""Portfolio service orchestrating the fetch, merge and caching of snapshots."""
import asyncio
import logging
import time
from typing import Any, Callable, List, Optional, Tuple
from portfolio_sync.application.pinned_resolver import PinnedRepositoryResolver
from portfolio_sync.application.statistics import calculate_stats, preview_image_url
from portfolio_sync.application.tag_enricher import TagEnricher, apply_tags
from portfolio_sync.domain.errors import FetchError, PrimaryFetchFailed, RateLimitError
from portfolio_sync.domain.models import (
    Participation,
    Readme,
    RefreshResult,
    Repository,
    Snapshot
)
from portfolio_sync.domain.source_interface import IPortfolioSource
from portfolio_sync.infrastructure.github_client import GitHubRestClient
from portfolio_sync.infrastructure.snapshot_cache import SnapshotCache
from portfolio_sync.infrastructure.token_store import ValidationTokenStore


logger = logging.getLogger(__name__)


class PortfolioService(IPortfolioSource):
    """Application service producing portfolio snapshots.

    Decides between the snapshot cache and the network, runs the independent
    requests concurrently and merges their results. Only RateLimitError and
    PrimaryFetchFailed ever cross this boundary; everything optional degrades
    to "no data".
    """

    def __init__(
        self,
        client: GitHubRestClient,
        pinned_resolver: PinnedRepositoryResolver,
        tag_enricher: TagEnricher,
        snapshot_cache: SnapshotCache,
        clock: Callable[[], float] = time.time,
        token_store: Optional[ValidationTokenStore] = None
    ):
        """Initialize portfolio service.

        Args:
            client: GitHub REST endpoint client
            pinned_resolver: Pinned repository resolver
            tag_enricher: Latest-tag enricher
            snapshot_cache: Snapshot fast-path cache
            clock: Source of epoch seconds
            token_store: Validation-token cache flushed once per network cycle
        """
        self._client = client
        self._pinned_resolver = pinned_resolver
        self._tag_enricher = tag_enricher
        self._snapshot_cache = snapshot_cache
        self._clock = clock
        self._token_store = token_store

    def _flush_tokens(self) -> None:
        if self._token_store is not None:
            self._token_store.flush()

    @staticmethod
    def _optional(result: Any, what: str) -> Optional[Any]:
        """Unwrap a gathered result of a non-primary listing."""
        if isinstance(result, FetchError):
            logger.warning(f"Could not fetch {what}: {result}")
            return None
        if isinstance(result, BaseException):
            raise result
        return result

    async def get_snapshot(self, force_refresh: bool = False) -> Snapshot:
        """Return the portfolio snapshot.

        Args:
            force_refresh: Skip the snapshot cache fast path

        Returns:
            The merged snapshot

        Raises:
            RateLimitError: When any primary API listing is throttled
            PrimaryFetchFailed: When the account identity is unavailable
        """
        if not force_refresh:
            cached = self._snapshot_cache.read()
            if cached is not None:
                logger.info("Serving portfolio snapshot from cache")
                return cached

        try:
            return await self._fetch_snapshot()
        finally:
            self._flush_tokens()

    async def _fetch_snapshot(self) -> Snapshot:
        username = self._client.account.username
        start_time = time.time()
        logger.info(f"Refreshing portfolio for {username}")

        user_res, repos_res, followers_res, pinned_res = await asyncio.gather(
            self._client.get_user(),
            self._client.list_repositories(),
            self._client.list_followers(),
            self._pinned_resolver.fetch_pinned(),
            return_exceptions=True
        )

        for result in (user_res, repos_res, followers_res):
            if isinstance(result, RateLimitError):
                raise result

        if isinstance(user_res, FetchError):
            logger.error(f"Could not fetch GitHub user {username}: {user_res}")
            raise PrimaryFetchFailed(
                f"Could not fetch GitHub user {username}: {user_res.reason}"
            ) from user_res
        if isinstance(user_res, BaseException):
            raise user_res
        if user_res is None:
            logger.error(f"GitHub user {username} returned no data")
            raise PrimaryFetchFailed(
                f"Could not fetch GitHub user {username}. Check your connection or username."
            )

        repos: List[Repository] = self._optional(repos_res, "repositories") or []
        followers = self._optional(followers_res, "followers") or []
        pinned_raw: List[Repository] = self._optional(pinned_res, "pinned repositories") or []

        repos = [repo.with_preview(preview_image_url(repo.full_name)) for repo in repos]
        pinned = self._pinned_resolver.resolve(repos, pinned_raw)

        tags = await self._tag_enricher.enrich(self._tag_enricher.select(pinned, repos))
        repos = apply_tags(repos, tags)
        pinned = apply_tags(pinned, tags)

        now = self._clock()
        snapshot = Snapshot(
            user=user_res,
            repos=tuple(repos),
            pinned_repos=tuple(pinned),
            followers=tuple(followers),
            tags=tags,
            stats=calculate_stats(user_res, repos, now=now),
            captured_at=now
        )
        snapshot = self._snapshot_cache.write(snapshot)

        logger.info(
            f"Portfolio refreshed: {len(repos)} repositories, {len(pinned)} pinned, "
            f"{len(followers)} followers, {len(tags)} tags in "
            f"{time.time() - start_time:.2f} seconds"
        )
        return snapshot

    async def refresh(self, force_refresh: bool = False) -> RefreshResult:
        """Tagged-result form of get_snapshot; never raises."""
        try:
            return RefreshResult.ok(await self.get_snapshot(force_refresh))
        except RateLimitError as e:
            return RefreshResult.rate_limited(e.reset_at)
        except PrimaryFetchFailed as e:
            return RefreshResult.failed(str(e))
        except Exception as e:
            logger.error(f"Unexpected error while refreshing portfolio: {e}")
            return RefreshResult.failed(str(e) or type(e).__name__)

    async def repo_details(
        self,
        repo: Repository
    ) -> Tuple[Optional[Readme], Optional[Participation]]:
        """Fetch the README and commit participation of one repository.

        Both are optional data and come back as None on any failure.
        """
        try:
            readme, participation = await asyncio.gather(
                self._client.readme(repo.name, repo.default_branch),
                self._client.participation(repo.name)
            )
        finally:
            self._flush_tokens()
        return readme, participation
