"""GitHub REST endpoint client mapping API payloads into domain models."""
import logging
from typing import List, Optional
from urllib.parse import quote
from portfolio_sync.domain.errors import FetchError, RateLimitError
from portfolio_sync.domain.models import (
    Account,
    FollowerProfile,
    Participation,
    Readme,
    Repository,
    UserProfile
)
from portfolio_sync.infrastructure.conditional_fetcher import ConditionalFetcher


logger = logging.getLogger(__name__)

API_BASE = "https://api.github.com"
RAW_BASE = "https://raw.githubusercontent.com"
PAGE_SIZE = 100
README_FALLBACK_BRANCHES = ("master", "main")


class GitHubRestClient:
    """Read-only, unauthenticated client for the tracked account's endpoints.

    Acts as the anti-corruption layer between the domain and GitHub's REST
    payloads: every record is validated into a domain model here, once.
    """

    def __init__(
        self,
        fetcher: ConditionalFetcher,
        account: Account,
        api_base: str = API_BASE,
        raw_base: str = RAW_BASE
    ):
        self._fetcher = fetcher
        self._account = account
        self._api_base = api_base.rstrip("/")
        self._raw_base = raw_base.rstrip("/")

    @property
    def account(self) -> Account:
        return self._account

    def _user_url(self, suffix: str = "") -> str:
        return f"{self._api_base}/users/{quote(self._account.username)}{suffix}"

    def _repo_url(self, repo_name: str, suffix: str) -> str:
        return (
            f"{self._api_base}/repos/{quote(self._account.username)}/"
            f"{quote(repo_name)}{suffix}"
        )

    async def get_user(self) -> Optional[UserProfile]:
        """Fetch the account identity."""
        payload = await self._fetcher.fetch_json(self._user_url())
        if not isinstance(payload, dict):
            return None
        return UserProfile.from_api(payload)

    async def list_repositories(self) -> Optional[List[Repository]]:
        """Fetch up to one page of repositories, most recently updated first."""
        payload = await self._fetcher.fetch_json(
            self._user_url(f"/repos?sort=updated&per_page={PAGE_SIZE}")
        )
        if not isinstance(payload, list):
            return None
        return [Repository.from_api(item) for item in payload if isinstance(item, dict)]

    async def list_followers(self) -> Optional[List[FollowerProfile]]:
        """Fetch up to one page of followers."""
        payload = await self._fetcher.fetch_json(
            self._user_url(f"/followers?per_page={PAGE_SIZE}")
        )
        if not isinstance(payload, list):
            return None
        return [FollowerProfile.from_api(item) for item in payload if isinstance(item, dict)]

    async def latest_tag(self, repo_name: str) -> Optional[str]:
        """Return the name of the most recent tag of a repository, if any."""
        payload = await self._fetcher.fetch_json(self._repo_url(repo_name, "/tags?per_page=1"))
        if not isinstance(payload, list) or not payload:
            return None
        first = payload[0]
        if not isinstance(first, dict):
            return None
        return first.get("name") or None

    async def participation(self, repo_name: str) -> Optional[Participation]:
        """Return weekly commit counts for a repository.

        GitHub answers 202 while it computes the statistics; that is reported
        as None, like any other failure.
        """
        try:
            payload = await self._fetcher.fetch_json(
                self._repo_url(repo_name, "/stats/participation")
            )
        except (RateLimitError, FetchError) as e:
            logger.warning(f"Participation unavailable for {repo_name}: {e}")
            return None
        if not isinstance(payload, dict):
            return None
        return Participation(
            all=[int(n) for n in payload.get("all") or []],
            owner=[int(n) for n in payload.get("owner") or []]
        )

    async def readme(self, repo_name: str, branch: str = "main") -> Optional[Readme]:
        """Fetch a repository README, trying fallback branches in order."""
        branches = list(dict.fromkeys((branch,) + README_FALLBACK_BRANCHES))
        for candidate in branches:
            url = (
                f"{self._raw_base}/{quote(self._account.username)}/"
                f"{quote(repo_name)}/{quote(candidate)}/README.md"
            )
            try:
                content = await self._fetcher.fetch_text(url)
            except (RateLimitError, FetchError) as e:
                logger.debug(f"README fetch failed on {candidate}: {e}")
                continue
            if content is not None:
                return Readme(content=content, branch=candidate)
        return None
