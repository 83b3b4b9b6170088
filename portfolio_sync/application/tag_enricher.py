"""Best-effort latest-tag lookup for a bounded set of repositories."""
import asyncio
import logging
from typing import Dict, List, Mapping, Optional, Sequence
from portfolio_sync.domain.models import Repository
from portfolio_sync.infrastructure.github_client import GitHubRestClient


logger = logging.getLogger(__name__)

GENERAL_LIMIT = 5


def apply_tags(repos: Sequence[Repository], tags: Mapping[str, str]) -> List[Repository]:
    """Return copies of the repositories carrying their latest tag, if known."""
    return [repo.with_tag(tags[repo.name]) if repo.name in tags else repo for repo in repos]


class TagEnricher:
    """Looks up latest tags concurrently; one failed lookup never aborts the batch."""

    def __init__(self, client: GitHubRestClient, general_limit: int = GENERAL_LIMIT):
        self._client = client
        self._general_limit = general_limit

    def select(
        self,
        pinned: Sequence[Repository],
        repos: Sequence[Repository]
    ) -> List[Repository]:
        """Pinned repositories plus the first few of the general set, without duplicates."""
        selected: Dict[str, Repository] = {}
        for repo in list(pinned) + list(repos[:self._general_limit]):
            selected.setdefault(repo.name, repo)
        return list(selected.values())

    async def _lookup(self, repo: Repository) -> Optional[str]:
        try:
            return await self._client.latest_tag(repo.name)
        except Exception as e:
            logger.warning(f"Tag lookup failed for {repo.name}: {e}")
            return None

    async def enrich(self, repos: Sequence[Repository]) -> Dict[str, str]:
        """Map repository name to latest tag, omitting misses and failures."""
        results = await asyncio.gather(*(self._lookup(repo) for repo in repos))
        return {repo.name: tag for repo, tag in zip(repos, results) if tag}
