"""Resolution of the featured (pinned) repositories."""
import logging
import re
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlencode
from portfolio_sync.domain.errors import PortfolioError
from portfolio_sync.domain.models import Account, Repository
from portfolio_sync.infrastructure.conditional_fetcher import ConditionalFetcher


logger = logging.getLogger(__name__)

PINNED_SERVICE_URL = "https://gh-pinned-repos.egoist.dev/"
FALLBACK_SIZE = 6
SYNTHETIC_ID_BASE = 999000


def parse_count(value: Any) -> int:
    """Parse a scraped count such as ``"1,234"`` or ``12``; garbage becomes 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return max(0, int(value))
    digits = re.sub(r"[^0-9]", "", str(value or ""))
    return int(digits) if digits else 0


def map_pinned_record(record: Dict[str, Any], index: int) -> Optional[Repository]:
    """Map one record of the pinned service into a Repository.

    Returns:
        The repository, or None when the record lacks an owner or name
    """
    owner = record.get("owner")
    name = record.get("repo")
    if not owner or not name:
        return None

    return Repository(
        id=SYNTHETIC_ID_BASE + index,
        name=name,
        full_name=f"{owner}/{name}",
        html_url=record.get("link") or f"https://github.com/{owner}/{name}",
        description=record.get("description") or "",
        language=record.get("language") or None,
        stars=parse_count(record.get("stars")),
        forks=parse_count(record.get("forks")),
        clone_url=f"https://github.com/{owner}/{name}.git",
        preview_image=record.get("image") or None
    )


def top_by_stars(repos: Sequence[Repository], limit: int = FALLBACK_SIZE) -> List[Repository]:
    """Select the most starred repositories, keeping input order among ties."""
    return sorted(repos, key=lambda r: r.stars, reverse=True)[:limit]


def reconcile_pinned(
    pinned: Sequence[Repository],
    repos: Sequence[Repository]
) -> List[Repository]:
    """Overwrite pinned entries with the authoritative general-set records.

    The pinned service is scraped and can report stale counts. Matching is by
    repository name; only the pinned preview image survives the merge.
    """
    by_name = {repo.name: repo for repo in repos}
    reconciled = []
    for entry in pinned:
        authoritative = by_name.get(entry.name)
        if authoritative is None:
            reconciled.append(entry)
            continue
        if entry.preview_image:
            authoritative = authoritative.with_preview(entry.preview_image)
        reconciled.append(authoritative)
    return reconciled


class PinnedRepositoryResolver:
    """Fetches featured repositories from the secondary pinned service.

    Falls back to the top repositories by star count when the service is
    unavailable, malformed or empty.
    """

    def __init__(
        self,
        fetcher: ConditionalFetcher,
        account: Account,
        pinned_url: str = PINNED_SERVICE_URL,
        fallback_size: int = FALLBACK_SIZE
    ):
        """Initialize the resolver.

        Args:
            fetcher: Conditional fetcher shared with the primary API client
            account: Tracked account
            pinned_url: Base URL of the pinned-repository service
            fallback_size: Number of repositories selected by the fallback
        """
        self._fetcher = fetcher
        self._account = account
        self._pinned_url = pinned_url
        self._fallback_size = fallback_size

    async def fetch_pinned(self) -> List[Repository]:
        """Query the pinned service; any failure yields an empty list."""
        url = f"{self._pinned_url}?{urlencode({'username': self._account.username})}"
        try:
            payload = await self._fetcher.fetch_json(url)
        except PortfolioError as e:
            logger.warning(f"Pinned repository service unavailable: {e}")
            return []

        if not isinstance(payload, list):
            if payload is not None:
                logger.warning("Pinned repository service returned malformed data")
            return []

        pinned = []
        for index, record in enumerate(payload):
            if not isinstance(record, dict):
                continue
            repo = map_pinned_record(record, index)
            if repo is not None:
                pinned.append(repo)
        return pinned

    def resolve(
        self,
        repos: Sequence[Repository],
        pinned: Sequence[Repository]
    ) -> List[Repository]:
        """Pick the pinned list (or the star-ranked fallback) and reconcile it."""
        if not pinned:
            logger.info(
                f"No pinned repositories available, using top {self._fallback_size} by stars"
            )
            pinned = top_by_stars(repos, self._fallback_size)
        return reconcile_pinned(pinned, repos)

    async def get_pinned(self, repos: Sequence[Repository]) -> List[Repository]:
        """Fetch then resolve against an already available repository list."""
        return self.resolve(repos, await self.fetch_pinned())
