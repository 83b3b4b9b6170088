"""Portfolio source interface (port) consumed by the recovery controller.

Shields consumers from how snapshots are fetched, cached and merged.
"""
from abc import ABC, abstractmethod
from portfolio_sync.domain.models import RefreshResult, Snapshot


class IPortfolioSource(ABC):
    """Abstract interface for producing portfolio snapshots."""

    @abstractmethod
    async def get_snapshot(self, force_refresh: bool = False) -> Snapshot:
        """Return a snapshot, from cache unless a refresh is forced.

        Args:
            force_refresh: Skip the snapshot cache fast path

        Returns:
            The merged portfolio snapshot

        Raises:
            RateLimitError: When the primary API is throttled
            PrimaryFetchFailed: When the account identity is unavailable
        """
        pass

    @abstractmethod
    async def refresh(self, force_refresh: bool = False) -> RefreshResult:
        """Same as get_snapshot, but reports failures as a tagged result."""
        pass
