"""Main entry point for the portfolio synchronizer.

Fetches (or serves from cache) the tracked account's portfolio snapshot and
writes it as JSON. With PORTFOLIO_WATCH=1 the recovery controller keeps
retrying through rate limits until a snapshot is available.
"""
import asyncio
import json
import logging
import os
import sys
from dotenv import load_dotenv
from portfolio_sync.application.recovery_controller import (
    ControllerState,
    RateLimitRecoveryController
)
from portfolio_sync.bootstrap import build_portfolio_service
from portfolio_sync.config import Settings, load_settings
from portfolio_sync.domain.errors import PrimaryFetchFailed, RateLimitError
from portfolio_sync.domain.models import Snapshot
from portfolio_sync.infrastructure.conditional_fetcher import create_session

# Load environment variables from .env or env file
load_dotenv('.env') or load_dotenv('env')


logger = logging.getLogger(__name__)


def write_snapshot(snapshot: Snapshot, output_file: str) -> None:
    """Write a snapshot to a JSON file."""
    with open(output_file, 'w', encoding='utf-8') as f:
        json.dump(snapshot.to_dict(), f, indent=2)
    logger.info(f"Wrote snapshot to {output_file}")


def log_summary(snapshot: Snapshot) -> None:
    stats = snapshot.stats
    logger.info("=" * 50)
    logger.info(f"Portfolio of {snapshot.user.login}:")
    logger.info(f"  Repositories: {len(snapshot.repos)} ({len(snapshot.pinned_repos)} pinned)")
    logger.info(f"  Followers: {len(snapshot.followers)}")
    logger.info(f"  Stars: {stats.total_stars}  Forks: {stats.total_forks}")
    logger.info(f"  Most starred: {stats.most_starred_repo}")
    logger.info(f"  Tier: {stats.tier}")
    logger.info("=" * 50)


async def run_watch(service, settings: Settings) -> Snapshot:
    """Drive the recovery controller until a snapshot is ready."""
    controller = RateLimitRecoveryController(service, retry_interval=settings.retry_interval)
    ready = asyncio.Event()
    last_logged = {"seconds": None}

    def on_change(ctrl: RateLimitRecoveryController) -> None:
        if ctrl.state is ControllerState.READY:
            ready.set()
        elif ctrl.state is ControllerState.FAILED:
            logger.error(f"Unable to fetch data: {ctrl.error}")
            ready.set()
        elif ctrl.state is ControllerState.RATE_LIMITED:
            remaining = ctrl.seconds_remaining()
            # log every 10 seconds of countdown
            if remaining % 10 == 0 and remaining != last_logged["seconds"]:
                last_logged["seconds"] = remaining
                logger.info(f"API limit reached, {ctrl.countdown_text()}")

    controller.subscribe(on_change)
    await controller.run(ready)

    if controller.snapshot is None:
        raise PrimaryFetchFailed(controller.error or "No snapshot available")
    return controller.snapshot


async def main():
    """Execute the synchronization."""
    try:
        settings = load_settings()
    except ValueError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(str(e))
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    output_file = sys.argv[1] if len(sys.argv) > 1 else "snapshot.json"
    force_refresh = os.getenv("PORTFOLIO_FORCE_REFRESH", "0") == "1"
    watch = os.getenv("PORTFOLIO_WATCH", "0") == "1"

    logger.info(f"Starting portfolio sync for {settings.username}")

    session = create_session(settings.request_timeout)
    try:
        service = build_portfolio_service(session, settings)
        if watch:
            snapshot = await run_watch(service, settings)
        else:
            snapshot = await service.get_snapshot(force_refresh=force_refresh)

        log_summary(snapshot)
        write_snapshot(snapshot, output_file)

    except RateLimitError as e:
        logger.error(f"API rate limit reached, resets at epoch {e.reset_at:.0f}")
        sys.exit(2)
    except PrimaryFetchFailed as e:
        logger.error(f"Sync failed: {e}")
        sys.exit(1)
    finally:
        await session.close()


if __name__ == "__main__":
    asyncio.run(main())
