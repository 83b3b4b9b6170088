"""Display statistics from the cached portfolio snapshot."""
import sys
import time
from dotenv import load_dotenv
from portfolio_sync.application.statistics import analyze_repository
from portfolio_sync.bootstrap import open_store
from portfolio_sync.config import load_settings
from portfolio_sync.infrastructure.snapshot_cache import SnapshotCache

# Load environment variables from .env or env file
load_dotenv('.env') or load_dotenv('env')


def print_section(title: str):
    """Print a section header."""
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


def display_statistics():
    """Display the derived stats, top repositories and languages."""
    settings = load_settings()
    cache = SnapshotCache(open_store(settings), ttl=settings.cache_ttl)
    snapshot = cache.read_stale()
    if snapshot is None:
        print("No cached snapshot found. Run 'python sync_portfolio.py' first.")
        sys.exit(1)

    stats = snapshot.stats
    age_minutes = (time.time() - snapshot.captured_at) / 60

    print_section("Overall Statistics")
    print(f"Account: {snapshot.user.login}")
    print(f"Snapshot age: {age_minutes:.0f} minutes "
          f"({'fresh' if snapshot.is_fresh(time.time(), cache.ttl) else 'stale'})")
    print(f"Repositories: {len(snapshot.repos):,}")
    print(f"Followers: {len(snapshot.followers):,}")
    print(f"Total stars: {stats.total_stars:,}")
    print(f"Total forks: {stats.total_forks:,}")
    print(f"Account age: {stats.account_age_days:,} days")
    print(f"Tier: {stats.tier}")

    print_section("Top Languages")
    for lc in stats.top_languages:
        print(f"{lc.language:<40} {lc.count:>15,}")

    print_section("Pinned Repositories")
    print(f"{'Repository':<30} {'Stars':>8} {'Tag':>10}  Roast")
    print("-" * 60)
    for repo in snapshot.pinned_repos:
        analysis = analyze_repository(repo)
        print(f"{repo.name:<30} {repo.stars:>8,} {repo.latest_tag or '-':>10}  {analysis.roast}")


if __name__ == "__main__":
    display_statistics()
