"""Export the cached snapshot's repositories to CSV."""
import sys
import csv
import logging
from dotenv import load_dotenv
from portfolio_sync.bootstrap import open_store
from portfolio_sync.config import load_settings
from portfolio_sync.infrastructure.snapshot_cache import SnapshotCache

# Load environment variables from .env or env file
load_dotenv('.env') or load_dotenv('env')


logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def export_to_csv(output_file: str = "repositories.csv"):
    """Export the cached repositories to a CSV file, most starred first.

    Args:
        output_file: Path to output CSV file
    """
    try:
        settings = load_settings()
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    snapshot = SnapshotCache(open_store(settings)).read_stale()
    if snapshot is None:
        logger.error("No cached snapshot found. Run 'python sync_portfolio.py' first.")
        sys.exit(1)

    pinned_names = {repo.name for repo in snapshot.pinned_repos}
    repos = sorted(snapshot.repos, key=lambda r: r.stars, reverse=True)

    try:
        with open(output_file, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)

            writer.writerow([
                'id', 'name', 'full_name', 'language', 'stars', 'forks',
                'open_issues', 'latest_tag', 'pinned', 'updated_at'
            ])

            for repo in repos:
                writer.writerow([
                    repo.id, repo.name, repo.full_name, repo.language or '',
                    repo.stars, repo.forks, repo.open_issues, repo.latest_tag or '',
                    repo.name in pinned_names, repo.updated_at or ''
                ])

        logger.info(f"Exported {len(repos)} repositories to {output_file}")

    except OSError as e:
        logger.error(f"Error exporting snapshot: {e}")
        sys.exit(1)


if __name__ == "__main__":
    output_file = sys.argv[1] if len(sys.argv) > 1 else "repositories.csv"
    export_to_csv(output_file)
