"""Pure computations deriving aggregate metrics from the fetched records."""
import time
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence
from portfolio_sync.domain.models import DerivedStats, LanguageCount, Repository, UserProfile

TOP_LANGUAGES = 5
SECONDS_PER_DAY = 60 * 60 * 24
PREVIEW_IMAGE_BASE = "https://opengraph.githubassets.com/1"

# (exclusive lower bound on total stars, label), highest first
TIERS = (
    (500, "Double Espresso"),
    (100, "Ristretto"),
)
BASELINE_TIER = "Mild Roast"

ROASTS = (
    (100, "Double Shot Signature"),
    (50, "Espresso Blend"),
    (20, "Dark Roast"),
)
BASELINE_ROAST = "Medium Roast"


@dataclass(frozen=True)
class RepoAnalysis:
    """Cosmetic per-repository blurb."""
    roast: str
    description: str


def parse_timestamp(value: Optional[str]) -> Optional[float]:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into epoch seconds."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def tier_label(total_stars: int) -> str:
    for threshold, label in TIERS:
        if total_stars > threshold:
            return label
    return BASELINE_TIER


def top_languages(repos: Sequence[Repository], limit: int = TOP_LANGUAGES) -> tuple:
    """Histogram of primary languages, most used first.

    Ties keep the order in which languages were first seen.
    """
    counts = Counter(repo.language for repo in repos if repo.language)
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return tuple(LanguageCount(language=lang, count=n) for lang, n in ranked[:limit])


def most_starred(repos: Sequence[Repository]) -> str:
    if not repos:
        return "N/A"
    # max() keeps the first of equal elements
    return max(repos, key=lambda r: r.stars).name


def calculate_stats(
    user: UserProfile,
    repos: Sequence[Repository],
    now: Optional[float] = None
) -> DerivedStats:
    """Compute the derived statistics for a profile and its repositories."""
    if now is None:
        now = time.time()

    total_stars = sum(repo.stars for repo in repos)
    total_forks = sum(repo.forks for repo in repos)

    created = parse_timestamp(user.created_at)
    if created is None:
        created = now
    account_age_days = max(0, int((now - created) // SECONDS_PER_DAY))

    return DerivedStats(
        total_stars=total_stars,
        total_forks=total_forks,
        top_languages=top_languages(repos),
        most_starred_repo=most_starred(repos),
        account_age_days=account_age_days,
        tier=tier_label(total_stars)
    )


def analyze_repository(repo: Repository) -> RepoAnalysis:
    score = repo.stars * 3 + repo.forks * 2
    roast = BASELINE_ROAST
    for threshold, label in ROASTS:
        if score > threshold:
            roast = label
            break
    return RepoAnalysis(
        roast=roast,
        description=f"A robust {repo.language or 'Unknown'} creation."
    )


def preview_image_url(full_name: str) -> str:
    """Social preview image URL derived from a qualified repository name."""
    return f"{PREVIEW_IMAGE_BASE}/{full_name}"
