"""Domain models representing the synchronized portfolio data."""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def _count(value: Any) -> int:
    """Coerce an API count field to int, treating absence as zero."""
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class Account:
    """The single tracked account."""
    username: str


@dataclass(frozen=True)
class UserProfile:
    """Public profile of the tracked account."""
    login: str
    name: Optional[str] = None
    avatar_url: str = ""
    html_url: str = ""
    bio: Optional[str] = None
    followers: int = 0
    following: int = 0
    public_repos: int = 0
    created_at: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> 'UserProfile':
        return cls(
            login=payload.get("login") or "",
            name=payload.get("name"),
            avatar_url=payload.get("avatar_url") or "",
            html_url=payload.get("html_url") or "",
            bio=payload.get("bio"),
            followers=_count(payload.get("followers")),
            following=_count(payload.get("following")),
            public_repos=_count(payload.get("public_repos")),
            created_at=payload.get("created_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "login": self.login,
            "name": self.name,
            "avatar_url": self.avatar_url,
            "html_url": self.html_url,
            "bio": self.bio,
            "followers": self.followers,
            "following": self.following,
            "public_repos": self.public_repos,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserProfile':
        return cls.from_api(data)


@dataclass(frozen=True)
class FollowerProfile:
    """A single follower of the tracked account."""
    login: str
    name: Optional[str] = None
    avatar_url: str = ""
    html_url: str = ""
    followers: int = 0
    public_repos: int = 0

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> 'FollowerProfile':
        return cls(
            login=payload.get("login") or "",
            name=payload.get("name"),
            avatar_url=payload.get("avatar_url") or "",
            html_url=payload.get("html_url") or "",
            followers=_count(payload.get("followers")),
            public_repos=_count(payload.get("public_repos")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "login": self.login,
            "name": self.name,
            "avatar_url": self.avatar_url,
            "html_url": self.html_url,
            "followers": self.followers,
            "public_repos": self.public_repos,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FollowerProfile':
        return cls.from_api(data)


@dataclass(frozen=True)
class Repository:
    """Immutable repository record.

    Optional fields carry explicit defaults so that consumers never have to
    re-check for absence once a record has crossed the fetch boundary.
    """
    id: int
    name: str
    full_name: str
    html_url: str = ""
    description: str = ""
    language: Optional[str] = None
    stars: int = 0
    forks: int = 0
    open_issues: int = 0
    updated_at: Optional[str] = None
    default_branch: str = "main"
    clone_url: str = ""
    topics: Tuple[str, ...] = ()
    latest_tag: Optional[str] = None
    preview_image: Optional[str] = None

    @property
    def owner(self) -> str:
        """Returns the owning account parsed from the qualified name."""
        return self.full_name.split("/", 1)[0]

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> 'Repository':
        """Validate a REST repository record into a Repository."""
        return cls(
            id=_count(payload.get("id")),
            name=payload.get("name") or "",
            full_name=payload.get("full_name") or "",
            html_url=payload.get("html_url") or "",
            description=payload.get("description") or "",
            language=payload.get("language") or None,
            stars=_count(payload.get("stargazers_count")),
            forks=_count(payload.get("forks_count")),
            open_issues=_count(payload.get("open_issues_count")),
            updated_at=payload.get("updated_at"),
            default_branch=payload.get("default_branch") or "main",
            clone_url=payload.get("clone_url") or "",
            topics=tuple(payload.get("topics") or ()),
        )

    def with_tag(self, tag: Optional[str]) -> 'Repository':
        """Returns a copy carrying the given latest tag label."""
        return replace(self, latest_tag=tag)

    def with_preview(self, preview_image: Optional[str]) -> 'Repository':
        """Returns a copy carrying the given preview image URL."""
        return replace(self, preview_image=preview_image)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "full_name": self.full_name,
            "html_url": self.html_url,
            "description": self.description,
            "language": self.language,
            "stars": self.stars,
            "forks": self.forks,
            "open_issues": self.open_issues,
            "updated_at": self.updated_at,
            "default_branch": self.default_branch,
            "clone_url": self.clone_url,
            "topics": list(self.topics),
            "latest_tag": self.latest_tag,
            "preview_image": self.preview_image,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Repository':
        return cls(
            id=_count(data.get("id")),
            name=data["name"],
            full_name=data.get("full_name") or "",
            html_url=data.get("html_url") or "",
            description=data.get("description") or "",
            language=data.get("language"),
            stars=_count(data.get("stars")),
            forks=_count(data.get("forks")),
            open_issues=_count(data.get("open_issues")),
            updated_at=data.get("updated_at"),
            default_branch=data.get("default_branch") or "main",
            clone_url=data.get("clone_url") or "",
            topics=tuple(data.get("topics") or ()),
            latest_tag=data.get("latest_tag"),
            preview_image=data.get("preview_image"),
        )


@dataclass(frozen=True)
class LanguageCount:
    """Number of repositories using a primary language."""
    language: str
    count: int


@dataclass(frozen=True)
class DerivedStats:
    """Aggregate metrics computed from the profile and repositories."""
    total_stars: int
    total_forks: int
    top_languages: Tuple[LanguageCount, ...]
    most_starred_repo: str
    account_age_days: int
    tier: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_stars": self.total_stars,
            "total_forks": self.total_forks,
            "top_languages": [
                {"language": lc.language, "count": lc.count}
                for lc in self.top_languages
            ],
            "most_starred_repo": self.most_starred_repo,
            "account_age_days": self.account_age_days,
            "tier": self.tier,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DerivedStats':
        return cls(
            total_stars=_count(data.get("total_stars")),
            total_forks=_count(data.get("total_forks")),
            top_languages=tuple(
                LanguageCount(language=item["language"], count=_count(item["count"]))
                for item in data.get("top_languages") or ()
            ),
            most_starred_repo=data.get("most_starred_repo") or "N/A",
            account_age_days=_count(data.get("account_age_days")),
            tier=data.get("tier") or "",
        )


@dataclass(frozen=True)
class Snapshot:
    """The complete merged portfolio, the unit of caching and rendering."""
    user: UserProfile
    repos: Tuple[Repository, ...]
    pinned_repos: Tuple[Repository, ...]
    followers: Tuple[FollowerProfile, ...]
    tags: Dict[str, str]
    stats: DerivedStats
    captured_at: float

    def is_fresh(self, now: float, ttl: float) -> bool:
        """Returns True while the snapshot is younger than the TTL."""
        return now - self.captured_at < ttl

    def with_captured_at(self, captured_at: float) -> 'Snapshot':
        return replace(self, captured_at=captured_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user": self.user.to_dict(),
            "repos": [repo.to_dict() for repo in self.repos],
            "pinned_repos": [repo.to_dict() for repo in self.pinned_repos],
            "followers": [follower.to_dict() for follower in self.followers],
            "tags": dict(self.tags),
            "stats": self.stats.to_dict(),
            "captured_at": self.captured_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Snapshot':
        return cls(
            user=UserProfile.from_dict(data["user"]),
            repos=tuple(Repository.from_dict(r) for r in data["repos"]),
            pinned_repos=tuple(Repository.from_dict(r) for r in data["pinned_repos"]),
            followers=tuple(FollowerProfile.from_dict(f) for f in data["followers"]),
            tags=dict(data.get("tags") or {}),
            stats=DerivedStats.from_dict(data["stats"]),
            captured_at=float(data["captured_at"]),
        )


@dataclass(frozen=True)
class ValidationCacheEntry:
    """Last validation token and decoded body seen for a URL."""
    token: str
    body: Any
    captured_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {"token": self.token, "body": self.body, "captured_at": self.captured_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ValidationCacheEntry':
        return cls(
            token=str(data["token"]),
            body=data.get("body"),
            captured_at=float(data.get("captured_at") or 0),
        )


@dataclass(frozen=True)
class RateLimitState:
    """Known reset time of a throttled API plus the start of the waiting cycle."""
    reset_at: float
    cycle_started_at: Optional[float] = None

    def seconds_remaining(self, now: float) -> float:
        """Seconds until reset, clamped at zero."""
        return max(0.0, self.reset_at - now)

    def progress(self, now: float) -> float:
        """Fraction of the waiting cycle that has elapsed, within [0, 1]."""
        if self.cycle_started_at is None:
            return 0.0
        total = self.reset_at - self.cycle_started_at
        if total <= 0:
            return 1.0
        return min(1.0, max(0.0, (now - self.cycle_started_at) / total))


@dataclass(frozen=True)
class Participation:
    """Weekly commit counts over the last 52 weeks."""
    all: List[int] = field(default_factory=list)
    owner: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class Readme:
    """Raw README content and the branch it was found on."""
    content: str
    branch: str


class RefreshOutcome(Enum):
    """Kind of result produced by a refresh attempt."""
    OK = "ok"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


@dataclass(frozen=True)
class RefreshResult:
    """Tagged result of a refresh attempt."""
    kind: RefreshOutcome
    snapshot: Optional[Snapshot] = None
    reset_at: Optional[float] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, snapshot: Snapshot) -> 'RefreshResult':
        return cls(kind=RefreshOutcome.OK, snapshot=snapshot)

    @classmethod
    def rate_limited(cls, reset_at: float) -> 'RefreshResult':
        return cls(kind=RefreshOutcome.RATE_LIMITED, reset_at=reset_at)

    @classmethod
    def failed(cls, reason: str) -> 'RefreshResult':
        return cls(kind=RefreshOutcome.FAILED, reason=reason)
