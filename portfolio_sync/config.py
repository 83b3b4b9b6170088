"""Settings loaded from environment variables."""
import os
from dataclasses import dataclass
from typing import Mapping, Optional
from portfolio_sync.application.pinned_resolver import PINNED_SERVICE_URL
from portfolio_sync.infrastructure.github_client import API_BASE, RAW_BASE


@dataclass(frozen=True)
class Settings:
    """Runtime configuration of the synchronization layer."""
    username: str
    api_base: str = API_BASE
    pinned_url: str = PINNED_SERVICE_URL
    raw_base: str = RAW_BASE
    cache_dir: str = ".portfolio_cache"
    cache_ttl: float = 3600
    request_timeout: float = 30
    rate_limit_fallback: float = 60
    retry_interval: float = 30
    log_level: str = "INFO"


def _number(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from environment variables.

    Args:
        env: Mapping to read instead of os.environ

    Raises:
        ValueError: When PORTFOLIO_USERNAME is missing or a number is malformed
    """
    if env is None:
        env = os.environ

    username = (env.get("PORTFOLIO_USERNAME") or "").strip()
    if not username:
        raise ValueError("PORTFOLIO_USERNAME environment variable is required")

    return Settings(
        username=username,
        api_base=env.get("PORTFOLIO_API_BASE") or API_BASE,
        pinned_url=env.get("PORTFOLIO_PINNED_URL") or PINNED_SERVICE_URL,
        raw_base=env.get("PORTFOLIO_RAW_BASE") or RAW_BASE,
        cache_dir=env.get("PORTFOLIO_CACHE_DIR") or ".portfolio_cache",
        cache_ttl=_number(env, "PORTFOLIO_CACHE_TTL", 3600),
        request_timeout=_number(env, "PORTFOLIO_REQUEST_TIMEOUT", 30),
        rate_limit_fallback=_number(env, "PORTFOLIO_RATE_LIMIT_FALLBACK", 60),
        retry_interval=_number(env, "PORTFOLIO_RETRY_INTERVAL", 30),
        log_level=(env.get("PORTFOLIO_LOG_LEVEL") or "INFO").upper()
    )
