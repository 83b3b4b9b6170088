"""Conditional HTTP GET with validation tokens, redirect following and throttling detection."""
import asyncio
import json
import logging
import math
import time
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
from urllib.parse import urljoin
import aiohttp
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential
)
from portfolio_sync.domain.errors import FetchError, RateLimitError
from portfolio_sync.infrastructure.token_store import ValidationTokenStore


logger = logging.getLogger(__name__)

NOT_MODIFIED = 304
STILL_COMPUTING = 202
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
THROTTLE_STATUSES = frozenset({403, 429})
TRANSIENT_ERRORS = (asyncio.TimeoutError, aiohttp.ClientConnectionError)

DEFAULT_RATE_LIMIT_FALLBACK = 60
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_HEADERS = {"Accept": "application/vnd.github+json"}


def create_session(timeout: float = 30) -> aiohttp.ClientSession:
    """Create the shared aiohttp session used by all fetchers."""
    return aiohttp.ClientSession(
        headers=DEFAULT_HEADERS,
        timeout=aiohttp.ClientTimeout(total=timeout)
    )


def _finite(value: str) -> Optional[float]:
    """Parse a numeric header value, rejecting NaN and infinities."""
    try:
        number = float(value)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def compute_reset_time(
    headers: Mapping[str, str],
    now: float,
    fallback: float = DEFAULT_RATE_LIMIT_FALLBACK
) -> float:
    """Compute when a throttled API will accept requests again.

    ``retry-after`` wins over ``x-ratelimit-reset``; with neither header the
    reset is ``now + fallback``. A value that cannot be used falls through
    to the next rule.

    Args:
        headers: Response headers with lower-cased names
        now: Current epoch seconds
        fallback: Seconds to wait when the response carries no hint

    Returns:
        Reset time in epoch seconds
    """
    retry_after = headers.get("retry-after")
    if retry_after:
        delay = _finite(retry_after)
        if delay is not None:
            return now + max(0.0, delay)
        try:
            return parsedate_to_datetime(retry_after).timestamp()
        except (TypeError, ValueError, OverflowError):
            logger.debug(f"Unparseable retry-after header: {retry_after!r}")

    reset = headers.get("x-ratelimit-reset")
    if reset:
        reset_at = _finite(reset)
        if reset_at is not None:
            return reset_at
        logger.debug(f"Unparseable x-ratelimit-reset header: {reset!r}")

    return now + fallback


def format_epoch(epoch: float) -> str:
    """Local time of an epoch for log lines; out-of-range values print raw."""
    try:
        return time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(epoch))
    except (OverflowError, OSError, ValueError):
        return f"epoch {epoch:.0f}"


class ConditionalFetcher:
    """Single-URL GET client that avoids re-downloading unchanged resources.

    Ordinary 4xx/5xx responses yield None; only throttling raises
    (RateLimitError), and transport failures raise FetchError once
    retries are exhausted.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        token_store: ValidationTokenStore,
        clock: Callable[[], float] = time.time,
        rate_limit_fallback: float = DEFAULT_RATE_LIMIT_FALLBACK,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        max_attempts: int = 3,
        max_backoff: float = 8.0
    ):
        """Initialize the fetcher.

        Args:
            session: Shared aiohttp session
            token_store: Validation-token cache
            clock: Source of epoch seconds
            rate_limit_fallback: Seconds to wait when throttling carries no reset hint
            max_redirects: Maximum redirect hops followed per fetch
            max_attempts: Attempts per request on transport failures
            max_backoff: Upper bound of the exponential backoff between attempts
        """
        self._session = session
        self._token_store = token_store
        self._clock = clock
        self._rate_limit_fallback = rate_limit_fallback
        self._max_redirects = max_redirects
        self._max_attempts = max_attempts
        self._max_backoff = max_backoff

    async def _request_once(
        self,
        url: str,
        headers: Dict[str, str]
    ) -> Tuple[int, Dict[str, str], Optional[str]]:
        async with self._session.get(url, headers=headers, allow_redirects=False) as resp:
            status = resp.status
            resp_headers = {k.lower(): v for k, v in resp.headers.items()}
            text = None
            if 200 <= status < 300 and status != STILL_COMPUTING:
                try:
                    text = await resp.text()
                except (UnicodeDecodeError, LookupError) as e:
                    logger.warning(f"{url} returned a body that could not be decoded: {e}")
            return status, resp_headers, text

    async def _request(
        self,
        url: str,
        headers: Dict[str, str]
    ) -> Tuple[int, Dict[str, str], Optional[str]]:
        """Issue one GET, retrying transport failures with exponential backoff."""
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=1, min=0, max=self._max_backoff),
            reraise=True
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await self._request_once(url, headers)
        except TRANSIENT_ERRORS as e:
            raise FetchError(url, str(e) or type(e).__name__) from e
        except aiohttp.ClientError as e:
            raise FetchError(url, str(e) or type(e).__name__) from e

    def _raise_rate_limited(self, url: str, status: int, headers: Dict[str, str]) -> None:
        reset_at = compute_reset_time(headers, self._clock(), self._rate_limit_fallback)
        logger.warning(
            f"Rate limited by {url} (HTTP {status}). "
            f"Resets at {format_epoch(reset_at)}"
        )
        raise RateLimitError("API Rate Limit Exceeded", reset_at)

    async def fetch_json(self, url: str, _redirects: int = 0) -> Optional[Any]:
        """Fetch and decode a JSON resource.

        Args:
            url: Absolute URL to fetch

        Returns:
            Decoded JSON, the previously stored body when unchanged,
            or None when nothing is available from this endpoint

        Raises:
            RateLimitError: When the response signals throttling
            FetchError: When the request failed at the transport level
        """
        entry = self._token_store.get(url)
        headers: Dict[str, str] = {}
        if entry is not None:
            headers["If-None-Match"] = entry.token

        status, resp_headers, text = await self._request(url, headers)

        if status == NOT_MODIFIED:
            if entry is None:
                logger.warning(f"{url} reported not modified without a stored body")
                return None
            logger.debug(f"{url} not modified, reusing stored body")
            return entry.body

        if status in REDIRECT_STATUSES:
            location = self._redirect_target(url, resp_headers, _redirects)
            if location is None:
                return None
            return await self.fetch_json(location, _redirects + 1)

        if status in THROTTLE_STATUSES:
            self._raise_rate_limited(url, status, resp_headers)

        if status == STILL_COMPUTING:
            logger.info(f"{url} is still being computed upstream")
            return None

        if not 200 <= status < 300:
            logger.warning(f"{url} returned HTTP {status}")
            return None

        if text is None:
            return None

        try:
            body = json.loads(text)
        except ValueError:
            logger.warning(f"{url} returned a body that is not valid JSON")
            return None

        etag = resp_headers.get("etag")
        if etag:
            self._token_store.put(url, etag, body)

        return body

    async def fetch_text(self, url: str, _redirects: int = 0) -> Optional[str]:
        """Fetch a raw text resource without validation tokens.

        Raises:
            RateLimitError: When the response signals throttling
            FetchError: When the request failed at the transport level
        """
        status, resp_headers, text = await self._request(url, {})

        if status in REDIRECT_STATUSES:
            location = self._redirect_target(url, resp_headers, _redirects)
            if location is None:
                return None
            return await self.fetch_text(location, _redirects + 1)

        if status in THROTTLE_STATUSES:
            self._raise_rate_limited(url, status, resp_headers)

        if status == STILL_COMPUTING or not 200 <= status < 300:
            return None

        return text

    def _redirect_target(
        self,
        url: str,
        headers: Dict[str, str],
        redirects: int
    ) -> Optional[str]:
        location = headers.get("location")
        if not location:
            logger.warning(f"{url} redirected without a location")
            return None
        if redirects >= self._max_redirects:
            logger.warning(f"Giving up on {url} after {redirects} redirects")
            return None
        return urljoin(url, location)
