"""Consumer-side state machine recovering from API throttling."""
import asyncio
import logging
import math
import time
from enum import Enum
from typing import Callable, List, Optional
from portfolio_sync.domain.models import (
    RateLimitState,
    RefreshOutcome,
    RefreshResult,
    Snapshot
)
from portfolio_sync.domain.source_interface import IPortfolioSource


logger = logging.getLogger(__name__)

DEFAULT_RETRY_INTERVAL = 30
DEFAULT_TICK_INTERVAL = 1


class ControllerState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    RATE_LIMITED = "rate_limited"
    BACKGROUND_REFRESHING = "background_refreshing"
    FAILED = "failed"


class RateLimitRecoveryController:
    """Wraps a portfolio source and retries it until a snapshot is available.

    While rate limited, a countdown is recomputed on every tick from the stored
    reset time; reaching zero triggers a forced refresh. A fixed retry interval
    also triggers one, so recovery does not depend on the reset time alone.
    At most one attempt is in flight at any time.
    """

    def __init__(
        self,
        source: IPortfolioSource,
        clock: Callable[[], float] = time.time,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        refresh_interval: Optional[float] = None
    ):
        """Initialize the controller.

        Args:
            source: Portfolio source to drive
            clock: Source of epoch seconds
            retry_interval: Seconds between fixed-interval retries while rate limited
            tick_interval: Seconds between ticks when driven by run()
            refresh_interval: Seconds between scheduled background refreshes
                while ready; None disables them
        """
        self._source = source
        self._clock = clock
        self._retry_interval = retry_interval
        self._tick_interval = tick_interval
        self._refresh_interval = refresh_interval

        self._state = ControllerState.IDLE
        self._snapshot: Optional[Snapshot] = None
        self._rate_limit: Optional[RateLimitState] = None
        self._error: Optional[str] = None
        self._in_flight = False
        self._last_attempt_at: Optional[float] = None
        self._listeners: List[Callable[['RateLimitRecoveryController'], None]] = []

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def snapshot(self) -> Optional[Snapshot]:
        return self._snapshot

    @property
    def rate_limit(self) -> Optional[RateLimitState]:
        return self._rate_limit

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def busy(self) -> bool:
        """True while a refresh attempt is in flight."""
        return self._in_flight

    def subscribe(self, listener: Callable[['RateLimitRecoveryController'], None]) -> None:
        """Register a callback invoked after every transition and countdown tick."""
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in self._listeners:
            listener(self)

    def _set_state(self, state: ControllerState) -> None:
        if state is not self._state:
            logger.info(f"Recovery controller: {self._state.value} -> {state.value}")
        self._state = state
        self._notify()

    def seconds_remaining(self) -> int:
        """Whole seconds until the stored reset time, never negative."""
        if self._rate_limit is None:
            return 0
        return int(math.ceil(self._rate_limit.seconds_remaining(self._clock())))

    def countdown_text(self) -> str:
        minutes, seconds = divmod(self.seconds_remaining(), 60)
        return f"{minutes}m {seconds}s remaining"

    def progress(self) -> float:
        """Elapsed fraction of the current waiting cycle."""
        if self._rate_limit is None:
            return 0.0
        return self._rate_limit.progress(self._clock())

    async def start(self) -> None:
        """Initial load; served from the snapshot cache when it is fresh."""
        if self._state is not ControllerState.IDLE:
            logger.debug("Recovery controller already started")
            return
        self._set_state(ControllerState.LOADING)
        await self._attempt(force_refresh=False)

    async def refresh(self) -> bool:
        """Manually request a forced refresh.

        Returns:
            False when the request was ignored because an attempt is in flight
        """
        if self._in_flight:
            logger.info("Refresh already in progress, ignoring request")
            return False

        if self._state is ControllerState.IDLE:
            await self.start()
            return True
        if self._state is ControllerState.READY:
            self._set_state(ControllerState.BACKGROUND_REFRESHING)
        elif self._state is ControllerState.FAILED:
            self._set_state(ControllerState.LOADING)

        await self._attempt(force_refresh=True)
        return True

    async def tick(self) -> bool:
        """Advance timers by one step.

        Returns:
            True when the tick triggered a refresh attempt
        """
        if self._in_flight:
            return False

        now = self._clock()
        since_last = None if self._last_attempt_at is None else now - self._last_attempt_at

        if self._state is ControllerState.RATE_LIMITED:
            # the countdown fires once per cycle; later retries follow the interval
            countdown_elapsed = self.seconds_remaining() <= 0 and (
                self._last_attempt_at is None
                or self._rate_limit is None
                or self._last_attempt_at < self._rate_limit.reset_at
            )
            interval_elapsed = since_last is not None and since_last >= self._retry_interval
            if not (countdown_elapsed or interval_elapsed):
                self._notify()
                return False
            logger.info("Retrying after rate limit")
            await self._attempt(force_refresh=True)
            return True

        if (
            self._state is ControllerState.READY
            and self._refresh_interval is not None
            and since_last is not None
            and since_last >= self._refresh_interval
        ):
            self._set_state(ControllerState.BACKGROUND_REFRESHING)
            await self._attempt(force_refresh=True)
            return True

        return False

    async def run(self, stop_event: asyncio.Event) -> None:
        """Start, then tick every tick_interval seconds until stop_event is set."""
        await self.start()
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._tick_interval)
            except asyncio.TimeoutError:
                await self.tick()

    async def _attempt(self, force_refresh: bool) -> None:
        self._in_flight = True
        self._last_attempt_at = self._clock()
        try:
            result = await self._source.refresh(force_refresh)
        except Exception as e:
            logger.error(f"Portfolio source raised instead of reporting a result: {e}")
            result = RefreshResult.failed(str(e) or type(e).__name__)
        finally:
            self._in_flight = False
        self._apply(result)

    def _apply(self, result: RefreshResult) -> None:
        if result.kind is RefreshOutcome.OK:
            self._snapshot = result.snapshot
            self._rate_limit = None
            self._error = None
            self._set_state(ControllerState.READY)
            return

        if result.kind is RefreshOutcome.RATE_LIMITED:
            if self._snapshot is not None:
                logger.warning("Background refresh rate limited, keeping current snapshot")
                self._set_state(ControllerState.READY)
                return
            now = self._clock()
            reset_at = result.reset_at if result.reset_at is not None else now
            self._rate_limit = RateLimitState(reset_at=reset_at, cycle_started_at=now)
            self._error = "API rate limit reached"
            logger.info(f"Rate limited, {self.countdown_text()}")
            self._set_state(ControllerState.RATE_LIMITED)
            return

        self._error = result.reason
        if self._snapshot is not None:
            logger.warning(f"Background refresh failed, keeping current snapshot: {result.reason}")
            self._set_state(ControllerState.READY)
        elif self._state is ControllerState.RATE_LIMITED:
            # keep waiting on the last known reset time
            logger.warning(f"Retry failed while rate limited: {result.reason}")
            self._notify()
        else:
            self._set_state(ControllerState.FAILED)
