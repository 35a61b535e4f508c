"""
Delay Controller - adaptive per-fetcher request spacing.

The delay shrinks multiplicatively on success and grows multiplicatively on
failure, always clamped to [min_delay, max_delay]. After a quiet period with
no failures, an inflated delay snaps back to initial_delay so a short burst
of 429s does not throttle the rest of a long crawl.
"""
import logging
import time
from typing import Callable, Dict, Optional

from .fetch_config import FetcherConfig

logger = logging.getLogger(__name__)


class DelayController:
    """Tracks and adapts the delay between consecutive requests of one fetcher."""

    def __init__(
        self,
        config: FetcherConfig,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            config: Validated fetcher settings
            clock: Monotonic time source in seconds (injectable for tests)
        """
        self.config = config
        self._clock = clock
        self.current_delay: float = config.initial_delay
        self.last_error_time: Optional[float] = None
        self.failure_count = 0
        self.success_count = 0

    def on_success(self) -> float:
        """Decay the delay toward min_delay."""
        self.success_count += 1
        self.current_delay = max(
            self.current_delay * self.config.success_decay,
            self.config.min_delay,
        )
        return self.current_delay

    def on_failure(self) -> float:
        """Grow the delay toward max_delay and remember when it happened."""
        self.failure_count += 1
        self.current_delay = min(
            self.current_delay * self.config.backoff_multiplier,
            self.config.max_delay,
        )
        self.last_error_time = self._clock()
        logger.info(f"  Failure signal, increasing delay to {self.current_delay:.2f}s")
        return self.current_delay

    def maybe_reset(self) -> bool:
        """
        Reset an inflated delay once the quiet period has passed since the last failure.

        Called before every request. A delay that has already decayed below
        initial_delay is left alone; only the failure marker is cleared.

        Returns:
            True if the delay was reset.
        """
        if self.last_error_time is None:
            return False
        if self._clock() - self.last_error_time <= self.config.quiet_period:
            return False

        reset = False
        if self.current_delay > self.config.initial_delay:
            logger.info(
                f"  No errors for {self.config.quiet_period:.0f}s, resetting delay from "
                f"{self.current_delay:.2f}s to {self.config.initial_delay:.2f}s"
            )
            self.current_delay = self.config.initial_delay
            reset = True
        self.last_error_time = None
        return reset

    def get_status(self) -> Dict[str, object]:
        """Current state for monitoring/logging."""
        return {
            "current_delay": self.current_delay,
            "min_delay": self.config.min_delay,
            "max_delay": self.config.max_delay,
            "failures": self.failure_count,
            "successes": self.success_count,
            "last_error_time": self.last_error_time,
        }
