"""Per-platform circuit breaker."""
from __future__ import annotations

import time
from typing import Callable, Dict, Optional

from ..utils.logging import get_logger
from .types import CircuitBreakerState

logger = get_logger(__name__)


class CircuitBreaker:
    """Stops calling a platform after repeated failures, for a cooldown period.

    States per platform:
      closed     - no entry, or ``is_open`` False
      open       - ``is_open`` True and ``now < open_until``
      half-open  - ``is_open`` True and ``now >= open_until``; the next
                   ``is_open()`` check lets one trial request through

    All methods are synchronous so concurrent resolutions within one message
    observe a consistent state.
    """

    def __init__(
        self,
        threshold: int = 5,
        cooldown_s: float = 120.0,
        clock: Callable[[], float] = time.time,
    ):
        self.threshold = threshold
        self.cooldown_s = cooldown_s
        self._clock = clock
        self._states: Dict[str, CircuitBreakerState] = {}

    def is_open(self, platform: str) -> bool:
        state = self._states.get(platform)
        if state is None or not state.is_open:
            return False

        if self._clock() >= state.open_until:
            # Half-open: allow one trial request
            state.is_open = False
            state.failures = 0
            logger.info(
                f"🟡 Circuit breaker half-open for {platform}",
                extra={"subsys": "embedfix", "event": "breaker_half_open", "detail": {"platform": platform}},
            )
            return False

        return True

    def record_failure(self, platform: str) -> None:
        state = self._states.setdefault(platform, CircuitBreakerState())
        now = self._clock()
        state.failures += 1
        state.last_failure = now

        if state.failures >= self.threshold:
            was_open = state.is_open
            state.is_open = True
            # Late failures while open push the cooldown out
            state.open_until = now + self.cooldown_s
            if was_open:
                return
            logger.warning(
                f"🔴 Circuit breaker OPEN for {platform} after {state.failures} failures",
                extra={
                    "subsys": "embedfix",
                    "event": "breaker_open",
                    "detail": {"platform": platform, "cooldown_s": self.cooldown_s},
                },
            )

    def record_success(self, platform: str) -> None:
        state = self._states.get(platform)
        if state is None:
            return
        if state.is_open or state.failures:
            logger.debug(f"🟢 Circuit breaker reset for {platform}", extra={"subsys": "embedfix"})
        state.failures = 0
        state.is_open = False

    def get_state(self, platform: str) -> Optional[CircuitBreakerState]:
        return self._states.get(platform)

    def reset(self, platform: Optional[str] = None) -> None:
        if platform is None:
            self._states.clear()
        else:
            self._states.pop(platform, None)
