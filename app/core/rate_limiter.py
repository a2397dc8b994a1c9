"""
In-memory fixed-window rate limiting with block periods.

Each policy keeps its own map of client key -> window state. State lives in
process memory only, so limits are per process and reset on restart.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from app.core.logger import logger
from app.core.exceptions import RateLimitException

# Keys tracked per policy before idle entries are swept
MAX_TRACKED_CLIENTS = 10000


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    points: int  # requests allowed per window
    duration: float  # window length, seconds
    block_duration: float  # seconds a client is blocked after exhausting the window


@dataclass
class RateLimitState:
    count: int
    window_start: float
    blocked_until: Optional[float] = None


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_ms: int
    limit: int

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_ms),
        }


SUMMARIZE_POLICY = RateLimitPolicy("summarize", points=10, duration=60, block_duration=120)
EMAIL_POLICY = RateLimitPolicy("email", points=5, duration=60, block_duration=300)
GENERAL_POLICY = RateLimitPolicy("general", points=100, duration=60, block_duration=60)

DEFAULT_POLICIES = (SUMMARIZE_POLICY, EMAIL_POLICY, GENERAL_POLICY)


def _to_ms(seconds: float) -> int:
    return max(0, int(round(seconds * 1000)))


class FixedWindowRateLimiter:
    """Fixed-window counter for a single policy."""

    def __init__(
        self,
        policy: RateLimitPolicy,
        clock: Callable[[], float] = time.monotonic,
        max_tracked_clients: int = MAX_TRACKED_CLIENTS
    ):
        self.policy = policy
        self._clock = clock
        self._max_tracked_clients = max_tracked_clients
        self._states: Dict[str, RateLimitState] = {}
        self._lock = threading.Lock()

    def consume(self, client_key: str) -> RateLimitResult:
        """
        Record one request for ``client_key`` and decide whether it is allowed.

        Args:
            client_key: Client identifier, usually the IP address

        Returns:
            RateLimitResult describing the decision
        """
        policy = self.policy
        with self._lock:
            now = self._clock()
            state = self._states.get(client_key)

            if state is not None and state.blocked_until is not None:
                if now < state.blocked_until:
                    return RateLimitResult(
                        allowed=False,
                        remaining=0,
                        reset_ms=_to_ms(state.blocked_until - now),
                        limit=policy.points
                    )
                # Block has elapsed, start over
                state = None

            if state is None or now >= state.window_start + policy.duration:
                self._states[client_key] = RateLimitState(count=1, window_start=now)
                if len(self._states) > self._max_tracked_clients:
                    self._sweep(now)
                return RateLimitResult(
                    allowed=True,
                    remaining=policy.points - 1,
                    reset_ms=_to_ms(policy.duration),
                    limit=policy.points
                )

            state.count += 1
            if state.count > policy.points:
                state.count = policy.points
                state.blocked_until = now + policy.block_duration
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_ms=_to_ms(policy.block_duration),
                    limit=policy.points
                )

            return RateLimitResult(
                allowed=True,
                remaining=policy.points - state.count,
                reset_ms=_to_ms(state.window_start + policy.duration - now),
                limit=policy.points
            )

    def _sweep(self, now: float) -> None:
        # Drop clients whose window has ended and who are not blocked
        stale = [
            key for key, state in self._states.items()
            if now >= state.window_start + self.policy.duration
            and (state.blocked_until is None or now >= state.blocked_until)
        ]
        for key in stale:
            del self._states[key]

        if stale:
            logger.debug(
                f"Swept {len(stale)} idle rate-limit entries",
                extra={"policy": self.policy.name}
            )

    def reset(self) -> None:
        with self._lock:
            self._states.clear()

    def __len__(self) -> int:
        return len(self._states)


class RateLimiterRegistry:
    """Holds one limiter per policy name."""

    def __init__(
        self,
        policies=DEFAULT_POLICIES,
        clock: Callable[[], float] = time.monotonic
    ):
        self._limiters = {
            policy.name: FixedWindowRateLimiter(policy, clock=clock)
            for policy in policies
        }

    def get(self, policy_name: str) -> FixedWindowRateLimiter:
        return self._limiters[policy_name]

    def consume(self, policy_name: str, client_key: Optional[str]) -> RateLimitResult:
        return self.get(policy_name).consume(client_key or "unknown")

    def enforce(
        self,
        policy_name: str,
        client_key: Optional[str],
        message: str = "Rate limit exceeded. Please try again later."
    ) -> RateLimitResult:
        """
        Consume one point and raise if the policy denies the request.

        Raises:
            RateLimitException: If the client is over budget or blocked
        """
        result = self.consume(policy_name, client_key)
        if not result.allowed:
            logger.warning(
                f"Rate limit exceeded for client {client_key}",
                extra={
                    "client_ip": client_key,
                    "policy": policy_name,
                    "retry_after_ms": result.reset_ms
                }
            )
            raise RateLimitException(
                message=message,
                retry_after_ms=result.reset_ms,
                limit=result.limit,
                remaining=result.remaining,
                details={"policy": policy_name}
            )
        return result

    def tracked_clients(self) -> Dict[str, int]:
        return {name: len(limiter) for name, limiter in self._limiters.items()}

    def reset(self) -> None:
        for limiter in self._limiters.values():
            limiter.reset()
