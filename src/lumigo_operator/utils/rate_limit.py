"""Client-side rate limiting of Kubernetes API calls."""

from __future__ import annotations

import os
import threading
import time
from functools import wraps
from typing import Any, Callable, TypeVar

from kubernetes.client.exceptions import ApiException

_F = TypeVar("_F", bound=Callable[..., Any])


class RateLimiter:
    """Spaces calls at least ``1 / rate_per_second`` seconds apart.

    A rate of zero or less disables limiting. The limiter is shared by the
    handler threads kopf runs, so waiting is serialized.
    """

    def __init__(
        self,
        rate_per_second: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval = 1.0 / rate_per_second if rate_per_second > 0 else 0.0
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call: float | None = None

    def wait(self) -> None:
        """Block until the next call is allowed."""
        with self._lock:
            now = self._clock()
            if self._last_call is not None:
                delay = self._last_call + self.min_interval - now
                if delay > 0:
                    self._sleep(delay)
                    now += delay
            self._last_call = now


k8s_limiter = RateLimiter(float(os.getenv("K8S_RATE_LIMIT_PER_SECOND", "10.0")))


def rate_limit_k8s(func: _F) -> _F:
    """Decorator spacing calls to the Kubernetes API through ``k8s_limiter``."""
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        k8s_limiter.wait()
        return func(*args, **kwargs)

    return wrapper  # type: ignore


def is_rate_limit_error(e: Exception) -> bool:
    """Whether the API server pushed back on our request rate.

    That is HTTP 429, or a 503 that mentions rate limiting.
    """
    if not isinstance(e, ApiException):
        return False
    return e.status == 429 or (e.status == 503 and "rate limit" in str(e).lower())
