"""Polling and retry primitives.

``poll_until`` is the one place where the operator waits for something to
become true. It backs optimistic-concurrency retries in production code and
the eventual-consistency assertions in the tests.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from kubernetes.client.exceptions import ApiException

from .. import metrics
from ..exceptions import TransientError
from .rate_limit import is_rate_limit_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PollTimeoutError(TransientError):
    """The predicate did not become truthy in time."""

    def __init__(self, message: str, attempts: int, last_result: object = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_result = last_result


def poll_until(
    predicate: Callable[[], T],
    *,
    timeout: float | None = None,
    max_attempts: int | None = None,
    interval: float = 0.1,
    backoff: float = 1.0,
    max_interval: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Call ``predicate`` until it returns a truthy value and return that value.

    Args:
        predicate: Zero-argument callable; exceptions it raises propagate
        timeout: Give up after this many seconds
        max_attempts: Give up after this many calls
        interval: Delay before the second call
        backoff: Multiplier applied to the delay after each failed call
        max_interval: Upper bound for the delay
        sleep: Sleep function, injectable for tests
        clock: Monotonic clock, injectable for tests

    Returns:
        The first truthy result of ``predicate``

    Raises:
        PollTimeoutError: If the timeout or attempt budget is exhausted
        ValueError: If neither timeout nor max_attempts is given
    """
    if timeout is None and max_attempts is None:
        raise ValueError("poll_until needs a timeout or max_attempts")

    deadline = clock() + timeout if timeout is not None else None
    delay = interval
    attempts = 0

    while True:
        result = predicate()
        attempts += 1
        if result:
            return result

        if max_attempts is not None and attempts >= max_attempts:
            raise PollTimeoutError(f"condition not met after {attempts} attempts", attempts, result)

        if deadline is not None:
            remaining = deadline - clock()
            if remaining <= 0:
                raise PollTimeoutError(f"condition not met within {timeout}s", attempts, result)
            sleep(min(delay, remaining))
        else:
            sleep(delay)

        delay *= backoff
        if max_interval is not None:
            delay = min(delay, max_interval)


def retry_on_conflict(
    operation: Callable[[], T],
    *,
    kind: str,
    max_attempts: int = 5,
    base_delay: float = 0.2,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run a read-modify-write ``operation``, redoing it on HTTP 409 and 429.

    The operation must re-read the object it writes on every call, so that
    each attempt works against the latest resourceVersion.

    Raises:
        TransientError: If every attempt conflicted
    """
    outcome: dict[str, T] = {}

    def attempt() -> bool:
        try:
            outcome["value"] = operation()
            return True
        except ApiException as e:
            if e.status == 409:
                metrics.conflict_retries_total.labels(kind=kind).inc()
                logger.debug("Conflict writing %s, retrying against a fresh read", kind)
                return False
            if is_rate_limit_error(e):
                metrics.rate_limit_hits_total.labels(api_type="k8s").inc()
                return False
            raise

    try:
        poll_until(
            attempt,
            max_attempts=max_attempts,
            interval=base_delay,
            backoff=2.0,
            max_interval=5.0,
            sleep=sleep,
        )
    except PollTimeoutError as e:
        raise TransientError(f"{kind} update kept conflicting after {e.attempts} attempts") from e

    return outcome["value"]
