"""
Bounded concurrent fetching for external reads.

Every fetch is independent: a failure or timeout is reported for its own
key only, never for the batch. The timeout of a fetch runs from the moment a
worker picks it up, so calls queued behind a hung one keep their full budget.
"""

import logging
import math
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional

from checklist import LookupFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchOutcome:
    """Result of one fetch: a value, or the failure that replaced it."""
    key: Hashable
    value: Any = None
    failure: Optional[LookupFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


class _StartTimes:
    """Monotonic start time of each call, recorded by the worker running it."""

    def __init__(self):
        self._times: Dict[Hashable, float] = {}
        self._lock = threading.Lock()

    def mark(self, key: Hashable) -> float:
        started = time.monotonic()
        with self._lock:
            self._times[key] = started
        return started

    def get(self, key: Hashable) -> Optional[float]:
        with self._lock:
            return self._times.get(key)


def fetch_all(
    calls: Dict[Hashable, Callable[[], Any]],
    max_workers: int,
    timeout: float,
) -> Dict[Hashable, FetchOutcome]:
    """
    Run independent fetches on a bounded thread pool.

    Args:
        calls: Key -> zero-argument callable performing the fetch
        max_workers: Upper bound on simultaneous fetches
        timeout: Seconds a single fetch may run once started

    Returns:
        Key -> FetchOutcome, with the same keys as `calls`
    """
    if not calls:
        return {}

    workers = max(1, min(max_workers, len(calls)))
    started = _StartTimes()

    def run(key, call):
        began = started.mark(key)
        value = call()
        return value, time.monotonic() - began

    # A call still queued after every round of workers could have run it
    # means the workers are stuck on calls that ignore their timeout.
    queued_since = time.monotonic()
    queue_limit = timeout * math.ceil(len(calls) / workers) + timeout

    outcomes: Dict[Hashable, FetchOutcome] = {}
    executor = ThreadPoolExecutor(max_workers=workers)
    try:
        pending = {executor.submit(run, key, call): key for key, call in calls.items()}

        while pending:
            done, _ = wait(list(pending), timeout=_next_wait(pending, started, timeout),
                           return_when=FIRST_COMPLETED)

            for future in done:
                key = pending.pop(future)
                outcomes[key] = _outcome(key, future, timeout)

            now = time.monotonic()
            for future, key in list(pending.items()):
                began = started.get(key)
                if began is not None and now - began >= timeout:
                    waited = now - began
                elif began is None and now - queued_since >= queue_limit:
                    waited = now - queued_since
                else:
                    continue
                future.cancel()
                del pending[future]
                state = "timed out" if began is not None else "never started"
                outcomes[key] = _failed(key, f"{state} after {waited:.2f}s, limit is {timeout}s")
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    return outcomes


def _next_wait(pending, started: _StartTimes, timeout: float) -> float:
    """Seconds until the earliest running call reaches its deadline."""
    now = time.monotonic()
    deadlines = [
        began + timeout
        for began in (started.get(key) for key in pending.values())
        if began is not None
    ]
    if not deadlines:
        return timeout
    return max(0.0, min(deadlines) - now)


def _outcome(key: Hashable, future, timeout: float) -> FetchOutcome:
    try:
        value, elapsed = future.result()
    except Exception as e:
        return _failed(key, str(e) or e.__class__.__name__)

    if elapsed > timeout:
        return _failed(key, f"took {elapsed:.2f}s, limit is {timeout}s")
    return FetchOutcome(key=key, value=value)


def _failed(key: Hashable, reason: str) -> FetchOutcome:
    failure = LookupFailure(key, reason)
    logger.warning(str(failure))
    return FetchOutcome(key=key, failure=failure)
