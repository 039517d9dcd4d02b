"""
Contention retry policy for store-mutating calls.

Another process may hold the SQLite write lock (a second run against the
same file, a reader running a long query in rollback-journal mode).  When
that happens SQLite reports "database is locked" / "database is busy".
That is not a data error: we back off and run the same operation again.
Anything else (integrity or schema errors) propagates immediately.

The historical behaviour was an unbounded loop sleeping a fixed 300 ms.
RetryPolicy keeps that available (``max_attempts=None, backoff=1.0``) but
defaults to a bounded variant with exponential backoff, so sustained
contention ends the run with ContentionError instead of spinning forever.
The loop itself is a tenacity ``Retrying`` controller.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    stop_never,
    wait_exponential,
)

from logdb.errors import ContentionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SQLITE_BUSY = 5
SQLITE_LOCKED = 6

_BUSY_MESSAGES = ("database is locked", "database is busy", "database table is locked")


def is_busy(exc: BaseException) -> bool:
    """True if *exc* is SQLite reporting lock contention."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    code = getattr(exc, "sqlite_errorcode", None)
    if code is not None and (code & 0xFF) in (SQLITE_BUSY, SQLITE_LOCKED):
        return True
    message = str(exc).lower()
    return any(m in message for m in _BUSY_MESSAGES)


class RetryPolicy:
    """Retry an operation while the store reports busy/locked."""

    def __init__(self, interval: float = 0.3, max_attempts: int | None = 10,
                 backoff: float = 2.0, max_interval: float = 5.0,
                 sleep: Callable[[float], None] = time.sleep):
        """Initialize retry policy.

        Args:
            interval: Seconds to sleep before the first retry.
            max_attempts: Total attempts including the first one.  None
                retries forever (the original behaviour).
            backoff: Multiplier applied to the interval after each retry;
                1.0 keeps it fixed.
            max_interval: Upper bound for a single sleep.
            sleep: Sleep function, replaceable in tests.
        """
        if max_attempts is not None and max_attempts < 1:
            raise ValueError("max_attempts must be >= 1 or None")
        self.interval = interval
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.max_interval = max_interval
        self.sleep = sleep
        self.retries = 0

    @classmethod
    def unbounded(cls, interval: float = 0.3, **kwargs) -> "RetryPolicy":
        """Fixed interval, no attempt limit."""
        return cls(interval=interval, max_attempts=None, backoff=1.0, **kwargs)

    def delay_for(self, retry_number: int) -> float:
        """Seconds to wait before retry number *retry_number* (1-based)."""
        return min(self.interval * (self.backoff ** (retry_number - 1)), self.max_interval)

    def call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """Run ``fn(*args, **kwargs)``, retrying while the store is busy.

        Raises:
            ContentionError: The store was busy on every allowed attempt.
            Exception: Any non-busy error from *fn*, unchanged.
        """
        stop = stop_never if self.max_attempts is None else stop_after_attempt(self.max_attempts)
        controller = Retrying(
            retry=retry_if_exception(is_busy),
            stop=stop,
            wait=wait_exponential(multiplier=self.interval, exp_base=self.backoff,
                                  max=self.max_interval),
            sleep=self.sleep,
            before_sleep=self._before_sleep,
        )
        try:
            return controller(fn, *args, **kwargs)
        except RetryError as e:
            last = e.last_attempt
            raise ContentionError(
                f"Store still busy after {last.attempt_number} attempts: {last.exception()}"
            ) from last.exception()

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        self.retries += 1
        logger.warning("Store busy (%s), retry %d in %.2fs",
                       retry_state.outcome.exception(), retry_state.attempt_number,
                       retry_state.next_action.sleep)
