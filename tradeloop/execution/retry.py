from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from tradeloop.core.config import Settings
from tradeloop.core.errors import TransportError

log = logging.getLogger("tradeloop.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry for brokerage mutations (submit / cancel).

    Only retryable TransportErrors (no response, 429, 5xx) are retried, with a
    fixed backoff between attempts. Anything else propagates immediately.
    """

    max_attempts: int = 2
    backoff_seconds: float = 2.0
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    @classmethod
    def from_settings(cls, s: Settings, **overrides) -> "RetryPolicy":
        kw = dict(
            max_attempts=int(s.RETRY_MAX_ATTEMPTS),
            backoff_seconds=float(s.RETRY_BACKOFF_SECONDS),
        )
        kw.update(overrides)
        return cls(**kw)

    def call(self, fn: Callable[[], T], *, describe: str = "call") -> T:
        attempts = max(1, int(self.max_attempts))
        for attempt in range(1, attempts + 1):
            try:
                return fn()
            except TransportError as e:
                if not e.retryable or attempt >= attempts:
                    raise
                log.warning(
                    "%s failed (attempt %d/%d, status=%s): %s; retrying in %.1fs",
                    describe,
                    attempt,
                    attempts,
                    e.status_code,
                    e.message,
                    self.backoff_seconds,
                )
                self.sleep(self.backoff_seconds)
        raise AssertionError("unreachable")
