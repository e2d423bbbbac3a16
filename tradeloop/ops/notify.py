from __future__ import annotations

import logging
from typing import Callable, List

log = logging.getLogger("tradeloop.notify")


class Notifier:
    """Human-facing messages: buy/sell success, forced exits, failures."""

    def __init__(self):
        self._sinks: List[Callable[[str, str], None]] = []

    def add_sink(self, fn: Callable[[str, str], None]) -> None:
        self._sinks.append(fn)

    def notify(self, message: str, level: str = "info") -> None:
        log.log(logging.WARNING if level == "warning" else logging.INFO, "%s", message)
        for fn in list(self._sinks):
            try:
                fn(level, message)
            except Exception:
                log.exception("notification sink %r failed", fn)
