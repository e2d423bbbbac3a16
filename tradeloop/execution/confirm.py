from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from tradeloop.core.config import Settings
from tradeloop.core.errors import FillTimeout
from tradeloop.execution.models import OrderRecord

log = logging.getLogger("tradeloop.fill")


class FillWaiter:
    """
    Polls an order until it is filled, canceled or rejected.

    Fixed interval, hard attempt ceiling: 20 polls x 3s is a ~60s bound.
    A TransportError from the get call aborts the wait and propagates.
    """

    def __init__(
        self,
        orders,
        poll_interval_s: float = 3.0,
        max_attempts: int = 20,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.orders = orders
        self.poll_interval_s = float(poll_interval_s)
        self.max_attempts = int(max_attempts)
        self.sleep = sleep

    @classmethod
    def from_settings(cls, orders, s: Settings, **kw) -> "FillWaiter":
        return cls(
            orders,
            poll_interval_s=s.FILL_POLL_INTERVAL_SECONDS,
            max_attempts=s.FILL_POLL_MAX_ATTEMPTS,
            **kw,
        )

    def wait(
        self,
        order_id: str,
        poll_interval_s: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> OrderRecord:
        interval = self.poll_interval_s if poll_interval_s is None else float(poll_interval_s)
        attempts = self.max_attempts if max_attempts is None else int(max_attempts)
        attempts = max(1, attempts)

        last: Optional[OrderRecord] = None
        for attempt in range(1, attempts + 1):
            last = self.orders.get(order_id)
            if last.status.is_terminal:
                log.info(
                    "order %s reached %s after %d poll(s)", order_id, last.status.value, attempt
                )
                return last
            if attempt < attempts:
                self.sleep(interval)

        raise FillTimeout(order_id, attempts, last_record=last)
