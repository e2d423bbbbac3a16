"""
Error taxonomy for the execution engine.

Sizing outcomes (insufficient funds, below minimum notional) are not errors;
they are skip reasons on SizeResult.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class TradeLoopError(Exception):
    """Base class for engine errors."""


class TransportError(TradeLoopError):
    """
    Network or HTTP failure talking to the brokerage.

    Carries the upstream status/body so callers can log full context.
    status_code is None when no response was received at all.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Any = None,
        method: Optional[str] = None,
        url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.body = body
        self.method = method
        self.url = url
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500

    def details(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "status_code": self.status_code,
            "body": self.body,
            "method": self.method,
            "url": self.url,
        }


class FillTimeout(TradeLoopError):
    """Order not filled within the polling budget. Triggers verify-and-fallback."""

    def __init__(self, order_id: str, attempts: int, last_record=None):
        self.order_id = order_id
        self.attempts = attempts
        self.last_record = last_record
        status = getattr(getattr(last_record, "status", None), "value", None)
        super().__init__(
            f"order {order_id} not filled after {attempts} polls (last status={status})"
        )


class InvalidSignalData(TradeLoopError):
    """Missing/NaN price or indicator input. Aborts this symbol's cycle only."""


class PartialExitFailure(TradeLoopError):
    """One of the two exit legs failed; the other stays in place."""

    def __init__(self, symbol: str, placed_order_id: str, failed_leg: str, cause: Exception):
        self.symbol = symbol
        self.placed_order_id = placed_order_id
        self.failed_leg = failed_leg
        self.cause = cause
        super().__init__(
            f"{symbol}: {failed_leg} leg failed after order {placed_order_id} was placed ({cause})"
        )
