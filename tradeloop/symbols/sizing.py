# tradeloop/symbols/sizing.py
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from tradeloop.core.config import Settings
from tradeloop.exchange.alpaca.precision import floor_to_decimals, to_decimal
from tradeloop.execution.models import AccountSnapshot

_ZERO = Decimal("0")

OK = "ok"
INSUFFICIENT_FUNDS = "insufficient_funds"
BELOW_MIN_NOTIONAL = "below_min_notional"
INVALID_PRICE = "invalid_price"


def _d(x: Any) -> Decimal:
    return to_decimal(x)


def _clean(x: Any) -> Decimal:
    """Account numbers: NaN/garbage/negative read as zero."""
    try:
        d = _d(x)
    except ValueError:
        return _ZERO
    return d if d > 0 else _ZERO


@dataclass
class SizeResult:
    notional: Decimal
    quantity: Decimal
    reason: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def skipped(self) -> bool:
        return self.reason != OK


@dataclass(frozen=True)
class SizingPolicy:
    base_fraction: Decimal = Decimal("0.10")
    strength_threshold: Decimal = Decimal("0.05")
    strong_signal_scale: Decimal = Decimal("0.5")
    safety_margin: Decimal = Decimal("1")
    price_collar: Decimal = Decimal("0.02")
    extra_buffer: Decimal = Decimal("0.01")
    min_notional: Decimal = Decimal("1")
    notional_decimals: int = 2
    qty_decimals: int = 6

    @classmethod
    def from_settings(cls, s: Settings) -> "SizingPolicy":
        return cls(
            base_fraction=_d(s.BASE_ALLOCATION_FRACTION),
            strength_threshold=_d(s.STRONG_SIGNAL_THRESHOLD),
            strong_signal_scale=_d(s.STRONG_SIGNAL_SCALE),
            safety_margin=_d(s.SAFETY_MARGIN_USD),
            price_collar=_d(s.PRICE_COLLAR_PCT),
            extra_buffer=_d(s.EXTRA_BUFFER_PCT),
            min_notional=_d(s.MIN_ORDER_NOTIONAL),
            notional_decimals=int(s.NOTIONAL_DECIMALS),
            qty_decimals=int(s.QTY_DECIMALS),
        )

    @property
    def safety_factor(self) -> Decimal:
        # covers the brokerage's market-order price collar plus slippage room
        return Decimal("1") - self.price_collar - self.extra_buffer


class AllocationSizer:
    """
    Sizes a new entry from a fresh account snapshot.

    Skips are values (SizeResult.reason != "ok"), never exceptions: callers
    log and move on, never retry.
    """

    def __init__(self, policy: Optional[SizingPolicy] = None):
        self.policy = policy or SizingPolicy()

    def fraction_for(self, signal_strength: Any) -> Decimal:
        p = self.policy
        try:
            strength = _d(signal_strength)
        except ValueError:
            strength = _ZERO
        if strength >= p.strength_threshold:
            # stronger (presumably more volatile) signals get a smaller slice
            return p.base_fraction * p.strong_signal_scale
        return p.base_fraction

    def size(
        self,
        account: AccountSnapshot,
        signal_strength: Any,
        reference_price: Any,
    ) -> SizeResult:
        p = self.policy
        cash = _clean(account.cash)
        equity = _clean(account.equity)

        details: Dict[str, Any] = {
            "cash": str(cash),
            "equity": str(equity),
            "signal_strength": str(signal_strength),
            "safety_margin": str(p.safety_margin),
            "safety_factor": str(p.safety_factor),
            "min_notional": str(p.min_notional),
        }

        try:
            price = _d(reference_price)
        except ValueError:
            price = _ZERO
        if price <= 0:
            details["reference_price"] = str(reference_price)
            return SizeResult(_ZERO, _ZERO, INVALID_PRICE, details)

        if cash < p.min_notional:
            return SizeResult(_ZERO, _ZERO, BELOW_MIN_NOTIONAL, details)

        fraction = self.fraction_for(signal_strength)
        target_allocation = equity * fraction
        allocation = min(target_allocation, cash - p.safety_margin)
        allocation *= p.safety_factor

        # final guard: never exceed cash even after float-ish drift
        if allocation > cash:
            allocation = floor_to_decimals(cash, p.notional_decimals)

        details.update(
            {
                "fraction": str(fraction),
                "target_allocation": str(target_allocation),
                "allocation": str(allocation),
            }
        )

        if allocation <= 0:
            return SizeResult(_ZERO, _ZERO, INSUFFICIENT_FUNDS, details)

        notional = floor_to_decimals(allocation, p.notional_decimals)
        details["notional"] = str(notional)
        if notional < p.min_notional:
            return SizeResult(_ZERO, _ZERO, BELOW_MIN_NOTIONAL, details)

        quantity = floor_to_decimals(notional / price, p.qty_decimals)
        details.update({"reference_price": str(price), "quantity": str(quantity)})
        if quantity <= 0:
            return SizeResult(_ZERO, _ZERO, BELOW_MIN_NOTIONAL, details)

        return SizeResult(notional, quantity, OK, details)
