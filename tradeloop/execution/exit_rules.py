from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from tradeloop.core.config import Settings
from tradeloop.exchange.alpaca.precision import quantum, round_to_decimals, to_decimal


@dataclass(frozen=True)
class ExitPolicy:
    fee_buffer: Decimal = Decimal("0.0025")
    target_profit: Decimal = Decimal("0.0005")
    profit_markup: Optional[Decimal] = None  # None -> fee_buffer + target_profit
    stop_loss_pct: Optional[Decimal] = Decimal("0.025")  # None/0 -> no stop leg
    price_decimals: int = 5

    def __post_init__(self):
        if self.profit_markup is not None and self.profit_markup < (
            self.fee_buffer + self.target_profit
        ):
            raise ValueError(
                "profit_markup must cover fee_buffer + target_profit "
                f"({self.profit_markup} < {self.fee_buffer + self.target_profit})"
            )
        if self.stop_loss_pct is not None and not (0 <= self.stop_loss_pct < 1):
            raise ValueError(f"stop_loss_pct must be in [0, 1), got {self.stop_loss_pct}")

    @classmethod
    def from_settings(cls, s: Settings) -> "ExitPolicy":
        return cls(
            fee_buffer=to_decimal(s.FEE_BUFFER),
            target_profit=to_decimal(s.TARGET_PROFIT),
            profit_markup=to_decimal(s.PROFIT_MARKUP) if s.PROFIT_MARKUP > 0 else None,
            stop_loss_pct=to_decimal(s.STOP_LOSS_PCT) if s.ENABLE_STOP_LOSS else None,
            price_decimals=int(s.PRICE_DECIMALS),
        )

    @property
    def markup(self) -> Decimal:
        if self.profit_markup is not None:
            return self.profit_markup
        return self.fee_buffer + self.target_profit


@dataclass(frozen=True)
class ExitPlan:
    basis: Decimal
    limit_price: Decimal
    stop_price: Optional[Decimal] = None


def plan(basis, policy: ExitPolicy) -> ExitPlan:
    """
    Take-profit above basis (covers round-trip taker fees plus a net margin)
    and an optional stop below it.

    Sell-side prices round half-up; if rounding lands on the basis the price
    moves one tick away so the take-profit always sits above and the stop
    always below.
    """
    b = to_decimal(basis)
    if b <= 0:
        raise ValueError(f"basis must be > 0, got {basis}")

    tick = quantum(policy.price_decimals)
    markup = policy.markup

    limit_price = round_to_decimals(b * (Decimal("1") + markup), policy.price_decimals)
    if markup > 0 and limit_price <= b:
        limit_price = round_to_decimals(b, policy.price_decimals) + tick
        if limit_price <= b:
            limit_price += tick

    stop_price: Optional[Decimal] = None
    if policy.stop_loss_pct:
        stop_price = round_to_decimals(
            b * (Decimal("1") - policy.stop_loss_pct), policy.price_decimals
        )
        if stop_price >= b:
            stop_price = round_to_decimals(b, policy.price_decimals) - tick
            if stop_price >= b:
                stop_price -= tick
        if stop_price <= 0:
            # too small to express below basis at this precision
            stop_price = None

    out = ExitPlan(basis=b, limit_price=limit_price, stop_price=stop_price)
    _validate_sl_tp(out)
    return out


def _validate_sl_tp(p: ExitPlan) -> None:
    """
    Long-only invariants: stop_price < basis < limit_price.
    Raises ValueError if invalid.
    """
    if not (p.limit_price > p.basis):
        raise ValueError("Invalid take-profit: limit_price must be above basis")
    if p.stop_price is not None and not (0 < p.stop_price < p.basis):
        raise ValueError("Invalid stop-loss: stop_price must be below basis")
