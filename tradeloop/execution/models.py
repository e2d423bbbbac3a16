from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from tradeloop.exchange.alpaca.precision import as_wire


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderKind(str, Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"


class OrderStatus(str, Enum):
    NEW = "new"
    PENDING = "pending"
    PARTIALLY_FILLED = "partially_filled"
    FILLED = "filled"
    CANCELED = "canceled"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.FILLED, OrderStatus.CANCELED, OrderStatus.REJECTED)


# Crypto orders must be GTC
TIME_IN_FORCE_GTC = "gtc"


@dataclass(frozen=True)
class AccountSnapshot:
    cash: Decimal
    buying_power: Decimal
    equity: Decimal


@dataclass(frozen=True)
class Position:
    symbol: str
    quantity: Decimal
    cost_basis: Decimal
    available_quantity: Decimal

    @property
    def notional(self) -> Decimal:
        return self.quantity * self.cost_basis


def _new_client_order_id() -> str:
    return f"tl-{uuid.uuid4().hex[:24]}"


@dataclass(frozen=True)
class OrderRequest:
    symbol: str
    side: Side
    kind: OrderKind
    quantity: Optional[Decimal] = None
    notional: Optional[Decimal] = None
    limit_price: Optional[Decimal] = None
    stop_price: Optional[Decimal] = None
    time_in_force: str = TIME_IN_FORCE_GTC
    client_order_id: str = field(default_factory=_new_client_order_id)

    def __post_init__(self):
        if (self.quantity is None) == (self.notional is None):
            raise ValueError("OrderRequest needs exactly one of quantity or notional")
        amount = self.quantity if self.quantity is not None else self.notional
        if amount <= 0:
            raise ValueError(f"OrderRequest amount must be > 0, got {amount}")
        if self.kind == OrderKind.LIMIT and self.limit_price is None:
            raise ValueError("limit order requires limit_price")
        if self.kind == OrderKind.STOP and self.stop_price is None:
            raise ValueError("stop order requires stop_price")

    def to_payload(self) -> Dict[str, Any]:
        """Alpaca /v2/orders body."""
        payload: Dict[str, Any] = {
            "symbol": self.symbol,
            "side": self.side.value,
            "type": self.kind.value,
            "time_in_force": self.time_in_force,
            "client_order_id": self.client_order_id,
        }
        if self.quantity is not None:
            payload["qty"] = as_wire(self.quantity)
        else:
            payload["notional"] = as_wire(self.notional)
        if self.limit_price is not None:
            payload["limit_price"] = as_wire(self.limit_price)
        if self.stop_price is not None:
            payload["stop_price"] = as_wire(self.stop_price)
        return payload


@dataclass(frozen=True)
class OrderRecord:
    id: str
    status: OrderStatus
    filled_quantity: Decimal = Decimal("0")
    filled_avg_price: Optional[Decimal] = None
    symbol: str = ""
    side: Optional[Side] = None
    client_order_id: Optional[str] = None
    raw_status: str = ""

    @property
    def filled_notional(self) -> Decimal:
        if self.filled_avg_price is None:
            return Decimal("0")
        return self.filled_quantity * self.filled_avg_price
