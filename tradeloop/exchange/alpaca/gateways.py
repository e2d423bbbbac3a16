"""
Typed brokerage gateways over AlpacaClient.

Every method returns fresh brokerage truth (no caching) and raises
TransportError on any failure.
"""
from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from tradeloop.core.errors import TransportError
from tradeloop.exchange.alpaca.precision import safe_decimal
from tradeloop.execution.models import (
    AccountSnapshot,
    OrderRecord,
    OrderRequest,
    OrderStatus,
    Position,
    Side,
)

_ZERO = Decimal("0")

# Alpaca has many more statuses than the engine cares about.
_STATUS_MAP = {
    "new": OrderStatus.NEW,
    "accepted": OrderStatus.NEW,
    "partially_filled": OrderStatus.PARTIALLY_FILLED,
    "filled": OrderStatus.FILLED,
    "canceled": OrderStatus.CANCELED,
    "expired": OrderStatus.CANCELED,
    "replaced": OrderStatus.CANCELED,
    "done_for_day": OrderStatus.CANCELED,
    "rejected": OrderStatus.REJECTED,
    "suspended": OrderStatus.REJECTED,
}


def _non_negative(x) -> Decimal:
    d = safe_decimal(x)
    return d if d > 0 else _ZERO


def parse_account(data: dict) -> AccountSnapshot:
    """
    Crypto purchases are funded from settled cash, reflected in
    non_marginable_buying_power; fall back to buying_power, then cash.
    """
    data = data or {}
    cash_raw = data.get("non_marginable_buying_power")
    if cash_raw is None:
        cash_raw = data.get("buying_power")
    if cash_raw is None:
        cash_raw = data.get("cash")

    equity_raw = data.get("equity")
    if equity_raw is None:
        equity_raw = data.get("portfolio_value")

    return AccountSnapshot(
        cash=_non_negative(cash_raw),
        buying_power=_non_negative(data.get("buying_power")),
        equity=_non_negative(equity_raw),
    )


def parse_position(symbol: str, data: Optional[dict]) -> Optional[Position]:
    if not data:
        return None
    qty = safe_decimal(data.get("qty"))
    if qty <= 0:
        return None
    available = safe_decimal(data.get("qty_available"), default=qty)
    return Position(
        symbol=symbol,
        quantity=qty,
        cost_basis=_non_negative(data.get("avg_entry_price")),
        available_quantity=max(_ZERO, min(available, qty)),
    )


def parse_order(data: dict) -> OrderRecord:
    if not data or not data.get("id"):
        raise TransportError("order payload without id", body=data)
    raw_status = str(data.get("status") or "").lower()
    side = data.get("side")
    avg = data.get("filled_avg_price")
    return OrderRecord(
        id=str(data["id"]),
        status=_STATUS_MAP.get(raw_status, OrderStatus.PENDING),
        filled_quantity=_non_negative(data.get("filled_qty")),
        filled_avg_price=safe_decimal(avg) if avg not in (None, "") else None,
        symbol=str(data.get("symbol") or ""),
        side=Side(side) if side in ("buy", "sell") else None,
        client_order_id=data.get("client_order_id"),
        raw_status=raw_status,
    )


class AccountGateway:
    def __init__(self, client):
        self.client = client

    def get_account(self) -> AccountSnapshot:
        return parse_account(self.client.account())


class PositionGateway:
    def __init__(self, client):
        self.client = client

    def get_position(self, symbol: str) -> Optional[Position]:
        return parse_position(symbol, self.client.position(symbol))

    def get_open_orders(self, symbol: str) -> List[OrderRecord]:
        return [parse_order(o) for o in self.client.open_orders(symbol)]


class OrderGateway:
    def __init__(self, client):
        self.client = client

    def submit(self, request: OrderRequest) -> OrderRecord:
        return parse_order(self.client.submit_order(request.to_payload()))

    def get(self, order_id: str) -> OrderRecord:
        return parse_order(self.client.get_order(order_id))

    def find_by_client_id(self, client_order_id: str) -> Optional[OrderRecord]:
        data = self.client.order_by_client_id(client_order_id)
        return parse_order(data) if data else None

    def cancel(self, order_id: str) -> None:
        self.client.cancel_order(order_id)
