from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from tradeloop.core.errors import PartialExitFailure, TransportError
from tradeloop.exchange.alpaca.precision import floor_to_decimals, to_decimal
from tradeloop.execution.exit_rules import ExitPlan
from tradeloop.execution.models import (
    OrderKind,
    OrderRecord,
    OrderRequest,
    Side,
)
from tradeloop.execution.retry import RetryPolicy

log = logging.getLogger("tradeloop.executor")


# =========================
# Execution Results
# =========================
@dataclass
class ExecResult:
    action: str
    details: dict


@dataclass
class ExitPlacement:
    quantity: Decimal
    plan: ExitPlan
    limit_order: Optional[OrderRecord] = None
    stop_order: Optional[OrderRecord] = None
    failure: Optional[PartialExitFailure] = None

    @property
    def order_ids(self) -> List[str]:
        return [o.id for o in (self.limit_order, self.stop_order) if o is not None]


@dataclass
class ForcedExitResult:
    cancelled: List[str] = field(default_factory=list)
    cancel_errors: List[dict] = field(default_factory=list)
    sell_order: Optional[OrderRecord] = None
    quantity: Decimal = Decimal("0")


# =========================
# Order Executor
# =========================
class OrderExecutor:
    """
    Builds order requests and pushes them through the RetryPolicy.

    Every brokerage mutation (entry, exit legs, forced exit, cancel) goes
    through here so retries stay bounded and idempotent: a retried submit
    reuses the same client_order_id.
    """

    def __init__(
        self,
        orders,
        positions,
        retry: Optional[RetryPolicy] = None,
        *,
        price_decimals: int = 5,
        qty_decimals: int = 6,
    ):
        self.orders = orders
        self.positions = positions
        self.retry = retry or RetryPolicy()
        self.price_decimals = int(price_decimals)
        self.qty_decimals = int(qty_decimals)

    # ---------------- REQUEST BUILDERS ----------------

    def buy_limit_request(
        self, symbol: str, quantity, reference_price, buffer
    ) -> OrderRequest:
        # buy-side price: floor, never round up into a worse fill
        limit_price = floor_to_decimals(
            to_decimal(reference_price) * to_decimal(buffer), self.price_decimals
        )
        return OrderRequest(
            symbol=symbol,
            side=Side.BUY,
            kind=OrderKind.LIMIT,
            quantity=floor_to_decimals(quantity, self.qty_decimals),
            limit_price=limit_price,
        )

    def market_notional_request(self, symbol: str, notional) -> OrderRequest:
        return OrderRequest(
            symbol=symbol,
            side=Side.BUY,
            kind=OrderKind.MARKET,
            notional=floor_to_decimals(notional, 2),
        )

    def exit_quantity(self, filled_quantity, available_quantity) -> Decimal:
        qty = min(to_decimal(filled_quantity), to_decimal(available_quantity))
        return floor_to_decimals(qty, self.qty_decimals) if qty > 0 else Decimal("0")

    # ---------------- MUTATIONS ----------------

    def submit(self, request: OrderRequest) -> OrderRecord:
        describe = f"submit {request.side.value} {request.kind.value} {request.symbol}"
        try:
            record = self.retry.call(lambda: self.orders.submit(request), describe=describe)
        except TransportError as e:
            record = self._recover_submitted(request, e)
            if record is None:
                raise
        log.info(
            "%s accepted id=%s status=%s client_order_id=%s",
            describe,
            record.id,
            record.status.value,
            request.client_order_id,
        )
        return record

    def _recover_submitted(
        self, request: OrderRequest, error: TransportError
    ) -> Optional[OrderRecord]:
        """
        A submit can time out after the brokerage accepted it; the retry then
        gets a duplicate client_order_id rejection. Look the order up so it
        is tracked instead of orphaned.
        """
        try:
            record = self.orders.find_by_client_id(request.client_order_id)
        except TransportError as lookup_err:
            log.warning(
                "lookup of client_order_id=%s after failed submit failed: %s",
                request.client_order_id,
                lookup_err,
            )
            return None
        if record is not None:
            log.warning(
                "submit of client_order_id=%s reported %s but the order exists (id=%s)",
                request.client_order_id,
                error,
                record.id,
            )
        return record

    def cancel(self, order_id: str) -> None:
        self.retry.call(lambda: self.orders.cancel(order_id), describe=f"cancel {order_id}")
        log.info("cancel requested for order %s", order_id)

    def place_exit_orders(self, symbol: str, quantity, plan: ExitPlan) -> ExitPlacement:
        """
        Take-profit limit first; stop leg only once the limit is in.

        A limit failure raises TransportError (nothing placed). A stop failure
        does not undo the limit: it is returned as placement.failure.
        """
        qty = floor_to_decimals(quantity, self.qty_decimals)
        placement = ExitPlacement(quantity=qty, plan=plan)

        placement.limit_order = self.submit(
            OrderRequest(
                symbol=symbol,
                side=Side.SELL,
                kind=OrderKind.LIMIT,
                quantity=qty,
                limit_price=plan.limit_price,
            )
        )

        if plan.stop_price is None:
            return placement

        try:
            placement.stop_order = self.submit(
                OrderRequest(
                    symbol=symbol,
                    side=Side.SELL,
                    kind=OrderKind.STOP,
                    quantity=qty,
                    stop_price=plan.stop_price,
                )
            )
        except TransportError as e:
            placement.failure = PartialExitFailure(
                symbol, placement.limit_order.id, "stop_loss", e
            )
            log.error("%s", placement.failure)
        return placement

    def force_exit(self, symbol: str) -> ForcedExitResult:
        """
        Cancel whatever is open, re-read the position, market sell what is
        available. Cancel errors are collected, not raised: the sell is what
        matters. TransportError from the reads or the sell propagates.
        """
        result = ForcedExitResult()

        for order in self.positions.get_open_orders(symbol):
            try:
                self.cancel(order.id)
                result.cancelled.append(order.id)
            except TransportError as e:
                result.cancel_errors.append({"order_id": order.id, **e.details()})

        position = self.positions.get_position(symbol)
        if position is None:
            return result

        qty = floor_to_decimals(position.available_quantity, self.qty_decimals)
        if qty <= 0:
            return result

        result.quantity = qty
        result.sell_order = self.submit(
            OrderRequest(
                symbol=symbol,
                side=Side.SELL,
                kind=OrderKind.MARKET,
                quantity=qty,
            )
        )
        return result
