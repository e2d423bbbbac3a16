from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from tradeloop.core.config import Settings
from tradeloop.core.errors import FillTimeout, InvalidSignalData, TransportError
from tradeloop.exchange.alpaca.precision import floor_to_decimals, to_decimal
from tradeloop.execution import exit_rules
from tradeloop.execution.confirm import FillWaiter
from tradeloop.execution.executor import ExecResult, OrderExecutor
from tradeloop.execution.exit_rules import ExitPolicy
from tradeloop.execution.models import OrderRecord, OrderStatus, Position, Side
from tradeloop.execution.position_manager import ForcedExitPolicy, should_force_exit
from tradeloop.ops.notify import Notifier
from tradeloop.persistence.audit import Audit
from tradeloop.policy.trade_policy import (
    GuardReason,
    cooldown_guard,
    decide_entry,
    position_is_held,
)
from tradeloop.runner.market import MarketSignal
from tradeloop.runner.models import SymbolTradeState, TradePhase
from tradeloop.symbols.sizing import AllocationSizer

log = logging.getLogger("tradeloop.controller")

_ZERO = Decimal("0")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ControllerPolicy:
    buy_limit_buffer: Decimal = Decimal("0.999")
    cooldown_seconds: int = 30 * 60
    held_min_notional: Decimal = Decimal("1")
    min_order_notional: Decimal = Decimal("1")
    max_verify_attempts: int = 3

    @classmethod
    def from_settings(cls, s: Settings) -> "ControllerPolicy":
        return cls(
            buy_limit_buffer=to_decimal(s.BUY_LIMIT_BUFFER),
            cooldown_seconds=int(s.COOLDOWN_SECONDS),
            held_min_notional=to_decimal(s.HELD_POSITION_MIN_NOTIONAL),
            min_order_notional=to_decimal(s.MIN_ORDER_NOTIONAL),
            max_verify_attempts=int(s.MAX_VERIFY_ATTEMPTS),
        )


class SymbolTradeController:
    """
    One buy -> verify -> sell cycle per symbol.

    Owns every SymbolTradeState. All work for a symbol runs under that
    symbol's lock; a second caller never waits, it gets SYMBOL_BUSY.
    Brokerage reads happen fresh on every decision, nothing is cached across
    ticks except the state below.
    """

    def __init__(
        self,
        *,
        accounts,
        positions,
        orders,
        signal_source: Callable[[str], MarketSignal],
        sizer: AllocationSizer,
        fill_waiter: FillWaiter,
        executor: OrderExecutor,
        exit_policy: ExitPolicy,
        forced_exit_policy: ForcedExitPolicy,
        audit: Audit,
        notifier: Optional[Notifier] = None,
        policy: Optional[ControllerPolicy] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.accounts = accounts
        self.positions = positions
        self.orders = orders
        self.signal_source = signal_source
        self.sizer = sizer
        self.fill_waiter = fill_waiter
        self.executor = executor
        self.exit_policy = exit_policy
        self.forced_exit_policy = forced_exit_policy
        self.audit = audit
        self.notifier = notifier or Notifier()
        self.policy = policy or ControllerPolicy()
        self.clock = clock

        self._states: Dict[str, SymbolTradeState] = {}
        self._states_lock = threading.Lock()
        self._symbol_locks = defaultdict(threading.Lock)  # symbol -> Lock

    # ---------------- STATE ----------------

    def state_for(self, symbol: str) -> SymbolTradeState:
        with self._states_lock:
            st = self._states.get(symbol)
            if st is None:
                st = SymbolTradeState(symbol=symbol)
                self._states[symbol] = st
            return st

    def states(self) -> Dict[str, Dict[str, Any]]:
        with self._states_lock:
            return {sym: st.snapshot() for sym, st in self._states.items()}

    # ---------------- HELPERS ----------------

    def _event(
        self,
        event_type: str,
        symbol: str,
        action: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            self.audit.event(
                event_type=event_type, symbol=symbol, action=action, details=details
            )
        except (sqlite3.Error, OSError):
            log.exception("audit write failed for %s %s/%s", symbol, event_type, action)

    def _result(self, action: str, st: SymbolTradeState, **details) -> ExecResult:
        return ExecResult(
            action, {"symbol": st.symbol, "phase": st.phase.value, **details}
        )

    def _skip_transport(self, st: SymbolTradeState, what: str, e: TransportError) -> ExecResult:
        log.warning("%s: %s failed: %s", st.symbol, what, e)
        self._event("SKIP", st.symbol, what.upper() + "_FAILED", e.details())
        return self._result("SKIP_TRANSPORT", st, step=what, error=e.message)

    def _abort(self, st: SymbolTradeState, reason: str, details: Dict[str, Any]) -> ExecResult:
        st.phase = TradePhase.ABORTED
        st.abort_reason = reason
        self._event("ABORTED", st.symbol, reason.upper(), details)
        self.notifier.notify(f"{st.symbol}: trade aborted ({reason})", level="warning")
        return self._result("ABORTED", st, reason=reason)

    # ---------------- ENTRY POINT ----------------

    def step(self, symbol: str) -> ExecResult:
        lock = self._symbol_locks[symbol]
        if not lock.acquire(blocking=False):
            self._event("SYMBOL_BUSY", symbol, "SKIP", {"note": "symbol work in progress"})
            return ExecResult("SYMBOL_BUSY", {"symbol": symbol})
        try:
            return self._step_locked(self.state_for(symbol))
        finally:
            lock.release()

    def _step_locked(self, st: SymbolTradeState) -> ExecResult:
        symbol = st.symbol
        now = self.clock()

        try:
            market = self.signal_source(symbol)
        except InvalidSignalData as e:
            log.warning("%s: invalid signal data: %s", symbol, e)
            self._event("SIGNAL_INVALID", symbol, "ABORT_CYCLE", {"error": str(e)})
            return self._result("SIGNAL_INVALID", st, error=str(e))
        except TransportError as e:
            return self._skip_transport(st, "signal", e)

        sig = market.signal
        self._event(
            "SIGNAL",
            symbol,
            "ENTRY_READY" if sig.entry_ready else "NO_ENTRY",
            {
                "price": market.price,
                "strength": sig.strength,
                "momentum": sig.momentum,
                "exit_signal_valid": sig.exit_signal_valid,
                "reason": sig.reason,
                "meta": sig.meta,
            },
        )

        if st.phase == TradePhase.ABORTED:
            waiting = self._reconcile(st)
            if waiting is not None:
                return waiting

        if st.has_pending_entry:
            return self._verify_pending(st, market, now)

        try:
            position = self.positions.get_position(symbol)
        except TransportError as e:
            return self._skip_transport(st, "position", e)

        if position_is_held(position, self.policy.held_min_notional):
            return self._manage_position(st, position, market, now)

        if st.phase in (TradePhase.EXIT_SUBMITTED, TradePhase.ENTRY_FILLED):
            return self._complete(st)
        if st.entry_timestamp_ms:
            st.clear_position()

        # cooldown is a time-boxed phase out of IDLE
        if st.phase in (TradePhase.IDLE, TradePhase.COOLDOWN):
            cd = cooldown_guard(
                pending_order_id=None,
                cooldown_until_ms=st.cooldown_until_ms,
                now_ms=now,
            )
            st.phase = TradePhase.IDLE if cd.allowed else TradePhase.COOLDOWN

        if not sig.entry_ready:
            return self._result("NO_SIGNAL", st, reason=sig.reason)

        return self._enter(st, market, position, now)

    # ---------------- RULE 1: ENTRY ----------------

    def _enter(
        self,
        st: SymbolTradeState,
        market: MarketSignal,
        position: Optional[Position],
        now: int,
    ) -> ExecResult:
        symbol = st.symbol

        try:
            open_orders = self.positions.get_open_orders(symbol)
        except TransportError as e:
            return self._skip_transport(st, "open_orders", e)

        guard = decide_entry(
            pending_order_id=st.pending_entry_order_id,
            cooldown_until_ms=st.cooldown_until_ms,
            now_ms=now,
            open_orders=open_orders,
            position=position,
            min_position_notional=self.policy.held_min_notional,
        )

        if not guard.allowed:
            if guard.reason == GuardReason.COOLDOWN:
                st.phase = TradePhase.COOLDOWN
            self._event("GUARD_SKIP", symbol, guard.reason.value.upper(), guard.details)
            return self._result("GUARD_SKIP", st, reason=guard.reason.value)

        try:
            account = self.accounts.get_account()
        except TransportError as e:
            return self._skip_transport(st, "account", e)

        size = self.sizer.size(account, market.signal.strength, market.price)
        if size.skipped:
            self._event("SIZING_SKIP", symbol, size.reason.upper(), size.details)
            return self._result("SIZING_SKIP", st, reason=size.reason)

        request = self.executor.buy_limit_request(
            symbol, size.quantity, market.price, self.policy.buy_limit_buffer
        )
        try:
            record = self.executor.submit(request)
        except TransportError as e:
            log.error("%s: entry submit failed: %s", symbol, e)
            self._event(
                "ORDER_FAILED",
                symbol,
                "ENTRY_SUBMIT_FAILED",
                {"request": request.to_payload(), **e.details()},
            )
            self.notifier.notify(f"{symbol}: buy failed ({e.message})", level="warning")
            return self._result("ENTRY_FAILED", st, error=e.message)

        st.pending_entry_order_id = record.id
        st.pending_notional = size.notional
        st.verify_attempts = 0
        st.entry_timestamp_ms = now
        st.entry_price = request.limit_price
        st.entry_qty = request.quantity
        st.last_trade_ms = now
        st.cooldown_until_ms = now + self.policy.cooldown_seconds * 1000
        st.abort_reason = None
        st.phase = TradePhase.ENTRY_SUBMITTED

        self._event(
            "ORDER_SUBMITTED",
            symbol,
            "ENTRY_LIMIT_BUY",
            {
                "order_id": record.id,
                "request": request.to_payload(),
                "notional": str(size.notional),
                "sizing": size.details,
            },
        )
        self.notifier.notify(
            f"{symbol}: limit buy {request.quantity} @ {request.limit_price} placed"
        )

        return self._await_entry(st, record.id)

    # ---------------- RULE 2: FILL WAIT ----------------

    def _await_entry(
        self, st: SymbolTradeState, order_id: str, carried_qty: Decimal = _ZERO
    ) -> ExecResult:
        try:
            record = self.fill_waiter.wait(order_id)
        except FillTimeout as e:
            last = e.last_record
            self._event(
                "FILL_TIMEOUT",
                st.symbol,
                "ENTRY_PENDING",
                {
                    "order_id": order_id,
                    "attempts": e.attempts,
                    "last_status": last.status.value if last is not None else None,
                },
            )
            return self._result("FILL_TIMEOUT", st, order_id=order_id)
        except TransportError as e:
            # stays pending; the next tick verifies
            log.warning("%s: fill poll for %s failed: %s", st.symbol, order_id, e)
            self._event("FILL_POLL_FAILED", st.symbol, "ENTRY_PENDING", {"order_id": order_id, **e.details()})
            return self._result("FILL_POLL_FAILED", st, order_id=order_id)

        return self._on_entry_terminal(st, record, carried_qty)

    def _on_entry_terminal(
        self, st: SymbolTradeState, record: OrderRecord, carried_qty: Decimal = _ZERO
    ) -> ExecResult:
        symbol = st.symbol
        filled_qty = carried_qty + record.filled_quantity
        st.clear_pending()

        if record.status == OrderStatus.FILLED:
            if record.filled_avg_price is not None and record.filled_avg_price > 0:
                st.entry_price = record.filled_avg_price
            if filled_qty > 0:
                st.entry_qty = filled_qty
            st.phase = TradePhase.ENTRY_FILLED
            self._event(
                "ORDER_FILLED",
                symbol,
                "ENTRY_FILLED",
                {
                    "order_id": record.id,
                    "filled_qty": str(filled_qty),
                    "filled_avg_price": str(record.filled_avg_price),
                },
            )
            self.notifier.notify(f"{symbol}: buy filled {filled_qty} @ {record.filled_avg_price}")
            return self._place_exits(st)

        self._event(
            "ORDER_CLOSED",
            symbol,
            "ENTRY_" + record.status.value.upper(),
            {"order_id": record.id, "filled_qty": str(filled_qty), "raw_status": record.raw_status},
        )
        if filled_qty > 0:
            # partial fill before cancel: exit what we got
            st.entry_qty = filled_qty
            if record.filled_avg_price is not None and record.filled_avg_price > 0:
                st.entry_price = record.filled_avg_price
            st.phase = TradePhase.ENTRY_FILLED
            return self._place_exits(st)

        st.clear_position()
        st.phase = TradePhase.IDLE
        return self._result("ENTRY_" + record.status.value.upper(), st, order_id=record.id)

    # ---------------- RULE 3: VERIFY ----------------

    def _verify_pending(self, st: SymbolTradeState, market: MarketSignal, now: int) -> ExecResult:
        symbol = st.symbol
        order_id = st.pending_entry_order_id
        st.verify_attempts += 1

        record: Optional[OrderRecord] = None
        fetch_err: Optional[TransportError] = None
        try:
            record = self.orders.get(order_id)
        except TransportError as e:
            fetch_err = e

        if record is not None and record.status.is_terminal:
            return self._on_entry_terminal(st, record)

        self._event(
            "VERIFY",
            symbol,
            "ENTRY_STILL_OPEN" if record is not None else "ENTRY_FETCH_FAILED",
            {
                "order_id": order_id,
                "attempt": st.verify_attempts,
                "status": record.status.value if record is not None else None,
                "fetch_error": fetch_err.details() if fetch_err else None,
            },
        )

        try:
            self.executor.cancel(order_id)
        except TransportError as cancel_err:
            details = {
                "order_id": order_id,
                "cancel_error": cancel_err.details(),
                "fetch_error": fetch_err.details() if fetch_err else None,
                "attempt": st.verify_attempts,
            }
            if fetch_err is not None:
                return self._abort(st, "verify_failed", details)
            if st.verify_attempts >= self.policy.max_verify_attempts:
                return self._abort(st, "cancel_failed", details)
            self._event("CANCEL_FAILED", symbol, "RETRY_NEXT_TICK", details)
            return self._result("CANCEL_FAILED", st, order_id=order_id)

        self._event("ORDER_CANCELED", symbol, "STALE_ENTRY", {"order_id": order_id})

        # the order may have filled between the poll and the cancel
        try:
            final = self.orders.get(order_id)
        except TransportError:
            final = record
        if final is not None and final.status == OrderStatus.FILLED:
            return self._on_entry_terminal(st, final)

        partial_qty = final.filled_quantity if final is not None else _ZERO
        partial_notional = final.filled_notional if final is not None else _ZERO
        remaining = floor_to_decimals(
            (st.pending_notional or _ZERO) - partial_notional, 2
        )

        if not market.signal.entry_ready or remaining < self.policy.min_order_notional:
            self._event(
                "VERIFY",
                symbol,
                "SIGNAL_LOST" if not market.signal.entry_ready else "REMAINDER_TOO_SMALL",
                {"order_id": order_id, "remaining_notional": str(remaining), "filled_qty": str(partial_qty)},
            )
            return self._settle_partial(st, partial_qty, final)

        request = self.executor.market_notional_request(symbol, remaining)
        try:
            retry_record = self.executor.submit(request)
        except TransportError as e:
            self._event(
                "ORDER_FAILED",
                symbol,
                "MARKET_RETRY_FAILED",
                {"request": request.to_payload(), **e.details()},
            )
            self.notifier.notify(f"{symbol}: market buy retry failed ({e.message})", level="warning")
            return self._settle_partial(st, partial_qty, final)

        st.pending_entry_order_id = retry_record.id
        st.pending_notional = remaining
        st.verify_attempts = 0
        st.last_trade_ms = now
        st.cooldown_until_ms = now + self.policy.cooldown_seconds * 1000
        self._event(
            "ORDER_SUBMITTED",
            symbol,
            "ENTRY_MARKET_RETRY",
            {
                "order_id": retry_record.id,
                "replaces": order_id,
                "request": request.to_payload(),
                "partial_filled_qty": str(partial_qty),
            },
        )
        self.notifier.notify(f"{symbol}: market buy retry for ${remaining}")
        return self._await_entry(st, retry_record.id, carried_qty=partial_qty)

    def _settle_partial(
        self, st: SymbolTradeState, partial_qty: Decimal, record: Optional[OrderRecord]
    ) -> ExecResult:
        st.clear_pending()
        if partial_qty > 0:
            st.entry_qty = partial_qty
            if record is not None and record.filled_avg_price:
                st.entry_price = record.filled_avg_price
            st.phase = TradePhase.ENTRY_FILLED
            return self._place_exits(st)
        st.clear_position()
        st.phase = TradePhase.IDLE
        return self._result("ENTRY_ABANDONED", st)

    # ---------------- RULE 4: EXITS ----------------

    def _place_exits(self, st: SymbolTradeState, position: Optional[Position] = None) -> ExecResult:
        symbol = st.symbol
        if position is None:
            try:
                position = self.positions.get_position(symbol)
            except TransportError as e:
                return self._skip_transport(st, "exit_position", e)
        if position is None:
            self._event("EXIT_SKIPPED", symbol, "NO_POSITION", {})
            return self._result("EXIT_SKIPPED", st, reason="no_position")

        basis = position.cost_basis if position.cost_basis > 0 else (st.entry_price or _ZERO)
        filled = st.entry_qty if st.entry_qty > 0 else position.quantity
        qty = self.executor.exit_quantity(filled, position.available_quantity)

        if basis <= 0 or qty * basis < self.policy.min_order_notional:
            self._event(
                "EXIT_SKIPPED",
                symbol,
                "BELOW_MIN_NOTIONAL",
                {"quantity": str(qty), "basis": str(basis), "min_notional": str(self.policy.min_order_notional)},
            )
            return self._result("EXIT_SKIPPED", st, reason="below_min_notional")

        plan = exit_rules.plan(basis, self.exit_policy)
        try:
            placement = self.executor.place_exit_orders(symbol, qty, plan)
        except TransportError as e:
            log.error("%s: take-profit submit failed: %s", symbol, e)
            self._event(
                "ORDER_FAILED",
                symbol,
                "EXIT_SUBMIT_FAILED",
                {"quantity": str(qty), "limit_price": str(plan.limit_price), **e.details()},
            )
            self.notifier.notify(f"{symbol}: sell order failed ({e.message})", level="warning")
            return self._result("EXIT_FAILED", st, error=e.message)

        st.exit_order_ids = placement.order_ids
        st.phase = TradePhase.EXIT_SUBMITTED
        self._event(
            "ORDER_SUBMITTED",
            symbol,
            "EXIT_ORDERS",
            {
                "order_ids": placement.order_ids,
                "quantity": str(qty),
                "basis": str(basis),
                "limit_price": str(plan.limit_price),
                "stop_price": str(plan.stop_price) if plan.stop_price is not None else None,
            },
        )
        self.notifier.notify(f"{symbol}: sell {qty} @ {plan.limit_price} placed")

        if placement.failure is not None:
            f = placement.failure
            self._event(
                "PARTIAL_EXIT_FAILURE",
                symbol,
                f.failed_leg.upper() + "_FAILED",
                {"placed_order_id": f.placed_order_id, "error": str(f.cause)},
            )
            self.notifier.notify(str(f), level="warning")
            return self._result("EXIT_PARTIAL", st, order_ids=placement.order_ids)

        return self._result("EXIT_SUBMITTED", st, order_ids=placement.order_ids)

    # ---------------- POSITION MANAGEMENT / RULE 6 ----------------

    def _manage_position(
        self, st: SymbolTradeState, position: Position, market: MarketSignal, now: int
    ) -> ExecResult:
        symbol = st.symbol
        if not st.entry_timestamp_ms:
            # no local record of this position: rebuild from brokerage truth
            st.entry_timestamp_ms = now
            st.entry_price = position.cost_basis
            st.entry_qty = position.quantity
            if st.phase in (TradePhase.IDLE, TradePhase.COOLDOWN):
                st.phase = TradePhase.ENTRY_FILLED
            self._event("STATE_REBUILT", symbol, "POSITION_ADOPTED", {"quantity": str(position.quantity), "cost_basis": str(position.cost_basis)})

        entry_price = st.entry_price if st.entry_price else position.cost_basis
        force, why = should_force_exit(
            entry_price=float(entry_price),
            entry_ms=st.entry_timestamp_ms,
            price=market.price,
            momentum=market.signal.momentum,
            exit_signal_valid=market.signal.exit_signal_valid,
            now_ms=now,
            policy=self.forced_exit_policy,
        )
        if force:
            return self._force_exit(st, why)

        try:
            open_orders = self.positions.get_open_orders(symbol)
        except TransportError as e:
            return self._skip_transport(st, "open_orders", e)

        if open_orders:
            sells = [o.id for o in open_orders if o.side == Side.SELL]
            if sells and st.phase != TradePhase.EXIT_SUBMITTED:
                st.exit_order_ids = sells
                st.phase = TradePhase.EXIT_SUBMITTED
            return self._result("HOLDING", st, open_orders=[o.id for o in open_orders], forced_exit_check=why)

        if st.phase in (TradePhase.IDLE, TradePhase.COOLDOWN):
            st.phase = TradePhase.ENTRY_FILLED
        return self._place_exits(st, position)

    def _force_exit(self, st: SymbolTradeState, why: str) -> ExecResult:
        symbol = st.symbol
        try:
            result = self.executor.force_exit(symbol)
        except TransportError as e:
            log.error("%s: forced exit failed: %s", symbol, e)
            self._event("ORDER_FAILED", symbol, "FORCED_EXIT_FAILED", {"rule": why, **e.details()})
            self.notifier.notify(f"{symbol}: forced exit failed ({e.message})", level="warning")
            return self._result("FORCED_EXIT_FAILED", st, error=e.message)

        st.exit_order_ids = [result.sell_order.id] if result.sell_order is not None else []
        st.phase = TradePhase.ABORTED
        st.abort_reason = "forced_exit"
        self._event(
            "FORCED_EXIT",
            symbol,
            "MARKET_SELL" if result.sell_order is not None else "NOTHING_TO_SELL",
            {
                "rule": why,
                "cancelled": result.cancelled,
                "cancel_errors": result.cancel_errors,
                "quantity": str(result.quantity),
                "order_id": result.sell_order.id if result.sell_order is not None else None,
            },
        )
        self.notifier.notify(f"{symbol}: forced exit of {result.quantity} ({why})", level="warning")
        return self._result("FORCED_EXIT", st, reason=why)

    # ---------------- RULE 5 / RECONCILE ----------------

    def _cancel_leftover_exits(self, st: SymbolTradeState) -> Optional[ExecResult]:
        """
        TP and SL are independent orders: once one leg has closed the
        position the other is still working at the brokerage. None once no
        leg of this trade is open any more.
        """
        try:
            open_orders = self.positions.get_open_orders(st.symbol)
        except TransportError as e:
            return self._skip_transport(st, "exit_cleanup", e)

        tracked = set(st.exit_order_ids)
        failed: List[str] = []
        for order in open_orders:
            if order.id not in tracked:
                continue
            try:
                self.executor.cancel(order.id)
            except TransportError as e:
                failed.append(order.id)
                self._event("CANCEL_FAILED", st.symbol, "LEFTOVER_EXIT_LEG", {"order_id": order.id, **e.details()})
                continue
            self._event("ORDER_CANCELED", st.symbol, "LEFTOVER_EXIT_LEG", {"order_id": order.id})

        if failed:
            # phase is kept, so the next tick comes back here
            st.exit_order_ids = failed
            return self._result("CANCEL_FAILED", st, order_ids=failed)
        return None

    def _complete(self, st: SymbolTradeState) -> ExecResult:
        if st.exit_order_ids:
            pending = self._cancel_leftover_exits(st)
            if pending is not None:
                return pending

        st.phase = TradePhase.COMPLETE
        self._event(
            "TRADE_COMPLETE",
            st.symbol,
            "POSITION_CLOSED",
            {"exit_order_ids": list(st.exit_order_ids), "entry_price": str(st.entry_price)},
        )
        self.notifier.notify(f"{st.symbol}: position closed")
        st.clear_position()
        st.phase = TradePhase.IDLE
        return self._result("COMPLETE", st)

    def _reconcile(self, st: SymbolTradeState) -> Optional[ExecResult]:
        """None once the brokerage has no open orders left for the symbol."""
        try:
            open_orders: List[OrderRecord] = self.positions.get_open_orders(st.symbol)
        except TransportError as e:
            return self._skip_transport(st, "reconcile", e)

        if open_orders:
            self._event(
                "RECONCILE",
                st.symbol,
                "WAIT_OPEN_ORDERS",
                {"open_orders": [o.id for o in open_orders], "abort_reason": st.abort_reason},
            )
            return self._result("ABORTED", st, reason=st.abort_reason)

        self._event("RECONCILE", st.symbol, "RESUMED", {"abort_reason": st.abort_reason})
        st.clear_pending()
        st.exit_order_ids = []
        st.abort_reason = None
        st.phase = TradePhase.IDLE
        return None
