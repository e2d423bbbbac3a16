import dataclasses
import threading
from decimal import Decimal

import pytest

from tradeloop.core.errors import InvalidSignalData, TransportError
from tradeloop.execution.confirm import FillWaiter
from tradeloop.execution.executor import OrderExecutor
from tradeloop.execution.exit_rules import ExitPolicy
from tradeloop.execution.models import (
    AccountSnapshot,
    OrderKind,
    OrderRecord,
    OrderStatus,
    Position,
    Side,
)
from tradeloop.execution.position_manager import ForcedExitPolicy
from tradeloop.execution.retry import RetryPolicy
from tradeloop.ops.notify import Notifier
from tradeloop.persistence.audit import Audit
from tradeloop.persistence.db import DB
from tradeloop.runner.controller import ControllerPolicy, SymbolTradeController
from tradeloop.runner.market import MarketSignal
from tradeloop.runner.models import TradePhase
from tradeloop.strategy.base import SignalResult
from tradeloop.symbols.sizing import AllocationSizer

SYM = "BTC/USD"
HOUR_MS = 3600 * 1000


class _FakeBroker:
    """
    Account + positions + orders in one fake.

    Order ids are o1, o2, ... in submit order. get() replays scripts[id]
    (last entry repeats, default NEW). A filled buy opens the position;
    cancel() removes the open order and frees the position quantity.
    Kinds in lost_responses are accepted but answered with a timeout, and
    a resubmit of the same client_order_id is a 422 duplicate.
    """

    def __init__(self, cash="100", equity="100"):
        self.account = AccountSnapshot(Decimal(cash), Decimal(cash), Decimal(equity))
        self.position = None
        self.open_orders = []
        self.submitted = []
        self.cancelled = []
        self.scripts = {}
        self.fail_kinds = set()
        self.lost_responses = set()
        self.by_client_id = {}
        self.fail_get = False
        self.fail_cancel = False

    # --- AccountGateway ---
    def get_account(self):
        return self.account

    # --- PositionGateway ---
    def get_position(self, symbol):
        return self.position

    def get_open_orders(self, symbol):
        return list(self.open_orders)

    # --- OrderGateway ---
    def submit(self, request):
        self.submitted.append(request)
        if request.kind in self.fail_kinds:
            raise TransportError("Alpaca HTTP 403", status_code=403, body={"message": "rejected"})
        if request.client_order_id in self.by_client_id:
            raise TransportError(
                "Alpaca HTTP 422", status_code=422, body={"message": "client_order_id must be unique"}
            )
        oid = f"o{len(self.submitted)}"
        record = OrderRecord(
            id=oid,
            status=OrderStatus.NEW,
            symbol=request.symbol,
            side=request.side,
            client_order_id=request.client_order_id,
        )
        self.by_client_id[request.client_order_id] = record
        if request.kind in self.lost_responses:
            self.open_orders.append(record)
            raise TransportError("ReadTimeout: read timed out")
        return record

    def find_by_client_id(self, client_order_id):
        return self.by_client_id.get(client_order_id)

    def get(self, order_id):
        if self.fail_get:
            raise TransportError("ReadTimeout: timed out")
        script = self.scripts.get(order_id) or [OrderRecord(order_id, OrderStatus.NEW)]
        rec = script.pop(0) if len(script) > 1 else script[0]
        if rec.status == OrderStatus.FILLED and rec.side == Side.BUY and self.position is None:
            self.position = Position(SYM, rec.filled_quantity, rec.filled_avg_price, rec.filled_quantity)
        return rec

    def cancel(self, order_id):
        if self.fail_cancel:
            raise TransportError("Alpaca HTTP 422", status_code=422)
        self.cancelled.append(order_id)
        self.open_orders = [o for o in self.open_orders if o.id != order_id]
        prior = self.scripts.get(order_id, [OrderRecord(order_id, OrderStatus.NEW)])[-1]
        self.scripts[order_id] = [dataclasses.replace(prior, status=OrderStatus.CANCELED)]
        if self.position is not None:
            self.position = dataclasses.replace(
                self.position, available_quantity=self.position.quantity
            )


def _filled(oid, qty, price, side=Side.BUY):
    return OrderRecord(
        oid, OrderStatus.FILLED, Decimal(qty), Decimal(price), symbol=SYM, side=side
    )


def _signal(entry_ready=True, price=100.0, momentum=60.0, exit_valid=True, strength=0.0):
    return MarketSignal(
        price=price,
        signal=SignalResult(
            entry_ready=entry_ready,
            exit_signal_valid=exit_valid,
            strength=strength,
            reason="test",
            momentum=momentum,
        ),
    )


class _Harness:
    def __init__(self, tmp_path, broker=None):
        self.broker = broker or _FakeBroker()
        self.now = [1_000 * HOUR_MS]
        self.market = _signal()
        self.sleeps = []
        self.notes = []
        self.audit = Audit(DB(str(tmp_path / "audit.db")), jsonl_path=None)
        notifier = Notifier()
        notifier.add_sink(lambda level, msg: self.notes.append((level, msg)))
        self.controller = SymbolTradeController(
            accounts=self.broker,
            positions=self.broker,
            orders=self.broker,
            signal_source=self._signal_source,
            sizer=AllocationSizer(),
            fill_waiter=FillWaiter(self.broker, poll_interval_s=3.0, max_attempts=20, sleep=self.sleeps.append),
            executor=OrderExecutor(self.broker, self.broker, RetryPolicy(sleep=lambda s: None)),
            exit_policy=ExitPolicy(),
            forced_exit_policy=ForcedExitPolicy(),
            audit=self.audit,
            notifier=notifier,
            policy=ControllerPolicy(),
            clock=lambda: self.now[0],
        )

    def _signal_source(self, symbol):
        if isinstance(self.market, Exception):
            raise self.market
        return self.market

    def step(self):
        return self.controller.step(SYM)

    @property
    def state(self):
        return self.controller.state_for(SYM)

    def events(self, event_type):
        return [e for e in self.audit.recent(limit=500) if e["event_type"] == event_type]


@pytest.fixture
def h(tmp_path):
    return _Harness(tmp_path)


def test_entry_fill_and_exit_orders(h):
    h.broker.scripts["o1"] = [_filled("o1", "0.097", "99.9")]

    r = h.step()

    entry, tp, sl = h.broker.submitted
    assert entry.side == Side.BUY and entry.kind == OrderKind.LIMIT
    assert entry.limit_price == Decimal("99.9")
    assert entry.quantity == Decimal("0.097")
    assert entry.time_in_force == "gtc"

    assert tp.side == Side.SELL and tp.kind == OrderKind.LIMIT
    assert tp.limit_price == Decimal("100.19970")
    assert tp.quantity == Decimal("0.097")
    assert sl.kind == OrderKind.STOP
    assert sl.stop_price == Decimal("97.40250")

    assert r.action == "EXIT_SUBMITTED"
    assert h.state.phase == TradePhase.EXIT_SUBMITTED
    assert h.state.exit_order_ids == ["o2", "o3"]
    assert h.state.pending_entry_order_id is None
    assert h.state.entry_price == Decimal("99.9")
    assert h.state.last_trade_ms == h.now[0]
    assert h.events("ORDER_FILLED")


def test_position_gone_completes_then_cooldown_holds(h):
    h.broker.scripts["o1"] = [_filled("o1", "0.097", "99.9")]
    h.step()

    h.broker.position = None
    r = h.step()
    assert r.action == "COMPLETE"
    assert h.state.phase == TradePhase.IDLE
    assert h.state.exit_order_ids == []
    assert h.events("TRADE_COMPLETE")

    h.now[0] += 60_000
    r = h.step()
    assert r.action == "GUARD_SKIP"
    assert r.details["reason"] == "cooldown_active"
    assert h.state.phase == TradePhase.COOLDOWN
    assert len(h.broker.submitted) == 3

    h.now[0] += 30 * 60_000
    h.market = _signal(entry_ready=False)
    h.step()
    assert h.state.phase == TradePhase.IDLE


def test_unfilled_entry_is_cancelled_when_signal_lapses(h):
    r = h.step()
    assert r.action == "FILL_TIMEOUT"
    assert h.sleeps == [3.0] * 19
    assert h.state.phase == TradePhase.ENTRY_SUBMITTED
    assert h.state.pending_entry_order_id == "o1"

    h.market = _signal(entry_ready=False)
    r = h.step()

    assert h.broker.cancelled == ["o1"]
    assert r.action == "ENTRY_ABANDONED"
    assert h.state.phase in (TradePhase.IDLE, TradePhase.COOLDOWN)
    assert h.state.pending_entry_order_id is None
    assert h.broker.position is None
    assert len(h.broker.submitted) == 1


def test_unfilled_entry_retries_as_market_buy(h):
    h.step()
    h.broker.scripts["o2"] = [_filled("o2", "0.0969", "100.1")]

    r = h.step()

    assert h.broker.cancelled == ["o1"]
    retry = h.broker.submitted[1]
    assert retry.kind == OrderKind.MARKET
    assert retry.notional == Decimal("9.70")
    assert retry.quantity is None
    assert r.action == "EXIT_SUBMITTED"
    assert h.state.phase == TradePhase.EXIT_SUBMITTED
    assert h.events("ORDER_SUBMITTED")


def test_market_retry_excludes_partially_filled_notional(h):
    h.step()
    h.broker.scripts["o1"] = [
        OrderRecord("o1", OrderStatus.PARTIALLY_FILLED, Decimal("0.05"), Decimal("99.9"), symbol=SYM, side=Side.BUY)
    ]
    h.broker.scripts["o2"] = [_filled("o2", "0.047", "100")]

    h.step()

    # 9.70 - 0.05 * 99.9 = 4.705 -> 4.70
    assert h.broker.submitted[1].notional == Decimal("4.70")
    assert h.state.phase == TradePhase.EXIT_SUBMITTED


def test_entry_that_filled_meanwhile_goes_straight_to_exits(h):
    h.step()
    h.broker.scripts["o1"] = [_filled("o1", "0.097", "99.9")]

    r = h.step()

    assert h.broker.cancelled == []
    assert r.action == "EXIT_SUBMITTED"


def test_submit_failure_leaves_state_idle(h):
    h.broker.fail_kinds = {OrderKind.LIMIT}

    r = h.step()

    assert r.action == "ENTRY_FAILED"
    assert h.state.phase == TradePhase.IDLE
    assert h.state.pending_entry_order_id is None
    assert h.state.last_trade_ms == 0
    failed = h.events("ORDER_FAILED")
    assert failed and failed[0]["details"]["status_code"] == 403
    assert failed[0]["details"]["request"]["type"] == "limit"
    assert any(level == "warning" for level, _ in h.notes)


def test_stop_leg_failure_keeps_take_profit(h):
    h.broker.scripts["o1"] = [_filled("o1", "0.097", "99.9")]
    h.broker.fail_kinds = {OrderKind.STOP}

    r = h.step()

    assert r.action == "EXIT_PARTIAL"
    assert h.state.phase == TradePhase.EXIT_SUBMITTED
    assert h.state.exit_order_ids == ["o2"]
    assert h.broker.cancelled == []
    assert h.events("PARTIAL_EXIT_FAILURE")


def test_take_profit_failure_is_retried_next_tick(h):
    h.broker.scripts["o1"] = [_filled("o1", "0.097", "99.9")]
    original_submit = h.broker.submit
    fail_sell = [True]

    # entry is a limit too: fail only the sell-side limit
    def fail_sells(request):
        if request.side == Side.SELL and fail_sell[0]:
            h.broker.submitted.append(request)
            raise TransportError("Alpaca HTTP 403", status_code=403)
        return original_submit(request)

    h.broker.submit = fail_sells

    r = h.step()
    assert r.action == "EXIT_FAILED"
    assert h.state.phase == TradePhase.ENTRY_FILLED

    fail_sell[0] = False
    r = h.step()
    assert r.action == "EXIT_SUBMITTED"
    assert h.state.phase == TradePhase.EXIT_SUBMITTED


def test_guard_open_orders_blocks_entry(h):
    h.broker.open_orders = [OrderRecord("x1", OrderStatus.NEW, side=Side.BUY)]

    r = h.step()

    assert r.action == "GUARD_SKIP"
    assert r.details["reason"] == "open_orders_exist"
    assert h.broker.submitted == []


def test_held_position_with_open_exit_just_holds(h):
    h.broker.position = Position(SYM, Decimal("0.1"), Decimal("100"), Decimal("0"))
    h.broker.open_orders = [OrderRecord("x1", OrderStatus.NEW, side=Side.SELL)]

    r = h.step()

    assert r.action == "HOLDING"
    assert h.broker.submitted == []
    assert h.state.phase == TradePhase.EXIT_SUBMITTED
    assert h.state.exit_order_ids == ["x1"]
    assert h.events("STATE_REBUILT")


def test_sizing_skip_submits_nothing(tmp_path):
    h = _Harness(tmp_path, _FakeBroker(cash="0.50"))

    r = h.step()

    assert r.action == "SIZING_SKIP"
    assert r.details["reason"] == "below_min_notional"
    assert h.broker.submitted == []
    assert h.state.phase == TradePhase.IDLE


def test_no_signal_no_order(h):
    h.market = _signal(entry_ready=False)
    assert h.step().action == "NO_SIGNAL"
    assert h.broker.submitted == []


def test_invalid_signal_data_aborts_cycle_only(h):
    h.market = InvalidSignalData("NaN close")
    r = h.step()
    assert r.action == "SIGNAL_INVALID"
    assert h.state.phase == TradePhase.IDLE
    assert h.broker.submitted == []

    h.market = _signal(entry_ready=False)
    assert h.step().action == "NO_SIGNAL"


def test_transport_error_on_signal_skips_symbol(h):
    h.market = TransportError("Alpaca HTTP 502", status_code=502)
    assert h.step().action == "SKIP_TRANSPORT"


def test_unverifiable_entry_aborts_then_reconciles(h):
    h.step()
    h.broker.fail_get = True
    h.broker.fail_cancel = True

    r = h.step()
    assert r.action == "ABORTED"
    assert h.state.phase == TradePhase.ABORTED
    assert h.state.abort_reason == "verify_failed"
    assert h.events("ABORTED")

    h.broker.fail_get = False
    h.broker.open_orders = [OrderRecord("o1", OrderStatus.NEW, side=Side.BUY)]
    assert h.step().action == "ABORTED"

    h.broker.open_orders = []
    h.market = _signal(entry_ready=False)
    r = h.step()
    assert r.action == "NO_SIGNAL"
    assert h.state.phase in (TradePhase.IDLE, TradePhase.COOLDOWN)
    assert h.state.pending_entry_order_id is None
    assert h.state.abort_reason is None


def test_cancel_failure_retries_then_aborts(h):
    h.step()
    h.broker.fail_cancel = True

    assert h.step().action == "CANCEL_FAILED"
    assert h.step().action == "CANCEL_FAILED"
    r = h.step()
    assert r.action == "ABORTED"
    assert h.state.abort_reason == "cancel_failed"


def test_stagnant_position_is_force_closed(h):
    st = h.state
    st.phase = TradePhase.EXIT_SUBMITTED
    st.entry_timestamp_ms = h.now[0] - 3 * HOUR_MS
    st.entry_price = Decimal("100")
    st.entry_qty = Decimal("0.1")
    h.broker.position = Position(SYM, Decimal("0.1"), Decimal("100"), Decimal("0"))
    h.broker.open_orders = [OrderRecord("x1", OrderStatus.NEW, side=Side.SELL)]
    h.market = _signal(entry_ready=False, price=100.2, momentum=45.0)

    r = h.step()

    assert r.action == "FORCED_EXIT"
    assert h.broker.cancelled == ["x1"]
    sell = h.broker.submitted[-1]
    assert sell.side == Side.SELL and sell.kind == OrderKind.MARKET
    assert sell.quantity == Decimal("0.1")
    assert h.state.phase == TradePhase.ABORTED
    assert h.state.abort_reason == "forced_exit"
    assert h.events("FORCED_EXIT")

    h.broker.position = None
    r = h.step()
    assert r.action == "NO_SIGNAL"
    assert h.state.phase == TradePhase.IDLE
    assert h.state.entry_timestamp_ms == 0


def test_busy_symbol_is_skipped_not_queued(h):
    started = threading.Event()
    release = threading.Event()

    def slow_source(symbol):
        started.set()
        release.wait(5)
        return _signal(entry_ready=False)

    h.controller.signal_source = slow_source
    t = threading.Thread(target=h.step)
    t.start()
    try:
        assert started.wait(5)
        r = h.step()
        assert r.action == "SYMBOL_BUSY"
        assert h.events("SYMBOL_BUSY")
    finally:
        release.set()
        t.join(5)


def test_leftover_exit_leg_is_cancelled_on_completion(h):
    h.broker.scripts["o1"] = [_filled("o1", "0.097", "99.9")]
    h.step()
    assert h.state.exit_order_ids == ["o2", "o3"]

    # take-profit o2 filled; the stop leg o3 is still working
    h.broker.position = None
    h.broker.open_orders = [OrderRecord("o3", OrderStatus.NEW, symbol=SYM, side=Side.SELL)]

    r = h.step()

    assert r.action == "COMPLETE"
    assert h.broker.cancelled == ["o3"]
    assert h.broker.open_orders == []
    canceled = h.events("ORDER_CANCELED")
    assert canceled and canceled[0]["action"] == "LEFTOVER_EXIT_LEG"
    assert canceled[0]["details"]["order_id"] == "o3"

    h.now[0] += 31 * 60_000
    r = h.step()
    assert r.action != "GUARD_SKIP"
    assert h.broker.submitted[-1].side == Side.BUY
    assert len(h.broker.submitted) == 4


def test_leftover_exit_cancel_failure_retries_next_tick(h):
    h.broker.scripts["o1"] = [_filled("o1", "0.097", "99.9")]
    h.step()

    h.broker.position = None
    h.broker.open_orders = [
        OrderRecord("o3", OrderStatus.NEW, symbol=SYM, side=Side.SELL),
        OrderRecord("manual-1", OrderStatus.NEW, symbol=SYM, side=Side.SELL),
    ]
    h.broker.fail_cancel = True

    r = h.step()
    assert r.action == "CANCEL_FAILED"
    assert r.details["order_ids"] == ["o3"]
    assert h.state.phase == TradePhase.EXIT_SUBMITTED
    assert h.state.exit_order_ids == ["o3"]

    h.broker.fail_cancel = False
    r = h.step()
    assert r.action == "COMPLETE"
    assert h.broker.cancelled == ["o3"]
    assert [o.id for o in h.broker.open_orders] == ["manual-1"]


def test_entry_accepted_despite_lost_response_is_tracked(h):
    h.broker.lost_responses = {OrderKind.LIMIT}

    r = h.step()

    # first attempt timed out, the resubmit hit the duplicate client_order_id
    assert len(h.broker.submitted) == 2
    assert h.broker.submitted[0].client_order_id == h.broker.submitted[1].client_order_id
    assert r.action == "FILL_TIMEOUT"
    assert h.state.phase == TradePhase.ENTRY_SUBMITTED
    assert h.state.pending_entry_order_id == "o1"
    assert h.events("ORDER_FAILED") == []
    assert h.events("ORDER_SUBMITTED")[0]["details"]["order_id"] == "o1"

    h.market = _signal(entry_ready=False)
    r = h.step()
    assert h.broker.cancelled == ["o1"]
    assert h.broker.open_orders == []
    assert r.action == "ENTRY_ABANDONED"


def test_guard_skip_is_repeatable(h):
    h.broker.open_orders = [OrderRecord("x1", OrderStatus.NEW, side=Side.BUY)]

    first = h.step()
    second = h.step()

    assert first.action == second.action == "GUARD_SKIP"
    assert first.details == second.details
    assert h.broker.submitted == []
    skips = h.events("GUARD_SKIP")
    assert len(skips) == 2
    assert skips[0]["action"] == skips[1]["action"] == "OPEN_ORDERS_EXIST"
    assert skips[0]["details"] == skips[1]["details"]


def test_cooldown_follows_the_recorded_deadline(h):
    t0 = h.now[0]
    h.step()
    h.now[0] = t0 + 5 * 60_000
    h.broker.scripts["o2"] = [_filled("o2", "0.0969", "100.1")]
    h.step()

    # the market retry re-arms the cooldown from its own submission time
    assert h.state.cooldown_until_ms == t0 + 35 * 60_000

    h.broker.position = None
    assert h.step().action == "COMPLETE"

    h.now[0] = t0 + 31 * 60_000
    r = h.step()
    assert r.action == "GUARD_SKIP"
    assert r.details["reason"] == "cooldown_active"

    h.now[0] = t0 + 35 * 60_000
    submitted = len(h.broker.submitted)
    r = h.step()
    assert r.action != "GUARD_SKIP"
    assert len(h.broker.submitted) == submitted + 1


def test_cooldown_deadline_alone_blocks_entry(h):
    h.state.cooldown_until_ms = h.now[0] + 10 * 60_000

    r = h.step()

    assert r.action == "GUARD_SKIP"
    assert r.details["reason"] == "cooldown_active"
    assert h.state.phase == TradePhase.COOLDOWN
    assert h.broker.submitted == []
