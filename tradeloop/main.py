from __future__ import annotations

import argparse
import logging
import signal
import threading
import uuid
from dataclasses import dataclass
from typing import List, Optional

from tradeloop.core.config import Settings, settings
from tradeloop.exchange.alpaca.client import AlpacaClient
from tradeloop.exchange.alpaca.gateways import AccountGateway, OrderGateway, PositionGateway
from tradeloop.execution.confirm import FillWaiter
from tradeloop.execution.executor import OrderExecutor
from tradeloop.execution.exit_rules import ExitPolicy
from tradeloop.execution.position_manager import ForcedExitPolicy
from tradeloop.execution.retry import RetryPolicy
from tradeloop.ops.context import clear_run_id, set_run_id
from tradeloop.ops.notify import Notifier
from tradeloop.persistence.audit import Audit
from tradeloop.persistence.db import DB
from tradeloop.runner.controller import ControllerPolicy, SymbolTradeController
from tradeloop.runner.market import LiveSignalSource
from tradeloop.runner.runner import TradeCycleScheduler
from tradeloop.strategy.momentum import MomentumEvaluator
from tradeloop.symbols.sizing import AllocationSizer, SizingPolicy
from tradeloop.symbols.universe import parse_symbols

log = logging.getLogger("tradeloop.main")


@dataclass
class Runtime:
    client: AlpacaClient
    audit: Audit
    controller: SymbolTradeController
    scheduler: TradeCycleScheduler
    symbols: List[str]


def build_runtime(s: Settings, symbols: Optional[List[str]] = None) -> Runtime:
    client = AlpacaClient(
        api_key=s.ALPACA_API_KEY,
        api_secret=s.ALPACA_SECRET_KEY,
        base_url=s.ALPACA_BASE_URL,
        data_url=s.ALPACA_DATA_URL,
        timeout=s.HTTP_TIMEOUT_SECONDS,
    )
    accounts = AccountGateway(client)
    positions = PositionGateway(client)
    orders = OrderGateway(client)

    audit = Audit(DB(s.AUDIT_DB_PATH), jsonl_path=s.AUDIT_JSONL_PATH)

    executor = OrderExecutor(
        orders,
        positions,
        RetryPolicy.from_settings(s),
        price_decimals=s.PRICE_DECIMALS,
        qty_decimals=s.QTY_DECIMALS,
    )
    controller = SymbolTradeController(
        accounts=accounts,
        positions=positions,
        orders=orders,
        signal_source=LiveSignalSource(
            client,
            MomentumEvaluator(mode=s.SIGNAL_MODE),
            timeframe=s.BARS_TIMEFRAME,
            limit=s.BARS_LIMIT,
        ),
        sizer=AllocationSizer(SizingPolicy.from_settings(s)),
        fill_waiter=FillWaiter.from_settings(orders, s),
        executor=executor,
        exit_policy=ExitPolicy.from_settings(s),
        forced_exit_policy=ForcedExitPolicy.from_settings(s),
        audit=audit,
        notifier=Notifier(),
        policy=ControllerPolicy.from_settings(s),
    )

    tracked = parse_symbols(symbols if symbols else list(s.TRADE_SYMBOLS), s.MAX_SYMBOLS)
    scheduler = TradeCycleScheduler(
        controller, tracked, audit, max_workers=s.MAX_CONCURRENT_SYMBOLS
    )
    return Runtime(client, audit, controller, scheduler, tracked)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="tradeloop crypto execution engine")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--symbols", type=str, default="", help="CSV override of TRADE_SYMBOLS")
    parser.add_argument("--interval", type=int, default=None, help="Seconds between cycles")
    parser.add_argument("--log-level", type=str, default="INFO")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(message)s",
    )

    # Fail-closed: refuse to start with a dangerous config
    warnings = settings.validate_runtime()
    for w in warnings:
        print(f"[CONFIG WARNING] {w}")

    symbols = parse_symbols(args.symbols, settings.MAX_SYMBOLS) if args.symbols else None
    rt = build_runtime(settings, symbols)
    if not rt.symbols:
        log.error("no symbols to trade; set TRADE_SYMBOLS or pass --symbols")
        return 2

    interval = args.interval or settings.RUN_INTERVAL_SECONDS
    run_id = str(uuid.uuid4())
    set_run_id(run_id)
    rt.audit.start_run(run_id, settings.ALPACA_ENV, interval, rt.symbols)
    print(f"[RUN] started run_id={run_id} mode={settings.ALPACA_ENV} symbols={rt.symbols}")

    stop = threading.Event()

    def _stop(signum, frame):
        log.info("signal %s received, stopping", signum)
        stop.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    try:
        if args.once:
            result = rt.scheduler.run_once(wait=True)
            for sym, r in result.get("results", {}).items():
                print(f"[{sym}] {r.get('action')} phase={r.get('phase')}")
        else:
            rt.scheduler.run_forever(interval, stop)
    finally:
        rt.scheduler.shutdown(wait=True)
        rt.audit.stop_run(run_id)
        clear_run_id()
        print(f"[RUN] stopped run_id={run_id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
