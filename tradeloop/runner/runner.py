from __future__ import annotations

import contextvars
import logging
import sqlite3
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from tradeloop.execution.executor import ExecResult
from tradeloop.ops.context import cycle_scope
from tradeloop.persistence.audit import Audit
from tradeloop.runner.controller import SymbolTradeController

log = logging.getLogger("tradeloop.scheduler")


class TradeCycleScheduler:
    """
    Periodic driver over the tracked symbols.

    One cycle at a time (non-blocking cycle lock). Within a cycle every symbol
    is dispatched to a bounded thread pool; a symbol whose previous step is
    still running is coalesced instead of queued behind itself.
    """

    def __init__(
        self,
        controller: SymbolTradeController,
        symbols: List[str],
        audit: Audit,
        max_workers: int = 4,
    ):
        self.controller = controller
        self.symbols = list(symbols)
        self.audit = audit
        self.max_workers = max(1, int(max_workers))

        self._cycle_lock = threading.Lock()
        self._inflight_lock = threading.Lock()
        self._inflight: Dict[str, Future] = {}
        self._pool = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="tradeloop-symbol"
        )

    @contextmanager
    def cycle_guard(self, timeout_s: float = 0.0):
        """
        Prevent overlapping run_once cycles.
        If another cycle is running, we skip cleanly.
        """
        acquired = self._cycle_lock.acquire(timeout=timeout_s)
        try:
            yield acquired
        finally:
            if acquired:
                self._cycle_lock.release()

    def _run_symbol(self, symbol: str) -> ExecResult:
        try:
            return self.controller.step(symbol)
        except Exception as e:
            # one symbol never stops the scheduler
            log.exception("step failed for %s", symbol)
            try:
                self.audit.event(
                    event_type="ERROR",
                    symbol=symbol,
                    action="STEP_SYMBOL_FAILED",
                    details={"error": f"{type(e).__name__}: {e}"},
                )
            except (sqlite3.Error, OSError):
                log.exception("audit write failed for %s", symbol)
            return ExecResult("ERROR", {"symbol": symbol, "error": repr(e)})
        finally:
            with self._inflight_lock:
                self._inflight.pop(symbol, None)

    def in_flight(self) -> List[str]:
        with self._inflight_lock:
            return sorted(self._inflight)

    def run_once(self, wait: bool = False) -> Dict[str, Any]:
        with self.cycle_guard() as acquired:
            if not acquired:
                self.audit.event(
                    event_type="CYCLE_SKIPPED",
                    action="CYCLE_ALREADY_RUNNING",
                    details={"note": "Previous cycle still dispatching"},
                )
                return {"skipped": True, "reason": "CYCLE_ALREADY_RUNNING"}

            with cycle_scope(str(uuid.uuid4())) as cycle_id:
                self.audit.event(
                    event_type="CYCLE_START",
                    cycle_id=cycle_id,
                    details={"symbols": self.symbols, "max_workers": self.max_workers},
                )

                dispatched: Dict[str, Future] = {}
                coalesced: List[str] = []
                for symbol in self.symbols:
                    with self._inflight_lock:
                        if symbol in self._inflight:
                            coalesced.append(symbol)
                            continue
                        # cycle id travels into the worker thread
                        ctx = contextvars.copy_context()
                        fut = self._pool.submit(ctx.run, self._run_symbol, symbol)
                        self._inflight[symbol] = fut
                        dispatched[symbol] = fut

                for symbol in coalesced:
                    self.audit.event(
                        event_type="TICK_COALESCED",
                        symbol=symbol,
                        action="SKIP",
                        details={"note": "previous step still running"},
                    )

                results: Dict[str, Any] = {}
                if wait:
                    for symbol, fut in dispatched.items():
                        r = fut.result()
                        results[symbol] = {"action": r.action, **r.details}

                self.audit.event(
                    event_type="CYCLE_END",
                    cycle_id=cycle_id,
                    details={
                        "dispatched": list(dispatched),
                        "coalesced": coalesced,
                        "waited": wait,
                    },
                )
                return {
                    "cycle_id": cycle_id,
                    "dispatched": list(dispatched),
                    "coalesced": coalesced,
                    "results": results,
                }

    def run_forever(self, interval_s: float, stop_event: Optional[threading.Event] = None) -> None:
        stop_event = stop_event or threading.Event()
        log.info(
            "scheduler started: %d symbol(s), every %.1fs, %d worker(s)",
            len(self.symbols),
            interval_s,
            self.max_workers,
        )
        while not stop_event.is_set():
            try:
                self.run_once(wait=False)
            except Exception:
                log.exception("cycle failed")
            stop_event.wait(interval_s)
        log.info("scheduler stopped")

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
