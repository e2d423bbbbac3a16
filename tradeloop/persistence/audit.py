from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from tradeloop.ops.context import get_cycle_id, get_run_id
from tradeloop.persistence.db import DB, utc_now_iso

log = logging.getLogger("tradeloop.audit")

Subscriber = Callable[[Dict[str, Any]], None]


def _dumps(obj: Any) -> str:
    # Decimals and enums go out as strings
    return json.dumps(obj, ensure_ascii=False, default=str)


class Audit:
    """
    Append-only trade-event stream.

    DB is the source of truth. Events are mirrored to a JSONL file and pushed
    to in-process subscribers; mirror and subscriber failures are logged and
    never reach the trading loop.
    """

    def __init__(self, db: DB, jsonl_path: Optional[str] = "logs/trade_events.jsonl"):
        self.db = db
        self.jsonl_path = Path(jsonl_path) if jsonl_path else None
        self._subscribers: List[Subscriber] = []
        self._write_lock = threading.Lock()

        if self.jsonl_path is not None:
            try:
                self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
                self.jsonl_path.touch(exist_ok=True)
            except OSError as e:
                log.warning("audit mirror unavailable at %s: %s", self.jsonl_path, e)

    def subscribe(self, fn: Subscriber) -> None:
        self._subscribers.append(fn)

    def start_run(
        self, run_id: str, mode: str, interval_seconds: int, symbols: List[str]
    ) -> None:
        self.db.execute(
            "INSERT OR REPLACE INTO runs(run_id, started_at, mode, interval_seconds, symbols) VALUES (?,?,?,?,?)",
            (run_id, utc_now_iso(), mode, interval_seconds, ",".join(symbols)),
        )

        self._write_jsonl(
            {
                "timestamp_utc": utc_now_iso(),
                "event_type": "RUN_START",
                "run_id": run_id,
                "details": {
                    "mode": mode,
                    "interval_seconds": interval_seconds,
                    "symbols": list(symbols),
                },
            }
        )

    def stop_run(self, run_id: str) -> None:
        self.db.execute(
            "UPDATE runs SET stopped_at = ? WHERE run_id = ?", (utc_now_iso(), run_id)
        )

        self._write_jsonl(
            {
                "timestamp_utc": utc_now_iso(),
                "event_type": "RUN_STOP",
                "run_id": run_id,
                "details": {},
            }
        )

    def event(
        self,
        event_type: str,
        run_id: Optional[str] = None,
        cycle_id: Optional[str] = None,
        symbol: Optional[str] = None,
        action: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        record = {
            "timestamp_utc": utc_now_iso(),
            "event_type": event_type,
            "run_id": run_id if run_id is not None else get_run_id(),
            "cycle_id": cycle_id if cycle_id is not None else get_cycle_id(),
            "symbol": symbol,
            "action": action,
            "details": details or {},
        }

        # DB write failures propagate; the mirror and subscribers are best effort
        self.db.execute(
            "INSERT INTO events(timestamp_utc, run_id, cycle_id, symbol, event_type, action, details_json) "
            "VALUES (?,?,?,?,?,?,?)",
            (
                record["timestamp_utc"],
                record["run_id"],
                record["cycle_id"],
                symbol,
                event_type,
                action,
                _dumps(record["details"]),
            ),
        )
        self._write_jsonl(record)

        for fn in list(self._subscribers):
            try:
                fn(record)
            except Exception:
                log.exception("audit subscriber %r failed on %s", fn, event_type)

        return record

    def recent(self, symbol: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        """Newest first."""
        sql = "SELECT * FROM events"
        params: list = []
        if symbol:
            sql += " WHERE symbol = ?"
            params.append(symbol)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(int(limit))

        out = []
        for row in self.db.fetchall(sql, params):
            d = dict(row)
            d["details"] = json.loads(d.pop("details_json") or "{}")
            out.append(d)
        return out

    def _write_jsonl(self, obj: Dict[str, Any]) -> None:
        if self.jsonl_path is None:
            return
        try:
            with self._write_lock:
                with self.jsonl_path.open("a", encoding="utf-8") as f:
                    f.write(_dumps(obj) + "\n")
        except OSError as e:
            log.warning("audit mirror write failed (%s): %s", self.jsonl_path, e)
