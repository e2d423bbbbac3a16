# tradeloop/runner/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class TradePhase(str, Enum):
    IDLE = "IDLE"
    COOLDOWN = "COOLDOWN"
    ENTRY_SUBMITTED = "ENTRY_SUBMITTED"
    ENTRY_FILLED = "ENTRY_FILLED"
    EXIT_SUBMITTED = "EXIT_SUBMITTED"
    COMPLETE = "COMPLETE"
    ABORTED = "ABORTED"


@dataclass
class SymbolTradeState:
    symbol: str
    phase: TradePhase = TradePhase.IDLE
    last_trade_ms: int = 0
    cooldown_until_ms: int = 0
    pending_entry_order_id: Optional[str] = None
    pending_notional: Optional[Decimal] = None
    entry_timestamp_ms: int = 0
    entry_price: Optional[Decimal] = None
    entry_qty: Decimal = Decimal("0")
    exit_order_ids: List[str] = field(default_factory=list)
    verify_attempts: int = 0
    abort_reason: Optional[str] = None

    @property
    def has_pending_entry(self) -> bool:
        return self.pending_entry_order_id is not None

    def clear_pending(self) -> None:
        self.pending_entry_order_id = None
        self.pending_notional = None
        self.verify_attempts = 0

    def clear_position(self) -> None:
        """Trade metadata goes once the brokerage reports the symbol flat."""
        self.entry_timestamp_ms = 0
        self.entry_price = None
        self.entry_qty = Decimal("0")
        self.exit_order_ids = []

    def snapshot(self) -> dict:
        return {
            "phase": self.phase.value,
            "last_trade_ms": self.last_trade_ms,
            "cooldown_until_ms": self.cooldown_until_ms,
            "pending_entry_order_id": self.pending_entry_order_id,
            "pending_notional": (
                str(self.pending_notional) if self.pending_notional is not None else None
            ),
            "entry_timestamp_ms": self.entry_timestamp_ms,
            "entry_price": str(self.entry_price) if self.entry_price is not None else None,
            "entry_qty": str(self.entry_qty),
            "exit_order_ids": list(self.exit_order_ids),
            "verify_attempts": self.verify_attempts,
            "abort_reason": self.abort_reason,
        }
