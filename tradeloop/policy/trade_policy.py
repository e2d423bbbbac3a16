from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from tradeloop.execution.models import OrderRecord, Position


class GuardReason(str, Enum):
    OK = "ok"
    COOLDOWN = "cooldown_active"
    OPEN_ORDERS = "open_orders_exist"
    POSITION_HELD = "position_already_held"
    ENTRY_PENDING = "entry_order_pending"


@dataclass
class GuardDecision:
    allowed: bool
    reason: GuardReason
    details: Dict[str, Any] = field(default_factory=dict)


def cooldown_ok(cooldown_until_ms: int, now_ms: int) -> bool:
    """0 means no cooldown was ever armed."""
    return cooldown_until_ms <= 0 or now_ms >= cooldown_until_ms


def position_is_held(position: Optional[Position], min_notional: Decimal) -> bool:
    """Dust below the minimum tradable notional does not count as a position."""
    if position is None:
        return False
    return position.notional > min_notional


def cooldown_guard(
    *,
    pending_order_id: Optional[str],
    cooldown_until_ms: int,
    now_ms: int,
) -> GuardDecision:
    if pending_order_id:
        return GuardDecision(
            False, GuardReason.ENTRY_PENDING, {"order_id": pending_order_id}
        )
    if not cooldown_ok(cooldown_until_ms, now_ms):
        return GuardDecision(
            False,
            GuardReason.COOLDOWN,
            {
                "cooldown_until_ms": cooldown_until_ms,
                "remaining_s": (cooldown_until_ms - now_ms) // 1000,
            },
        )
    return GuardDecision(True, GuardReason.OK)


def holdings_guard(
    *,
    open_orders: List[OrderRecord],
    position: Optional[Position],
    min_position_notional: Decimal,
) -> GuardDecision:
    if open_orders:
        return GuardDecision(
            False,
            GuardReason.OPEN_ORDERS,
            {"open_orders": [o.id for o in open_orders]},
        )
    if position_is_held(position, min_position_notional):
        return GuardDecision(
            False,
            GuardReason.POSITION_HELD,
            {
                "quantity": str(position.quantity),
                "cost_basis": str(position.cost_basis),
                "notional": str(position.notional),
            },
        )
    return GuardDecision(True, GuardReason.OK)


def decide_entry(
    *,
    pending_order_id: Optional[str],
    cooldown_until_ms: int,
    now_ms: int,
    open_orders: List[OrderRecord],
    position: Optional[Position],
    min_position_notional: Decimal,
) -> GuardDecision:
    """
    Entry guards, in order: pending/cooldown, open orders, held position.
    Pure: same inputs, same decision.
    """
    first = cooldown_guard(
        pending_order_id=pending_order_id,
        cooldown_until_ms=cooldown_until_ms,
        now_ms=now_ms,
    )
    if not first.allowed:
        return first
    return holdings_guard(
        open_orders=open_orders,
        position=position,
        min_position_notional=min_position_notional,
    )
