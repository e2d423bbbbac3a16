from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from tradeloop.core.config import Settings


@dataclass(frozen=True)
class ForcedExitPolicy:
    max_age_s: int = 2 * 60 * 60
    price_band: float = 0.005
    momentum_max: float = 50.0

    @classmethod
    def from_settings(cls, s: Settings) -> "ForcedExitPolicy":
        return cls(
            max_age_s=int(s.FORCED_EXIT_AGE_SECONDS),
            price_band=float(s.FORCED_EXIT_PRICE_BAND),
            momentum_max=float(s.FORCED_EXIT_MOMENTUM_MAX),
        )


def _move_pct(entry: float, price: float) -> Optional[float]:
    """Relative move of price vs entry as a decimal, None without a usable entry."""
    if not entry or entry <= 0 or price is None:
        return None
    return (price - entry) / entry


def should_force_exit(
    *,
    entry_price: Optional[float],
    entry_ms: int,
    price: Optional[float],
    momentum: Optional[float],
    exit_signal_valid: bool,
    now_ms: int,
    policy: ForcedExitPolicy,
) -> Tuple[bool, str]:
    """
    Stagnant-capital rule: held too long, price went nowhere, momentum faded.
    Overrides the profit target.

    momentum is an RSI-style reading; without one, a lost exit signal
    counts as weakened momentum.

    Returns: (exit_now, reason)
    """
    if not entry_ms:
        return (False, "NO_ENTRY_TIME")

    age_ms = int(now_ms) - int(entry_ms)
    if age_ms <= policy.max_age_s * 1000:
        return (False, "YOUNG")

    move = _move_pct(float(entry_price or 0.0), price)
    if move is None:
        return (False, "NO_PRICE")
    if abs(move) >= policy.price_band:
        return (False, f"MOVING_{move:.5f}")

    if momentum is not None:
        weak = momentum < policy.momentum_max
    else:
        weak = not exit_signal_valid
    if not weak:
        return (False, "MOMENTUM_OK")

    return (True, f"STAGNANT_{age_ms // 1000}s_{move:.5f}")
