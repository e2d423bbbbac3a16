from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass
class SignalResult:
    entry_ready: bool
    exit_signal_valid: bool
    strength: float
    reason: str
    momentum: Optional[float] = None
    meta: Optional[Dict] = None


class SignalEvaluator:
    """evaluate(closes) must be pure: same closes, same result."""

    name: str = "base"

    def evaluate(self, closes: List[float]) -> SignalResult:
        raise NotImplementedError
