from __future__ import annotations

import math
from typing import List

from tradeloop.core.errors import InvalidSignalData
from tradeloop.strategy.base import SignalEvaluator, SignalResult
from tradeloop.strategy.indicators import linreg_slope, macd_histogram_slope, rsi, zscore

MACD_CROSS = "macd_cross"
MULTI_FACTOR = "multi_factor"


class MomentumEvaluator(SignalEvaluator):
    """
    RSI / MACD / trend-slope / Z-score evaluator.

    Modes:
      - macd_cross:   macd > signal, histogram rising, RSI > 40, slope > 0.01
      - multi_factor: Z < -2 -> reversion (macd > signal, hist rising, Z < -2)
                      else  -> momentum  (macd > signal, hist slope > 0.0002,
                                          -2.5 < Z < 0)

    strength is the trend slope (used by sizing); momentum is RSI.
    """

    name = "momentum"

    def __init__(
        self,
        mode: str = MULTI_FACTOR,
        *,
        min_closes: int = 36,
        rsi_floor: float = 40.0,
        slope_floor: float = 0.01,
        reversion_z: float = -2.0,
        momentum_z_floor: float = -2.5,
        momentum_hist_slope: float = 0.0002,
    ):
        if mode not in (MACD_CROSS, MULTI_FACTOR):
            raise ValueError(f"unknown signal mode: {mode}")
        self.mode = mode
        self.min_closes = int(min_closes)
        self.rsi_floor = rsi_floor
        self.slope_floor = slope_floor
        self.reversion_z = reversion_z
        self.momentum_z_floor = momentum_z_floor
        self.momentum_hist_slope = momentum_hist_slope

    def evaluate(self, closes: List[float]) -> SignalResult:
        if len(closes) < self.min_closes:
            raise InvalidSignalData(
                f"need {self.min_closes} closes, got {len(closes)}"
            )
        if any(c is None or not math.isfinite(c) for c in closes):
            raise InvalidSignalData("non-finite close in history")

        try:
            line, sig, hist_slope = macd_histogram_slope(closes)
            strength_rsi = rsi(closes, 14)
            slope = linreg_slope(closes, 30)
            z = zscore(closes, 20)
        except ValueError as e:
            raise InvalidSignalData(f"indicator_error:{e}") from e

        meta = {
            "macd": line,
            "signal": sig,
            "hist_slope": hist_slope,
            "rsi14": strength_rsi,
            "slope": slope,
            "zscore": z,
            "mode": self.mode,
        }

        crossed = line > sig
        if self.mode == MACD_CROSS:
            entry = (
                crossed
                and hist_slope > 0
                and strength_rsi > self.rsi_floor
                and slope > self.slope_floor
            )
            reason = "macd_cross" if entry else "no_macd_cross"
        elif z < self.reversion_z:
            entry = crossed and hist_slope > 0
            reason = "reversion" if entry else "reversion_wait"
        else:
            entry = (
                crossed
                and hist_slope > self.momentum_hist_slope
                and self.momentum_z_floor < z < 0
            )
            reason = "momentum" if entry else "momentum_wait"

        return SignalResult(
            entry_ready=bool(entry),
            exit_signal_valid=bool(crossed),
            strength=slope,
            momentum=strength_rsi,
            reason=reason,
            meta=meta,
        )
