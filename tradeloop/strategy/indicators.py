from __future__ import annotations

import math
from typing import List, Tuple


def rsi(closes: List[float], period: int = 14) -> float:
    if len(closes) < period + 1:
        raise ValueError("not_enough_data")
    gains = 0.0
    losses = 0.0
    for i in range(-period, 0):
        diff = closes[i] - closes[i - 1]
        if diff >= 0:
            gains += diff
        else:
            losses += abs(diff)
    if losses == 0:
        return 100.0
    rs = gains / losses
    return 100 - (100 / (1 + rs))


def macd(
    closes: List[float], fast: int = 12, slow: int = 26, signal: int = 9
) -> Tuple[float, float]:
    """(macd_line, signal_line) at the last close. Both EMAs seed on closes[0]."""
    if len(closes) < slow + signal:
        raise ValueError("not_enough_data")
    k_fast = 2 / (fast + 1)
    k_slow = 2 / (slow + 1)
    k_sig = 2 / (signal + 1)
    e_fast = e_slow = closes[0]
    sig = None
    line = 0.0
    for c in closes:
        e_fast = c * k_fast + e_fast * (1 - k_fast)
        e_slow = c * k_slow + e_slow * (1 - k_slow)
        line = e_fast - e_slow
        sig = line if sig is None else line * k_sig + sig * (1 - k_sig)
    return line, sig


def macd_histogram_slope(closes: List[float], **kw) -> Tuple[float, float, float]:
    """(macd_line, signal_line, hist_now - hist_prev)."""
    line, sig = macd(closes, **kw)
    prev_line, prev_sig = macd(closes[:-1], **kw)
    return line, sig, (line - sig) - (prev_line - prev_sig)


def linreg_slope(closes: List[float], window: int = 30) -> float:
    """Least-squares slope over the last `window` closes (price units per bar)."""
    if len(closes) < window:
        raise ValueError("not_enough_data")
    y = closes[-window:]
    n = float(window)
    sum_x = window * (window - 1) / 2.0
    sum_x2 = (window - 1) * window * (2 * window - 1) / 6.0
    sum_y = sum(y)
    sum_xy = sum(i * v for i, v in enumerate(y))
    return (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)


def zscore(closes: List[float], period: int = 20) -> float:
    if len(closes) < period:
        raise ValueError("not_enough_data")
    window = closes[-period:]
    mean = sum(window) / period
    std = math.sqrt(sum((c - mean) ** 2 for c in window) / period)
    if std == 0:
        return 0.0
    return (window[-1] - mean) / std
