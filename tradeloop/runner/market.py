from __future__ import annotations

import math
from dataclasses import dataclass

from tradeloop.core.errors import InvalidSignalData
from tradeloop.exchange.alpaca.client import bar_closes
from tradeloop.strategy.base import SignalEvaluator, SignalResult


@dataclass
class MarketSignal:
    price: float
    signal: SignalResult


class LiveSignalSource:
    """
    Latest trade price + recent bars -> evaluator.

    TransportError from the client propagates (symbol skipped for the tick);
    unusable data raises InvalidSignalData.
    """

    def __init__(self, client, evaluator: SignalEvaluator, timeframe: str = "15Min", limit: int = 52):
        self.client = client
        self.evaluator = evaluator
        self.timeframe = timeframe
        self.limit = int(limit)

    def __call__(self, symbol: str) -> MarketSignal:
        price = self.client.latest_price(symbol)
        if price is None or not math.isfinite(price) or price <= 0:
            raise InvalidSignalData(f"{symbol}: unusable price {price!r}")

        bars = self.client.crypto_bars(symbol, timeframe=self.timeframe, limit=self.limit)
        try:
            closes = bar_closes(bars)
        except (TypeError, ValueError) as e:
            raise InvalidSignalData(f"{symbol}: bad bar data ({e})") from e

        return MarketSignal(price=float(price), signal=self.evaluator.evaluate(closes))
