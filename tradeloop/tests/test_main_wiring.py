from decimal import Decimal

from tradeloop.core.config import Settings
from tradeloop.main import build_runtime
from tradeloop.strategy.momentum import MACD_CROSS
from tradeloop.symbols.universe import normalize_symbol, parse_symbols


def test_build_runtime_from_settings(tmp_path):
    s = Settings(
        TRADE_SYMBOLS="btcusd,ETH/USD,BTC/USD",
        SIGNAL_MODE=MACD_CROSS,
        MAX_CONCURRENT_SYMBOLS=3,
        COOLDOWN_SECONDS=600,
        AUDIT_DB_PATH=str(tmp_path / "wired.db"),
        AUDIT_JSONL_PATH=str(tmp_path / "wired.jsonl"),
    )
    rt = build_runtime(s)
    try:
        assert rt.symbols == ["BTC/USD", "ETH/USD"]
        assert rt.scheduler.max_workers == 3
        assert rt.controller.policy.cooldown_seconds == 600
        assert rt.controller.signal_source.evaluator.mode == MACD_CROSS
        assert rt.controller.exit_policy.markup == Decimal("0.0030")
        assert rt.client.base_url == "https://paper-api.alpaca.markets"
    finally:
        rt.scheduler.shutdown()


def test_symbol_override(tmp_path):
    s = Settings(
        TRADE_SYMBOLS="BTC/USD",
        AUDIT_DB_PATH=str(tmp_path / "wired.db"),
        AUDIT_JSONL_PATH=str(tmp_path / "wired.jsonl"),
    )
    rt = build_runtime(s, ["SOL/USD"])
    try:
        assert rt.symbols == ["SOL/USD"]
    finally:
        rt.scheduler.shutdown()


def test_symbol_normalization():
    assert normalize_symbol("ethusd") == "ETH/USD"
    assert normalize_symbol("ETHBTC") == "ETH/BTC"
    assert normalize_symbol("sol-usdt") == "SOL/USDT"
    assert parse_symbols("BTC/USD, btcusd ,ETH/USD", max_symbols=1) == ["BTC/USD"]
