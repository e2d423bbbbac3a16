import pytest


@pytest.fixture(autouse=True)
def _test_env(monkeypatch, tmp_path):
    """
    Ensure tests never hit live trading accidentally.
    """
    monkeypatch.setenv("ALPACA_ENV", "paper")
    monkeypatch.setenv("ALPACA_API_KEY", "test-key")
    monkeypatch.setenv("ALPACA_SECRET_KEY", "test-secret")
    monkeypatch.setenv("TRADE_SYMBOLS", "BTC/USD")
    monkeypatch.setenv("MAX_SYMBOLS", "1")
    monkeypatch.setenv("AUDIT_DB_PATH", str(tmp_path / "audit.db"))
    monkeypatch.setenv("AUDIT_JSONL_PATH", str(tmp_path / "events.jsonl"))
