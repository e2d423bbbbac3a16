# tradeloop/core/config.py
from __future__ import annotations

import json
import logging
from typing import Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger("tradeloop.config")

ALPACA_PAPER_URL = "https://paper-api.alpaca.markets"
ALPACA_LIVE_URL = "https://api.alpaca.markets"


def _parse_list(v: Any) -> List[str]:
    """
    Accepts:
      - list: ["BTC/USD","ETH/USD"]
      - csv:  "BTC/USD,ETH/USD"
      - json: '["BTC/USD","ETH/USD"]'
    Returns uppercase, trimmed symbols.
    """
    if v is None:
        return []
    if isinstance(v, list):
        return [str(x).strip().upper() for x in v if str(x).strip()]
    s = str(v).strip()
    if not s:
        return []
    if s.startswith("["):
        try:
            arr = json.loads(s)
            return [str(x).strip().upper() for x in arr if str(x).strip()]
        except ValueError:
            # fall back to csv parse
            pass
    return [p.strip().upper() for p in s.split(",") if p.strip()]


class Settings(BaseSettings):
    """Runtime configuration loaded from .env / environment variables."""

    # enable_decoding=False prevents pydantic-settings from auto-json-decoding List fields.
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        enable_decoding=False,
    )

    # --- Brokerage / API ---
    ALPACA_API_KEY: str = ""
    ALPACA_SECRET_KEY: str = ""

    # paper/live; paper is the default so a fresh checkout never trades real money
    ALPACA_ENV: str = "paper"
    ALPACA_BASE_URL: str = ALPACA_PAPER_URL
    ALPACA_DATA_URL: str = "https://data.alpaca.markets"
    HTTP_TIMEOUT_SECONDS: float = 15.0

    # --- Symbols / scheduling ---
    TRADE_SYMBOLS: List[str] = Field(default_factory=list)
    MAX_SYMBOLS: int = 20
    RUN_INTERVAL_SECONDS: int = 60
    MAX_CONCURRENT_SYMBOLS: int = 4

    # --- Market data for the signal evaluator ---
    BARS_TIMEFRAME: str = "15Min"
    BARS_LIMIT: int = 52

    # --- Signal policy ---
    # macd_cross | multi_factor
    SIGNAL_MODE: str = "multi_factor"

    # --- Sizing ---
    BASE_ALLOCATION_FRACTION: float = 0.10
    STRONG_SIGNAL_THRESHOLD: float = 0.05
    STRONG_SIGNAL_SCALE: float = 0.5
    SAFETY_MARGIN_USD: float = 1.0
    PRICE_COLLAR_PCT: float = 0.02
    EXTRA_BUFFER_PCT: float = 0.01
    MIN_ORDER_NOTIONAL: float = 1.0

    # --- Precision (decimal places) ---
    NOTIONAL_DECIMALS: int = 2
    QTY_DECIMALS: int = 6
    PRICE_DECIMALS: int = 5

    # --- Entry ---
    BUY_LIMIT_BUFFER: float = 0.999
    COOLDOWN_SECONDS: int = 30 * 60
    HELD_POSITION_MIN_NOTIONAL: float = 1.0

    # --- Fill polling / retries ---
    FILL_POLL_INTERVAL_SECONDS: float = 3.0
    FILL_POLL_MAX_ATTEMPTS: int = 20
    MAX_VERIFY_ATTEMPTS: int = 3
    RETRY_MAX_ATTEMPTS: int = 2
    RETRY_BACKOFF_SECONDS: float = 2.0

    # --- Exit ---
    FEE_BUFFER: float = 0.0025
    TARGET_PROFIT: float = 0.0005
    # 0 means "fee buffer + target profit"
    PROFIT_MARKUP: float = 0.0
    STOP_LOSS_PCT: float = 0.025
    ENABLE_STOP_LOSS: bool = True

    # --- Forced exit of stagnant positions ---
    FORCED_EXIT_AGE_SECONDS: int = 2 * 60 * 60
    FORCED_EXIT_PRICE_BAND: float = 0.005
    FORCED_EXIT_MOMENTUM_MAX: float = 50.0

    # --- Audit ---
    AUDIT_DB_PATH: str = "data/tradeloop.db"
    AUDIT_JSONL_PATH: str = "logs/trade_events.jsonl"

    @field_validator("TRADE_SYMBOLS", mode="before")
    @classmethod
    def parse_trade_symbols(cls, v: Any) -> List[str]:
        return _parse_list(v)

    def model_post_init(self, __context: Any) -> None:
        self.ALPACA_ENV = (self.ALPACA_ENV or "paper").lower().strip()
        self.SIGNAL_MODE = (self.SIGNAL_MODE or "multi_factor").lower().strip()

        # Keep base URL consistent with ALPACA_ENV unless user explicitly overrides
        if self.ALPACA_ENV == "live":
            if self.ALPACA_BASE_URL.strip().rstrip("/") == ALPACA_PAPER_URL:
                self.ALPACA_BASE_URL = ALPACA_LIVE_URL

    @property
    def profit_markup(self) -> float:
        if self.PROFIT_MARKUP > 0:
            return float(self.PROFIT_MARKUP)
        return float(self.FEE_BUFFER) + float(self.TARGET_PROFIT)

    def validate_runtime(self) -> List[str]:
        """
        Fail-fast validation. Returns warnings (non-fatal).
        Raises ValueError for fatal misconfiguration.
        """
        errors: List[str] = []
        warnings: List[str] = []

        if self.ALPACA_ENV not in {"paper", "live"}:
            errors.append("ALPACA_ENV must be 'paper' or 'live'.")

        if self.SIGNAL_MODE not in {"macd_cross", "multi_factor"}:
            errors.append("SIGNAL_MODE must be 'macd_cross' or 'multi_factor'.")

        if not self.ALPACA_API_KEY or not self.ALPACA_SECRET_KEY:
            warnings.append(
                "ALPACA_API_KEY / ALPACA_SECRET_KEY are empty. Brokerage calls will be rejected."
            )

        # Symbols sanity
        if not self.TRADE_SYMBOLS:
            warnings.append("TRADE_SYMBOLS is empty. Bot will have nothing to trade.")

        if self.MAX_SYMBOLS <= 0:
            errors.append("MAX_SYMBOLS must be > 0.")
        if self.MAX_CONCURRENT_SYMBOLS <= 0:
            errors.append("MAX_CONCURRENT_SYMBOLS must be > 0.")
        if self.RUN_INTERVAL_SECONDS <= 0:
            errors.append("RUN_INTERVAL_SECONDS must be > 0.")

        # Sizing sanity
        if not (0 < self.BASE_ALLOCATION_FRACTION <= 1):
            errors.append("BASE_ALLOCATION_FRACTION must be in (0, 1].")
        if not (0 < self.STRONG_SIGNAL_SCALE <= 1):
            errors.append("STRONG_SIGNAL_SCALE must be in (0, 1].")
        if self.SAFETY_MARGIN_USD < 0:
            errors.append("SAFETY_MARGIN_USD must be >= 0.")
        if self.PRICE_COLLAR_PCT < 0 or self.EXTRA_BUFFER_PCT < 0:
            errors.append("PRICE_COLLAR_PCT and EXTRA_BUFFER_PCT must be >= 0.")
        if self.PRICE_COLLAR_PCT + self.EXTRA_BUFFER_PCT >= 1:
            errors.append("PRICE_COLLAR_PCT + EXTRA_BUFFER_PCT must be < 1.")
        if self.MIN_ORDER_NOTIONAL <= 0:
            errors.append("MIN_ORDER_NOTIONAL must be > 0.")

        for name in ("NOTIONAL_DECIMALS", "QTY_DECIMALS", "PRICE_DECIMALS"):
            if int(getattr(self, name)) < 0:
                errors.append(f"{name} must be >= 0.")

        if not (0 < self.BUY_LIMIT_BUFFER <= 1):
            errors.append("BUY_LIMIT_BUFFER must be in (0, 1].")

        # Polling sanity (every wait must stay bounded)
        if self.FILL_POLL_MAX_ATTEMPTS <= 0:
            errors.append("FILL_POLL_MAX_ATTEMPTS must be > 0.")
        if self.FILL_POLL_INTERVAL_SECONDS < 0:
            errors.append("FILL_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.RETRY_MAX_ATTEMPTS <= 0:
            errors.append("RETRY_MAX_ATTEMPTS must be > 0.")
        if self.MAX_VERIFY_ATTEMPTS <= 0:
            errors.append("MAX_VERIFY_ATTEMPTS must be > 0.")

        # Exit sanity
        if self.PROFIT_MARKUP > 0 and self.PROFIT_MARKUP < (
            self.FEE_BUFFER + self.TARGET_PROFIT
        ):
            errors.append(
                "PROFIT_MARKUP must cover FEE_BUFFER + TARGET_PROFIT (round-trip fees and margin)."
            )
        if self.ENABLE_STOP_LOSS and not (0 < self.STOP_LOSS_PCT < 1):
            errors.append("STOP_LOSS_PCT must be in (0, 1) when ENABLE_STOP_LOSS is set.")
        if self.TARGET_PROFIT <= 0:
            warnings.append(
                "TARGET_PROFIT is <= 0; exits will only cover fees and never book a profit."
            )

        # Safety warning for real money
        if self.ALPACA_ENV == "live":
            warnings.append(
                "ALPACA_ENV=live will trade REAL money. "
                "If you meant paper trading, set ALPACA_ENV=paper (recommended)."
            )

        if errors:
            msg = "Config validation failed:\n" + "\n".join([f"- {e}" for e in errors])
            raise ValueError(msg)

        return warnings


# Pydantic v2 + postponed annotations safety
Settings.model_rebuild()
settings = Settings()
