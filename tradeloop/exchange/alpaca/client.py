from __future__ import annotations

import logging
import random
import time

import requests

from tradeloop.core.errors import TransportError

log = logging.getLogger("tradeloop.alpaca")


def bar_closes(bars: list) -> list[float]:
    """
    Alpaca bar format:
    {"t": "...", "o": ..., "h": ..., "l": ..., "c": ..., "v": ...}
    """
    return [float(b["c"]) for b in bars if b.get("c") is not None]


def position_symbol(symbol: str) -> str:
    """Positions are keyed without the slash: BTC/USD -> BTCUSD."""
    return (symbol or "").upper().replace("/", "")


class AlpacaClient:
    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: str,
        data_url: str = "https://data.alpaca.markets",
        timeout: float = 15.0,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.data_url = data_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()

    @property
    def headers(self) -> dict:
        return {
            "APCA-API-KEY-ID": self.api_key,
            "APCA-API-SECRET-KEY": self.api_secret,
            "Content-Type": "application/json",
        }

    # ------------------------------------------------------------------
    # request helper
    # ------------------------------------------------------------------
    def _request(
        self,
        method: str,
        url: str,
        params=None,
        json_body=None,
        max_retries: int = 2,
        allow_404: bool = False,
    ):
        """
        Reads pass max_retries > 0 and ride out 429/5xx/network blips.
        Order mutations pass max_retries=0; RetryPolicy owns their retries.
        """
        params = dict(params or {})

        last_err: TransportError | None = None
        for attempt in range(max_retries + 1):
            try:
                r = self.session.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=self.headers,
                    timeout=self.timeout,
                )
            except (requests.Timeout, requests.ConnectionError) as e:
                last_err = TransportError(
                    f"{type(e).__name__}: {e}", method=method, url=url
                )
                if attempt < max_retries:
                    time.sleep(min(0.4 * (2**attempt), 8.0))
                continue
            except requests.RequestException as e:
                raise TransportError(
                    f"{type(e).__name__}: {e}", method=method, url=url
                ) from e

            if allow_404 and r.status_code == 404:
                return None

            if r.status_code >= 400:
                last_err = TransportError(
                    f"Alpaca HTTP {r.status_code}",
                    status_code=r.status_code,
                    body=self._body(r),
                    method=method,
                    url=url,
                )
                if not last_err.retryable or attempt >= max_retries:
                    break
                # Rate limit
                if r.status_code == 429:
                    ra = r.headers.get("Retry-After")
                    sleep_s = float(ra) if ra else (0.4 * (2**attempt))
                    sleep_s += random.uniform(0, 0.2)
                    time.sleep(min(sleep_s, 10.0))
                    continue
                # Server errors
                time.sleep(min(0.4 * (2**attempt), 8.0))
                continue

            return r.json() if r.content else None

        assert last_err is not None
        log.warning(
            "alpaca request failed method=%s url=%s status=%s body=%s",
            method,
            url,
            last_err.status_code,
            last_err.body,
        )
        raise last_err

    @staticmethod
    def _body(r: requests.Response):
        try:
            return r.json()
        except ValueError:
            return r.text

    def _trading(self, method: str, path: str, **kwargs):
        return self._request(method, f"{self.base_url}{path}", **kwargs)

    def _data(self, path: str, params: dict):
        return self._request("GET", f"{self.data_url}{path}", params=params)

    # ---------------- ACCOUNT ----------------

    def account(self) -> dict:
        return self._trading("GET", "/v2/account")

    # ---------------- POSITIONS / ORDERS ----------------

    def position(self, symbol: str) -> dict | None:
        """None when nothing is held (Alpaca answers 404)."""
        return self._trading(
            "GET", f"/v2/positions/{position_symbol(symbol)}", allow_404=True
        )

    def open_orders(self, symbol: str | None = None) -> list:
        params = {"status": "open", "limit": 500}
        if symbol:
            params["symbols"] = symbol.upper()
        data = self._trading("GET", "/v2/orders", params=params)
        return data if isinstance(data, list) else []

    def submit_order(self, payload: dict) -> dict:
        return self._trading("POST", "/v2/orders", json_body=payload, max_retries=0)

    def get_order(self, order_id: str) -> dict:
        return self._trading("GET", f"/v2/orders/{order_id}", max_retries=0)

    def order_by_client_id(self, client_order_id: str) -> dict | None:
        """None when the brokerage never accepted an order with this id."""
        return self._trading(
            "GET",
            "/v2/orders:by_client_order_id",
            params={"client_order_id": client_order_id},
            allow_404=True,
        )

    def cancel_order(self, order_id: str) -> None:
        self._trading("DELETE", f"/v2/orders/{order_id}", max_retries=0)

    # ---------------- MARKET DATA ----------------

    def latest_price(self, symbol: str) -> float:
        sym = symbol.upper()
        data = self._data("/v1beta3/crypto/us/latest/trades", {"symbols": sym}) or {}
        trade = (data.get("trades") or {}).get(sym)
        if not trade or trade.get("p") is None:
            raise TransportError(f"Price not available for {sym}", body=data)
        return float(trade["p"])

    def crypto_bars(self, symbol: str, timeframe: str = "15Min", limit: int = 52) -> list:
        """Most recent `limit` bars, oldest first."""
        sym = symbol.upper()
        data = self._data(
            "/v1beta3/crypto/us/bars",
            {"symbols": sym, "timeframe": timeframe, "limit": limit, "sort": "desc"},
        ) or {}
        bars = (data.get("bars") or {}).get(sym) or []
        return list(reversed(bars))
