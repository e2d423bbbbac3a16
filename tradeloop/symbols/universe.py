from __future__ import annotations
from typing import List, Set, Union

_QUOTES = ("USDT", "USDC", "USD", "BTC")


def normalize_symbol(raw: str) -> str:
    """
    Crypto pairs are traded as BASE/QUOTE: "btcusd" -> "BTC/USD".
    Already-slashed pairs pass through upper-cased.
    """
    s = (raw or "").strip().upper().replace("-", "/")
    if not s or "/" in s:
        return s
    for quote in _QUOTES:
        if s.endswith(quote) and len(s) > len(quote):
            return f"{s[: -len(quote)]}/{quote}"
    return s


def parse_symbols(raw: Union[str, List[str]], max_symbols: int = 100) -> List[str]:
    # Accept both CSV string and list[str]
    if isinstance(raw, list):
        symbols = [normalize_symbol(str(s)) for s in raw if str(s).strip()]
    else:
        symbols = [normalize_symbol(s) for s in raw.split(",") if s.strip()]

    # remove duplicates but keep order
    seen: Set[str] = set()
    unique = []
    for s in symbols:
        if s not in seen:
            seen.add(s)
            unique.append(s)

    return unique[:max_symbols]
