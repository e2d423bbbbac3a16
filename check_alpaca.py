from dotenv import load_dotenv

load_dotenv()

import os
import requests


key = os.getenv("ALPACA_API_KEY", "").strip()
secret = os.getenv("ALPACA_SECRET_KEY", "").strip()
env = os.getenv("ALPACA_ENV", "paper").strip().lower()
default_base = "https://api.alpaca.markets" if env == "live" else "https://paper-api.alpaca.markets"
base = os.getenv("ALPACA_BASE_URL", default_base).strip().rstrip("/")

if not key or not secret:
    raise SystemExit("Missing ALPACA_API_KEY or ALPACA_SECRET_KEY")

url = f"{base}/v2/account"

r = requests.get(
    url,
    headers={"APCA-API-KEY-ID": key, "APCA-API-SECRET-KEY": secret},
    timeout=10,
)
print(r.status_code)
print(r.text[:800])
