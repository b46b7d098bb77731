"""
Finnhub stock quote fetcher.

Credentials:
    api_key: Finnhub API key

Options:
    symbols: Comma-separated ticker symbols (at most MAX_SYMBOLS are fetched)

Finnhub has no batch quote endpoint, so one request is made per symbol.
A 429 on any symbol aborts the cycle with a rate-limit error so the poller
backs off instead of hammering the API.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from app.core.logging_config import log_warning
from app.integrations.fetchers.base import (
    CREDENTIAL,
    RATE_LIMITED,
    FetchContext,
    FetchError,
    Fetcher,
    FetchOk,
    FetchResult,
    error_from_response,
    error_from_transport,
)

API_BASE = "https://finnhub.io/api/v1"
MAX_SYMBOLS = 20
DEFAULT_SYMBOLS = "AAPL,GOOGL,MSFT"


def parse_symbols(raw: Any) -> List[str]:
    if isinstance(raw, list):
        raw = ",".join(str(s) for s in raw)
    if not isinstance(raw, str):
        raw = DEFAULT_SYMBOLS
    symbols: List[str] = []
    for part in raw.split(","):
        symbol = part.strip().upper()
        if symbol and symbol not in symbols:
            symbols.append(symbol)
    return symbols[:MAX_SYMBOLS]


def _direction(change: float) -> str:
    if change > 0:
        return "up"
    if change < 0:
        return "down"
    return "neutral"


_ARROWS = {"up": "▲", "down": "▼", "neutral": "─"}


def transform_quote(symbol: str, quote: Dict[str, Any]) -> Dict[str, Any]:
    price = quote.get("c") or 0
    change = quote.get("d") or 0
    change_percent = quote.get("dp") or 0
    direction = _direction(change)
    sign = "+" if change > 0 else ""
    percent_sign = "+" if change_percent > 0 else ""
    return {
        "symbol": symbol,
        "price": price,
        "priceFormatted": f"${price:.2f}",
        "change": change,
        "changeFormatted": f"{sign}{change:.2f}",
        "changePercent": change_percent,
        "changePercentFormatted": f"({percent_sign}{change_percent:.2f}%)",
        "changeDirection": direction,
        "changeArrow": _ARROWS[direction],
        "high": quote.get("h") or 0,
        "low": quote.get("l") or 0,
        "open": quote.get("o") or 0,
        "previousClose": quote.get("pc") or 0,
    }


def market_status(now: datetime) -> str:
    """Approximate NYSE session from UTC (fixed UTC-5, no holiday calendar)."""
    eastern = now.astimezone(timezone(timedelta(hours=-5)))
    if eastern.weekday() >= 5:
        return "closed"
    minutes = eastern.hour * 60 + eastern.minute
    if 4 * 60 <= minutes < 9 * 60 + 30:
        return "pre-market"
    if 9 * 60 + 30 <= minutes < 16 * 60:
        return "open"
    if 16 * 60 <= minutes < 20 * 60:
        return "after-hours"
    return "closed"


class FinnhubFetcher(Fetcher):
    name = "finnhub"

    def __init__(self, api_base: str = API_BASE):
        self.api_base = api_base

    async def _quote(self, http: httpx.AsyncClient, symbol: str, api_key: str) -> httpx.Response:
        return await http.get(
            f"{self.api_base}/quote",
            params={"symbol": symbol},
            headers={"Accept": "application/json", "X-Finnhub-Token": api_key},
        )

    async def fetch(self, credentials: Dict[str, Any], options: Dict[str, Any], context: FetchContext) -> FetchResult:
        api_key = credentials.get("api_key")
        if not api_key:
            return FetchError("Finnhub api_key is missing", credentials, kind=CREDENTIAL)

        symbols = parse_symbols(options.get("symbols", DEFAULT_SYMBOLS))
        quotes: List[Dict[str, Any]] = []
        last_error: Optional[FetchError] = None

        for symbol in symbols:
            try:
                response = await self._quote(context.http, symbol, api_key)
            except httpx.HTTPError as e:
                last_error = error_from_transport(e, credentials, "Finnhub")
                continue

            if response.status_code != 200:
                error = error_from_response(response, credentials, "Finnhub")
                if error.kind in (RATE_LIMITED, CREDENTIAL):
                    return error
                last_error = error
                continue

            try:
                payload = response.json()
            except ValueError:
                last_error = FetchError("Finnhub returned malformed JSON", credentials)
                continue

            # c == 0 means Finnhub does not know the symbol
            if not isinstance(payload, dict) or not payload.get("c"):
                log_warning("Finnhub returned no quote for symbol", symbol=symbol)
                continue
            quotes.append(transform_quote(symbol, payload))

        if not quotes:
            return last_error or FetchError("No valid quotes returned for the requested symbols", credentials)

        now = context.clock()
        return FetchOk(
            {
                "quotes": quotes,
                "lastUpdated": int(now.timestamp()),
                "marketStatus": market_status(now),
            },
            credentials,
        )
