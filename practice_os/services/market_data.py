"""Market Data — live prices for holdings and the provider used for probing.

Prices come from yfinance ``fast_info`` (free, no key). The health probe
prefers a keyed provider when one is configured and falls back to the free
Yahoo chart endpoint otherwise.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
from typing import NamedTuple

from practice_os.config import settings
from practice_os.utils.logger import logger

CANARY_SYMBOL = "AAPL"


class Provider(NamedTuple):
    name: str
    url: str
    keyed: bool


def resolve_provider(symbol: str = CANARY_SYMBOL) -> Provider:
    """Pick Marketstack, then Twelve Data, then free Yahoo."""
    if settings.MARKETSTACK_API_KEY:
        return Provider(
            "Marketstack",
            "https://api.marketstack.com/v1/eod/latest"
            f"?access_key={settings.MARKETSTACK_API_KEY}&symbols={symbol}",
            True,
        )
    if settings.TWELVE_DATA_API_KEY:
        return Provider(
            "Twelve Data",
            f"https://api.twelvedata.com/price?symbol={symbol}"
            f"&apikey={settings.TWELVE_DATA_API_KEY}",
            True,
        )
    return Provider(
        "Yahoo",
        f"https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"
        "?interval=1d&range=1d",
        False,
    )


def _fetch_one(symbol: str) -> tuple[str, float | None]:
    try:
        import yfinance as yf
        t = yf.Ticker(symbol)
        price = getattr(t.fast_info, "last_price", None)
        return (symbol, float(price) if price is not None else None)
    except Exception as e:
        logger.warning("[MarketData] Price fetch failed for %s: %s", symbol, e)
        return (symbol, None)


async def fetch_prices(tickers: list[str]) -> dict[str, float]:
    """Fetch current prices for a list of tickers using yfinance."""
    if not tickers:
        return {}

    loop = asyncio.get_running_loop()
    with concurrent.futures.ThreadPoolExecutor(
        max_workers=min(len(tickers), 8)
    ) as pool:
        futures = [loop.run_in_executor(pool, _fetch_one, t) for t in tickers]
        results = await asyncio.gather(*futures, return_exceptions=True)

    prices: dict[str, float] = {}
    for result in results:
        if isinstance(result, tuple) and result[1] is not None:
            prices[result[0]] = result[1]

    logger.info("[MarketData] Fetched %d/%d prices", len(prices), len(tickers))
    return prices
