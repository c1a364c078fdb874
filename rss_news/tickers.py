"""Crypto price lookup shown above the headlines."""

from __future__ import annotations

import logging
from typing import Dict, Optional, Sequence

import requests

logger = logging.getLogger(__name__)

PRICE_URL = "https://min-api.cryptocompare.com/data/pricemulti"
DEFAULT_TICKERS = ("BTC", "BNB", "ETH", "SOL")


def get_prices(
    symbols: Sequence[str] = DEFAULT_TICKERS,
    api_key: Optional[str] = None,
    timeout: float = 10.0,
) -> Optional[Dict[str, str]]:
    """Return USD prices keyed by symbol, or None if the lookup fails."""
    if not symbols:
        return None

    params = {"fsyms": ",".join(symbols), "tsyms": "USD"}
    if api_key:
        params["api_key"] = api_key

    try:
        response = requests.get(PRICE_URL, params=params, timeout=timeout)
        response.raise_for_status()
        payload = response.json()
    except (requests.RequestException, ValueError) as exc:
        logger.warning("Failed to fetch prices for %s: %s", ",".join(symbols), exc)
        return None

    if not isinstance(payload, dict):
        logger.warning("Unexpected price payload: %r", payload)
        return None

    prices: Dict[str, str] = {}
    for symbol in symbols:
        quote = payload.get(symbol)
        if not isinstance(quote, dict) or "USD" not in quote:
            logger.warning("No USD price returned for %s", symbol)
            return None
        prices[symbol] = f"{quote['USD']}"
    return prices
