"""
USD -> crypto conversion backed by the CoinGecko simple-price API.

Prices are cached for a short TTL to stay under public rate limits. A failed
refresh keeps serving the last good price until it falls outside the
freshness window, after which PriceUnavailable is raised.
"""

import logging
import threading
import time
from decimal import ROUND_UP, Decimal
from typing import Callable, Dict, Optional, Tuple

import requests

from paywatch.errors import PriceUnavailable

logger = logging.getLogger(__name__)

COINGECKO_URL = "https://api.coingecko.com/api/v3/simple/price"
DEFAULT_CACHE_TTL = 60.0  # seconds
DEFAULT_MAX_AGE = 300.0  # seconds
REQUEST_TIMEOUT = 10  # seconds

# Amounts are rounded up so the quote never undershoots the USD price
AMOUNT_QUANTUM = Decimal("0.00000001")

USD_PEGGED_ASSETS = frozenset({"USDC"})

COINGECKO_IDS: Dict[str, str] = {
    "ETH": "ethereum",
    "SOL": "solana",
}


class PriceOracle:
    """Cached market prices and the usd_to_crypto conversion."""

    def __init__(
        self,
        url: str = COINGECKO_URL,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        max_age: float = DEFAULT_MAX_AGE,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.url = url
        self.cache_ttl = cache_ttl
        self.max_age = max_age
        self.session = session or requests.Session()
        self.clock = clock
        self._prices: Dict[str, Tuple[Decimal, float]] = {}  # asset -> (usd price, fetched at)
        self._lock = threading.Lock()

    def usd_to_crypto(self, usd: Decimal, asset: str) -> Decimal:
        """Convert a USD amount to ``asset`` units.

        Raises:
            PriceUnavailable: If no price fresher than ``max_age`` is available
        """
        usd = Decimal(str(usd))
        if asset in USD_PEGGED_ASSETS:
            return usd

        price = self.get_price(asset)
        return (usd / price).quantize(AMOUNT_QUANTUM, rounding=ROUND_UP)

    def get_price(self, asset: str) -> Decimal:
        if asset not in COINGECKO_IDS:
            raise PriceUnavailable(asset, "unsupported asset")

        with self._lock:
            if self._is_older_than(asset, self.cache_ttl):
                self._refresh()

            cached = self._prices.get(asset)
            if cached is None or self._is_older_than(asset, self.max_age):
                raise PriceUnavailable(asset, f"no price fetched within {self.max_age:.0f}s")
            return cached[0]

    def _is_older_than(self, asset: str, seconds: float) -> bool:
        cached = self._prices.get(asset)
        return cached is None or self.clock() - cached[1] > seconds

    def _refresh(self) -> None:
        params = {"ids": ",".join(COINGECKO_IDS.values()), "vs_currencies": "usd"}
        try:
            response = self.session.get(self.url, params=params, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Price fetch failed: {e}")
            return

        now = self.clock()
        for asset, coin_id in COINGECKO_IDS.items():
            usd = (data.get(coin_id) or {}).get("usd")
            if usd is None:
                continue
            price = Decimal(str(usd))
            if price <= 0:
                logger.warning(f"Ignoring non-positive {asset} price: {usd}")
                continue
            self._prices[asset] = (price, now)

        logger.info("Prices: " + " ".join(f"{a}=${p}" for a, (p, _) in sorted(self._prices.items())))
