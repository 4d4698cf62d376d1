"""
Currency conversion and retail pricing.

Converts source-currency prices (CNY) to whole target-currency retail prices:

    retail = ceil(price * rate * markup)

The live rate comes from the Frankfurter API and is cached for an hour.
When the rate service is unreachable a configured fallback is used for that
call only; the fallback is never cached, so the next call tries again.
"""

import logging
import time
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal

import httpx

from importer.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_RATE = 0.14


@dataclass
class ExchangeRateCache:
    """A single cached rate with its fetch time (monotonic seconds)."""

    value: float | None = None
    fetched_at: float = 0.0
    ttl: float = 3600.0

    def get(self) -> float | None:
        if self.value is None:
            return None
        if time.monotonic() - self.fetched_at >= self.ttl:
            return None
        return self.value

    def set(self, value: float) -> None:
        self.value = value
        self.fetched_at = time.monotonic()

    def clear(self) -> None:
        self.value = None
        self.fetched_at = 0.0


class CurrencyConverter:
    """
    Looks up the source→target rate and turns source prices into retail prices.

    One converter (and its cache) is shared by every item in a run.
    """

    def __init__(
        self,
        rate_url: str = "https://api.frankfurter.app/latest",
        source_currency: str = "CNY",
        target_currency: str = "USD",
        fallback_rate: float = DEFAULT_FALLBACK_RATE,
        cache: ExchangeRateCache | None = None,
        timeout: float = 10.0,
    ):
        self._rate_url = rate_url
        self._source_currency = source_currency
        self._target_currency = target_currency
        self._fallback_rate = fallback_rate
        self._cache = cache or ExchangeRateCache()
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "CurrencyConverter":
        return cls(
            rate_url=settings.exchange_rate_url,
            source_currency=settings.source_currency,
            target_currency=settings.target_currency,
            fallback_rate=settings.fallback_exchange_rate,
            cache=ExchangeRateCache(ttl=settings.exchange_rate_ttl),
        )

    @property
    def cache(self) -> ExchangeRateCache:
        return self._cache

    async def get_rate(self) -> float:
        """
        Return the current rate, reading through the cache.

        Never raises: any lookup failure yields the fallback rate.
        """
        cached = self._cache.get()
        if cached is not None:
            return cached

        try:
            rate = await self._fetch_rate()
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning(
                f"Exchange rate lookup failed ({type(e).__name__}: {e}); "
                f"using fallback {self._fallback_rate}"
            )
            return self._fallback_rate

        self._cache.set(rate)
        logger.info(f"Exchange rate {self._source_currency}→{self._target_currency}: {rate}")
        return rate

    async def _fetch_rate(self) -> float:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(
                self._rate_url,
                params={"from": self._source_currency, "to": self._target_currency},
            )
        response.raise_for_status()

        rate = float(response.json()["rates"][self._target_currency])
        if rate <= 0:
            raise ValueError(f"Non-positive exchange rate: {rate}")
        return rate

    @staticmethod
    def to_target_price(amount: float, rate: float, markup: float) -> int:
        """
        Convert and mark up a source price, rounding up to a whole unit.

        Decimal arithmetic on the string forms keeps exact products exact:
        100 * 0.14 * 2 is 28, not 28.000000000000004 rounded up to 29.

        Examples:
            to_target_price(100, 0.14, 2.0)  -> 28
            to_target_price(96.5, 0.14, 2.0) -> 28   (27.02 rounds up)
        """
        value = Decimal(str(amount)) * Decimal(str(rate)) * Decimal(str(markup))
        return int(value.to_integral_value(rounding=ROUND_CEILING))
