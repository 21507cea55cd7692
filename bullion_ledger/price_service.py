"""Market gold rate lookups for the bullion_ledger backend."""
from __future__ import annotations

import logging
from datetime import date
from typing import Optional

import requests

from .config import AppConfig
from .models import GoldRate

logger = logging.getLogger(__name__)

GRAMS_PER_TROY_OUNCE = 31.1034768


def ounce_to_10gm_rate(price_per_ounce: float) -> float:
    """Convert a price per troy ounce into the trade convention of price per 10 g."""

    return price_per_ounce / GRAMS_PER_TROY_OUNCE * 10


class GoldRateService:
    """Fetch the live fine-gold rate from Alpha Vantage."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    def fetch_rate_per_10gm(self, currency: Optional[str] = None) -> Optional[GoldRate]:
        """Return today's price of 10 g of fine gold in ``currency``.

        Alpha Vantage quotes ``XAU`` per troy ounce through its currency
        exchange endpoint.  The function degrades to ``None`` when the API key
        is not configured or when the payload does not have the expected
        structure; HTTP errors propagate to the caller.
        """

        if not self._config.alpha_vantage_key:
            logger.info("Gold rate requested but no Alpha Vantage key is configured")
            return None

        quote = (currency or self._config.currency).upper()
        params = {
            "function": "CURRENCY_EXCHANGE_RATE",
            "from_currency": "XAU",
            "to_currency": quote,
            "apikey": self._config.alpha_vantage_key,
        }
        response = requests.get(self._config.alpha_vantage_endpoint, params=params, timeout=30)
        response.raise_for_status()
        payload = response.json()
        body = payload.get("Realtime Currency Exchange Rate")
        if not body:
            logger.warning("Unexpected gold rate payload: %s", sorted(payload))
            return None
        rate_str = body.get("5. Exchange Rate")
        if rate_str is None:
            return None
        try:
            per_ounce = float(rate_str)
        except ValueError:
            return None
        if per_ounce <= 0:
            return None
        return GoldRate(
            currency=quote,
            valuation_date=date.today(),
            rate_per_10gm=ounce_to_10gm_rate(per_ounce),
            source="alpha_vantage",
        )
