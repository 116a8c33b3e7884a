from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from functools import lru_cache
from typing import Optional
from urllib.error import URLError
from urllib.request import Request, urlopen

from config import Settings, get_settings
from models import CurrencyCode

logger = logging.getLogger(__name__)

FALLBACK_PROVIDER = "fallback"


@dataclass(frozen=True)
class FxQuote:
    provider: str
    base: str
    quote: str
    rate: Decimal  # quote per 1 base
    rate_date: date
    fetched_at: datetime

    @property
    def degraded(self) -> bool:
        return self.provider == FALLBACK_PROVIDER


class FxRateService:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def latest_quote(self, base: CurrencyCode, quote: CurrencyCode) -> FxQuote:
        if base == quote:
            return _identity_quote(base)
        provider = (self.settings.fx_provider or "frankfurter").lower()
        if provider != "frankfurter":
            raise ValueError(f"Unsupported FX provider: {provider}")
        return _fetch_frankfurter_quote(
            base.value,
            quote.value,
            datetime.now(timezone.utc).date(),
            timeout=self.settings.fx_timeout_secs,
        )

    def fallback_quote(self) -> FxQuote:
        now = datetime.now(timezone.utc)
        return FxQuote(
            provider=FALLBACK_PROVIDER,
            base=CurrencyCode.cad.value,
            quote=CurrencyCode.cny.value,
            rate=self.settings.fx_fallback_rate,
            rate_date=now.date(),
            fetched_at=now,
        )

    def cad_to_cny(self) -> FxQuote:
        """Latest CNY-per-CAD quote, or the configured constant when the
        provider is unavailable. Valuation never fails on a missing rate."""
        try:
            return self.latest_quote(CurrencyCode.cad, CurrencyCode.cny)
        except (RuntimeError, ValueError) as exc:
            logger.warning(f"fx_rate_degraded: reason={exc}")
            return self.fallback_quote()


def _identity_quote(currency: CurrencyCode) -> FxQuote:
    now = datetime.now(timezone.utc)
    return FxQuote(
        provider="identity",
        base=currency.value,
        quote=currency.value,
        rate=Decimal("1"),
        rate_date=now.date(),
        fetched_at=now,
    )


@lru_cache(maxsize=64)
def _fetch_frankfurter_quote(
    base: str, quote: str, on_day: date, *, timeout: float
) -> FxQuote:
    # `on_day` only keys the cache so the latest rate is refetched daily
    url = f"https://api.frankfurter.app/latest?from={base}&to={quote}"
    req = Request(url, headers={"Accept": "application/json"})
    fetched_at = datetime.now(timezone.utc)
    try:
        with urlopen(req, timeout=timeout) as resp:
            payload = json.loads(resp.read().decode("utf-8"))
    except (URLError, TimeoutError, json.JSONDecodeError) as exc:
        raise RuntimeError(
            f"Failed to fetch FX rate from Frankfurter for {base}/{quote}"
        ) from exc

    try:
        rate = Decimal(str(payload["rates"][quote]))
        effective_date = date.fromisoformat(payload["date"])
    except Exception as exc:
        raise RuntimeError("Unexpected FX provider response") from exc

    if not rate.is_finite() or rate <= 0:
        raise RuntimeError(f"FX provider returned an unusable rate: {rate}")
    logger.info(f"fx_rate_fetched: pair={base}/{quote} rate={rate} on={on_day}")
    return FxQuote(
        provider="frankfurter",
        base=base,
        quote=quote,
        rate=rate,
        rate_date=effective_date,
        fetched_at=fetched_at,
    )
