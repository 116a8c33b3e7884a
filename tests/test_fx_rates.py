import json
from decimal import Decimal

import pytest

import fx_rates
from config import Settings
from fx_rates import FxRateService
from models import CurrencyCode


def make_settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        timezone="America/Toronto",
        default_currency="CAD",
        opening_balance_cents=0,
        fx_provider="frankfurter",
        fx_timeout_secs=0.1,
        fx_fallback_rate=Decimal("5.2"),
        gemini_api_key="",
        classifier_model="gemini-test",
        classifier_timeout_secs=0.1,
    )


class FakeResponse:
    def __init__(self, body: bytes):
        self.body = body

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def read(self) -> bytes:
        return self.body


def serve(monkeypatch, body: bytes) -> list[str]:
    requested: list[str] = []

    def fake_urlopen(req, timeout=None):
        requested.append(req.full_url)
        return FakeResponse(body)

    fx_rates._fetch_frankfurter_quote.cache_clear()
    monkeypatch.setattr(fx_rates, "urlopen", fake_urlopen)
    return requested


def test_cad_to_cny_uses_provider_rate(monkeypatch) -> None:
    requested = serve(
        monkeypatch, b'{"amount": 1.0, "base": "CAD", "date": "2026-02-24", "rates": {"CNY": 5.31}}'
    )

    quote = FxRateService(make_settings()).cad_to_cny()

    assert requested == ["https://api.frankfurter.app/latest?from=CAD&to=CNY"]
    assert quote.provider == "frankfurter"
    assert quote.rate == Decimal("5.31")
    assert quote.degraded is False
    fx_rates._fetch_frankfurter_quote.cache_clear()


@pytest.mark.parametrize(
    "rates",
    [
        {"CNY": "n/a"},
        {"CNY": float("nan")},
        {"CNY": float("inf")},
        {"CNY": 0},
        {"CNY": -5.2},
        {"CNY": None},
        {},
    ],
)
def test_unusable_provider_rate_falls_back(monkeypatch, rates) -> None:
    body = json.dumps({"date": "2026-02-24", "rates": rates}).encode("utf-8")
    serve(monkeypatch, body)

    quote = FxRateService(make_settings()).cad_to_cny()

    assert quote.provider == "fallback"
    assert quote.rate == Decimal("5.2")
    assert quote.degraded is True
    fx_rates._fetch_frankfurter_quote.cache_clear()


def test_unreachable_provider_falls_back(monkeypatch) -> None:
    def failing_urlopen(req, timeout=None):
        raise TimeoutError("timed out")

    fx_rates._fetch_frankfurter_quote.cache_clear()
    monkeypatch.setattr(fx_rates, "urlopen", failing_urlopen)

    quote = FxRateService(make_settings()).cad_to_cny()

    assert quote.degraded is True


def test_same_currency_quote_never_contacts_provider(monkeypatch) -> None:
    requested = serve(monkeypatch, b"{}")

    quote = FxRateService(make_settings()).latest_quote(CurrencyCode.cny, CurrencyCode.cny)

    assert quote.provider == "identity"
    assert quote.rate == Decimal("1")
    assert requested == []
