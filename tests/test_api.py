from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import main
from config import Settings
from database import Base
from fx_rates import FxRateService
from schemas import ClassifiedGuess


class FakeClassifier:
    def __init__(self, guess: dict):
        self.guess = guess

    def classify(self, text, account_names, today):
        return ClassifiedGuess(**self.guess)


def offline_settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        timezone="America/Toronto",
        default_currency="CAD",
        opening_balance_cents=0,
        fx_provider="offline",
        fx_timeout_secs=0.1,
        fx_fallback_rate=Decimal("5.2"),
        gemini_api_key="",
        classifier_model="gemini-test",
        classifier_timeout_secs=0.1,
    )


def make_client(guess: dict) -> TestClient:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides[main.get_db] = override_db
    main.app.dependency_overrides[main.get_classifier] = lambda: FakeClassifier(guess)
    main.app.dependency_overrides[main.get_fx_service] = lambda: FxRateService(
        offline_settings()
    )
    return TestClient(main.app)


def teardown_function() -> None:
    main.app.dependency_overrides.clear()


def test_record_then_list_accounts_with_fallback_rate() -> None:
    client = make_client(
        {
            "amount": 200,
            "type": "expense",
            "category": "餐饮",
            "account": "微信",
            "target_account": None,
            "date": "2026-02-24",
            "note": "火锅",
        }
    )

    response = client.post("/api/record", json={"text": "昨天吃火锅微信付了200"})
    assert response.status_code == 201
    body = response.json()
    assert body["degraded"] is False
    assert body["data"]["account"] == "WeChat"
    assert body["data"]["amount_cents"] == 20_000
    assert body["data"]["currency"] == "CAD"
    assert body["data"]["date"] == "2026-02-24"

    response = client.get("/api/accounts", params={"display_currency": "CNY"})
    assert response.status_code == 200
    body = response.json()
    balances = {a["name"]: a["balance_cents"] for a in body["accounts"]}
    assert balances == {"WeChat": -20_000, "Cash": 0, "DebitCard": 0, "CreditCard": 0}
    valuation = body["valuation"]
    assert valuation["display_currency"] == "CNY"
    assert valuation["total_cents"] == -104_000
    assert valuation["rate"] == "5.2"
    assert valuation["rate_source"] == "fallback"
    assert valuation["degraded"] is True


def test_record_unknown_account_returns_error_envelope() -> None:
    client = make_client({"amount": 10, "type": "expense", "account": "unknownbank"})

    response = client.post("/api/record", json={"text": "10 on unknownbank"})

    assert response.status_code == 404
    assert response.json() == {
        "error": "Unknown account: unknownbank",
        "kind": "account_not_found",
        "status": "error",
    }
    transactions = client.get("/api/transactions").json()
    assert transactions["items"] == []


def test_record_rejects_empty_text() -> None:
    client = make_client({"amount": 1, "type": "expense"})

    response = client.post("/api/record", json={"text": ""})

    assert response.status_code == 422
    assert response.json()["kind"] == "validation_error"


def test_init_accounts_is_idempotent() -> None:
    client = make_client({})

    first = client.post("/api/init-accounts").json()
    second = client.post("/api/init-accounts").json()

    assert first["created"] == ["WeChat", "Cash", "DebitCard", "CreditCard"]
    assert second["created"] == []
    assert second["existing"] == ["WeChat", "Cash", "DebitCard", "CreditCard"]


def test_create_and_reconcile_liability_account() -> None:
    client = make_client({})
    client.post("/api/init-accounts")

    response = client.post(
        "/api/accounts",
        json={"name": "BMO", "balance_cents": 10_000, "display_currency": "CNY"},
    )
    assert response.status_code == 201
    created = response.json()
    assert created["type"] == "liability"
    assert created["currency"] == "CAD"
    assert created["display_balance_cents"] == 52_000

    duplicate = client.post("/api/accounts", json={"name": "bmo"})
    assert duplicate.status_code == 409
    assert duplicate.json()["kind"] == "conflict"

    response = client.put(
        "/api/accounts/credit card",
        json={"balance_cents": 30_000, "due_date": 15, "billing_date": 1},
    )
    assert response.status_code == 200
    credit = response.json()
    assert credit["name"] == "CreditCard"
    assert credit["balance_cents"] == 30_000
    assert credit["due_date"] == 15

    missing = client.put("/api/accounts/unknownbank", json={"balance_cents": 1})
    assert missing.status_code == 404


def test_transfer_and_monthly_stats() -> None:
    client = make_client(
        {
            "amount": 50,
            "type": "expense",
            "category": "还款",
            "account": "CreditCard",
            "date": "2026-02-25",
        }
    )

    response = client.post("/api/record", json={"text": "还信用卡50"})
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["type"] == "transfer"
    assert data["account"] == "DebitCard"
    assert data["target_account"] == "CreditCard"

    stats = client.get(
        "/api/stats/monthly",
        params={"period": "custom", "start": "2026-02-01", "end": "2026-02-28"},
    )
    assert stats.status_code == 200
    assert stats.json()["totals"] == []

    bad = client.get("/api/stats/monthly", params={"period": "custom"})
    assert bad.status_code == 422


def test_invalid_user_header_is_rejected() -> None:
    client = make_client({})

    response = client.get("/api/accounts", headers={"X-User-Id": "0"})

    assert response.status_code == 422
    assert response.json()["kind"] == "validation_error"


def test_health() -> None:
    client = make_client({})
    assert client.get("/health").json() == {"status": "ok"}


class CountingFxService(FxRateService):
    def __init__(self):
        super().__init__(offline_settings())
        self.cad_to_cny_calls = 0

    def cad_to_cny(self):
        self.cad_to_cny_calls += 1
        return super().cad_to_cny()


def test_accounts_skip_rate_lookup_when_nothing_needs_conversion() -> None:
    client = make_client({})
    fx = CountingFxService()
    main.app.dependency_overrides[main.get_fx_service] = lambda: fx

    body = client.get("/api/accounts", params={"display_currency": "CAD"}).json()

    assert fx.cad_to_cny_calls == 0
    assert body["valuation"]["rate_source"] == "identity"
    assert body["valuation"]["degraded"] is False
    assert body["valuation"]["total_cents"] == 0

    client.get("/api/accounts", params={"display_currency": "CNY"})
    assert fx.cad_to_cny_calls == 1
