from datetime import date

import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from errors import AccountNotFound, ConflictError, ValidationError
from ledger import ResolvedTransaction
from models import Account, AccountType, CurrencyCode, TransactionType
from schemas import LiabilityAccountIn, ReconcileIn
from services import AccountService, LedgerService


def test_bootstrap_creates_reserved_accounts_once() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        created, existing = AccountService(session).ensure_defaults()
        assert [a.name for a in created] == ["WeChat", "Cash", "DebitCard", "CreditCard"]
        assert existing == []

        accounts = {a.name: a for a in AccountService(session).list_all()}
        assert accounts["CreditCard"].type == AccountType.liability
        assert accounts["DebitCard"].type == AccountType.asset
        assert accounts["Cash"].currency == CurrencyCode.cad
        assert accounts["Cash"].display_currency == CurrencyCode.cad

        created, existing = AccountService(session).ensure_defaults()
        assert created == []
        assert len(existing) == 4


def test_bootstrap_corrects_wrongly_typed_reserved_account() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        session.add(
            Account(
                name="CreditCard",
                type=AccountType.asset,
                currency=CurrencyCode.cad,
                display_currency=CurrencyCode.cad,
                balance_cents=12_000,
                opening_balance_cents=12_000,
            )
        )
        session.commit()

        AccountService(session).ensure_defaults()

        credit = AccountService(session).get_by_name("CreditCard")
        assert credit.type == AccountType.liability
        assert credit.balance_cents == 12_000


def test_bootstrap_is_partitioned_per_user() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        AccountService(session, user_id=1).ensure_defaults()
        AccountService(session, user_id=2).bootstrap_if_empty()

        assert len(AccountService(session, user_id=2).list_all()) == 4
        assert len(AccountService(session, user_id=1).list_all()) == 4


def test_create_custom_liability_account() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        accounts = AccountService(session)
        accounts.ensure_defaults()
        bmo = accounts.create_liability(
            LiabilityAccountIn(
                name=" BMO ",
                currency=CurrencyCode.cad,
                display_currency=CurrencyCode.cny,
                balance_cents=45_000,
                due_date=12,
            )
        )

        assert bmo.name == "BMO"
        assert bmo.type == AccountType.liability
        assert bmo.display_currency == CurrencyCode.cny
        assert bmo.balance_cents == 45_000
        assert bmo.due_date == 12
        assert accounts.names()[-1] == "BMO"
        assert accounts.resolve("bmo").id == bmo.id


def test_duplicate_or_reserved_account_names_conflict() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        accounts = AccountService(session)
        accounts.ensure_defaults()
        accounts.create_liability(LiabilityAccountIn(name="BMO"))

        with pytest.raises(ConflictError):
            accounts.create_liability(LiabilityAccountIn(name="b-m-o"))
        with pytest.raises(ConflictError):
            accounts.create_liability(LiabilityAccountIn(name="credit_card"))
        with pytest.raises(ConflictError):
            accounts.create_liability(LiabilityAccountIn(name="信用卡"))


def test_reconcile_overwrites_balance_and_metadata() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        accounts = AccountService(session)
        accounts.ensure_defaults()

        credit = accounts.reconcile(
            "信用卡",
            ReconcileIn(
                balance_cents=88_000,
                due_date=20,
                billing_date=3,
                display_currency=CurrencyCode.cny,
            ),
        )

        assert credit.name == "CreditCard"
        assert credit.balance_cents == 88_000
        assert credit.due_date == 20
        assert credit.billing_date == 3
        assert credit.display_currency == CurrencyCode.cny
        assert credit.currency == CurrencyCode.cad


def test_reconcile_keeps_drift_check_consistent() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        accounts = AccountService(session)
        accounts.ensure_defaults()
        ledger = LedgerService(session)

        def spend(amount_cents: int) -> None:
            ledger.apply(
                ResolvedTransaction(
                    amount_cents=amount_cents,
                    type=TransactionType.expense,
                    category="food",
                    account="DebitCard",
                    target_account=None,
                    date=date(2026, 2, 25),
                )
            )

        spend(1_000)
        debit = accounts.reconcile("debit card", ReconcileIn(balance_cents=50_000))
        spend(2_500)

        debit = accounts.get_by_name("DebitCard")
        assert debit.balance_cents == 47_500
        assert ledger.drift(debit) == 0


def test_reconcile_rejects_due_date_on_asset_account() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        accounts = AccountService(session)
        accounts.ensure_defaults()

        with pytest.raises(ValidationError):
            accounts.reconcile("cash", ReconcileIn(balance_cents=100, due_date=5))
        assert accounts.get_by_name("Cash").due_date is None


def test_reconcile_unknown_account() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        AccountService(session).ensure_defaults()

        with pytest.raises(AccountNotFound):
            AccountService(session).reconcile("unknownbank", ReconcileIn(balance_cents=1))


@pytest.mark.parametrize("balance_cents", [10**20, -(10**20)])
def test_balance_inputs_are_bounded(balance_cents: int) -> None:
    with pytest.raises(PydanticValidationError):
        ReconcileIn(balance_cents=balance_cents)
    with pytest.raises(PydanticValidationError):
        LiabilityAccountIn(name="BMO", balance_cents=balance_cents)
