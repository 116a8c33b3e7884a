from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from classifier import DEGRADED_CATEGORY, classify_or_fallback
from config import get_settings
from database import atomic
from errors import (
    AccountNotFound,
    ConflictError,
    InvalidAmount,
    LedgerError,
    TransferMissingTarget,
    UpstreamDegraded,
    ValidationError,
)
from fx_rates import FxRateService
from ledger import (
    MAX_AMOUNT_CENTS,
    ResolvedTransaction,
    amount_to_cents,
    balance_deltas,
    transaction_effect,
)
from models import Account, AccountType, CurrencyCode, Transaction, TransactionType
from name_resolver import (
    CASH,
    CREDIT_CARD,
    DEBIT_CARD,
    WECHAT,
    canonical_alias,
    normalize,
    resolve,
)
from periods import Period
from repayment import apply_repayment_override
from schemas import ClassifiedGuess, LiabilityAccountIn, ReconcileIn
from valuation import display_balance, to_cents, total as valuation_total

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNTS: tuple[tuple[str, AccountType], ...] = (
    (WECHAT, AccountType.asset),
    (CASH, AccountType.asset),
    (DEBIT_CARD, AccountType.asset),
    (CREDIT_CARD, AccountType.liability),
)

MAX_NOTE_LENGTH = 200
MAX_CATEGORY_LENGTH = 100


def get_current_user_id() -> int:
    return 1


def local_today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


class AccountService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.id)
        )
        return list(self.session.scalars(stmt).all())

    def names(self) -> list[str]:
        return [account.name for account in self.list_all()]

    def get_by_name(self, name: str) -> Optional[Account]:
        return self.session.scalar(
            select(Account).where(Account.user_id == self.user_id, Account.name == name)
        )

    def resolve(self, raw_name: Optional[str]) -> Account:
        canonical = resolve(raw_name, self.names())
        if canonical is None:
            raise AccountNotFound(f"Unknown account: {raw_name}")
        account = self.get_by_name(canonical)
        if account is None:
            raise AccountNotFound(f"Account not found: {canonical}")
        return account

    def ensure_defaults(self) -> tuple[list[Account], list[Account]]:
        """Create the reserved accounts that are missing. Returns (created, existing)."""
        settings = get_settings()
        currency = CurrencyCode(settings.default_currency)
        created: list[Account] = []
        existing: list[Account] = []
        for name, account_type in DEFAULT_ACCOUNTS:
            found = self.get_by_name(name)
            if found:
                if found.type != account_type:
                    logger.warning(
                        f"account_type_corrected: user_id={self.user_id} name={name} "
                        f"from={found.type.value} to={account_type.value}"
                    )
                    found.type = account_type
                existing.append(found)
                continue
            account = Account(
                user_id=self.user_id,
                name=name,
                type=account_type,
                currency=currency,
                display_currency=currency,
                balance_cents=settings.opening_balance_cents,
                opening_balance_cents=settings.opening_balance_cents,
            )
            self.session.add(account)
            created.append(account)
        self.session.commit()
        if created:
            logger.info(
                f"accounts_bootstrapped: user_id={self.user_id} "
                f"created={[a.name for a in created]}"
            )
        return created, existing

    def bootstrap_if_empty(self) -> None:
        has_any = self.session.scalar(
            select(func.count(Account.id)).where(Account.user_id == self.user_id)
        )
        if not has_any:
            self.ensure_defaults()

    def create_liability(self, data: LiabilityAccountIn) -> Account:
        name = data.name.strip()
        if not normalize(name):
            raise ValidationError("Account name cannot be empty")
        wanted = normalize(name)
        for existing in self.names():
            if normalize(existing) == wanted:
                raise ConflictError(f"Account already exists: {existing}")
        reserved = canonical_alias(name)
        if reserved is not None:
            raise ConflictError(f"Account name '{name}' is reserved for {reserved}")

        currency = data.currency or CurrencyCode(get_settings().default_currency)
        account = Account(
            user_id=self.user_id,
            name=name,
            type=AccountType.liability,
            currency=currency,
            display_currency=data.display_currency or currency,
            balance_cents=data.balance_cents,
            opening_balance_cents=data.balance_cents,
            due_date=data.due_date,
            billing_date=data.billing_date,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        logger.info(
            f"account_created: user_id={self.user_id} name={name} "
            f"currency={currency.value}"
        )
        return account

    def reconcile(self, raw_name: str, data: ReconcileIn) -> Account:
        """Overwrite balance and metadata directly, bypassing the sign rules.

        The opening balance absorbs the overwrite so that balance minus opening
        balance keeps matching the sum of recorded transactions.
        """
        account = self.resolve(raw_name)
        if account.type != AccountType.liability and (
            data.due_date is not None or data.billing_date is not None
        ):
            raise ValidationError("Due and billing dates only apply to liability accounts")

        adjustment = data.balance_cents - account.balance_cents
        account.balance_cents = data.balance_cents
        account.opening_balance_cents += adjustment
        if data.due_date is not None:
            account.due_date = data.due_date
        if data.billing_date is not None:
            account.billing_date = data.billing_date
        if data.display_currency is not None:
            account.display_currency = data.display_currency
        self.session.commit()
        self.session.refresh(account)
        logger.info(
            f"account_reconciled: user_id={self.user_id} name={account.name} "
            f"adjustment_cents={adjustment}"
        )
        return account


class LedgerService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _lock_account(self, name: str) -> Account:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id, Account.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        account = self.session.scalar(stmt)
        if account is None:
            raise AccountNotFound(f"Account not found: {name}")
        return account

    def apply(self, resolved: ResolvedTransaction) -> Transaction:
        if resolved.amount_cents < 0:
            raise InvalidAmount("Amount must not be negative")
        if resolved.amount_cents > MAX_AMOUNT_CENTS:
            raise InvalidAmount("Amount exceeds the per-transaction maximum")
        is_transfer = resolved.type == TransactionType.transfer
        if is_transfer and not resolved.target_account:
            raise TransferMissingTarget("Transfer requires a target account")

        with atomic(self.session) as handle:
            source = self._lock_account(resolved.account)
            target: Optional[Account] = None
            if is_transfer:
                target = self._lock_account(resolved.target_account)
                if target.id == source.id:
                    raise ValidationError("Transfer source and target must differ")
                if target.currency != source.currency:
                    raise ValidationError(
                        f"Cannot transfer between {source.currency.value} and "
                        f"{target.currency.value} accounts"
                    )

            source_delta, target_delta = balance_deltas(
                resolved.type,
                source.type,
                target.type if target else None,
                resolved.amount_cents,
            )
            source.balance_cents += source_delta
            staged: list[object] = [source]
            if target is not None and target_delta is not None:
                target.balance_cents += target_delta
                staged.append(target)

            txn = Transaction(
                user_id=self.user_id,
                date=resolved.date,
                type=resolved.type,
                amount_cents=resolved.amount_cents,
                category=resolved.category,
                account_id=source.id,
                target_account_id=target.id if target else None,
                note=resolved.note,
                degraded=resolved.degraded,
            )
            staged.append(txn)
            handle.stage(*staged)

        logger.info(
            f"ledger_apply: user_id={self.user_id} txn_id={txn.id} "
            f"type={resolved.type.value} amount_cents={resolved.amount_cents} "
            f"account={source.name} target={target.name if target else None}"
        )
        return txn

    def drift(self, account: Account) -> int:
        """Balance not explained by recorded transactions; 0 when consistent."""
        by_type = self.session.execute(
            select(Transaction.type, func.coalesce(func.sum(Transaction.amount_cents), 0))
            .where(Transaction.account_id == account.id)
            .group_by(Transaction.type)
        ).all()
        effects = sum(
            transaction_effect(txn_type, int(total), account.type)
            for txn_type, total in by_type
        )
        incoming = self.session.scalar(
            select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
                Transaction.target_account_id == account.id
            )
        )
        effects += transaction_effect(
            TransactionType.transfer, int(incoming or 0), account.type, as_target=True
        )
        return account.balance_cents - account.opening_balance_cents - effects


def resolve_guess(
    guess: ClassifiedGuess,
    candidate_names: list[str],
    today: date,
    *,
    degraded: bool = False,
) -> ResolvedTransaction:
    """Validate an untrusted guess and map its account names onto the directory."""
    amount_cents = amount_to_cents(guess.amount)

    raw_type = (guess.type or "").strip().lower()
    try:
        txn_type = TransactionType(raw_type)
    except ValueError as exc:
        raise ValidationError(f"Unknown transaction type: {guess.type!r}") from exc

    category = (guess.category or "").strip()[:MAX_CATEGORY_LENGTH] or DEGRADED_CATEGORY

    raw_source = (guess.account or "").strip() or DEBIT_CARD
    source = resolve(raw_source, candidate_names)
    if source is None:
        raise AccountNotFound(f"Unknown account: {raw_source}")

    target: Optional[str] = None
    if txn_type == TransactionType.transfer:
        raw_target = (guess.target_account or "").strip()
        if not raw_target:
            raise TransferMissingTarget("Transfer requires a target account")
        target = resolve(raw_target, candidate_names)
        if target is None:
            raise AccountNotFound(f"Unknown target account: {raw_target}")

    txn_date = today
    if guess.date:
        try:
            txn_date = date.fromisoformat(guess.date.strip()[:10])
        except ValueError:
            logger.info(f"guess_date_ignored: value={guess.date!r}")

    note = (guess.note or "").strip()[:MAX_NOTE_LENGTH] or None

    return ResolvedTransaction(
        amount_cents=amount_cents,
        type=txn_type,
        category=category,
        account=source,
        target_account=target,
        date=txn_date,
        note=note,
        degraded=degraded,
    )


@dataclass(frozen=True)
class RecordResult:
    transaction: Transaction
    degraded: bool


class RecordService:
    def __init__(
        self, session: Session, classifier, user_id: Optional[int] = None
    ) -> None:
        self.session = session
        self.classifier = classifier
        self.user_id = user_id or get_current_user_id()

    def record(self, text: str, *, today: Optional[date] = None) -> RecordResult:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Text is required")
        today = today or local_today()

        accounts = AccountService(self.session, self.user_id)
        accounts.bootstrap_if_empty()
        names = accounts.names()

        guess, degraded = classify_or_fallback(self.classifier, text, names, today)
        guess = apply_repayment_override(text, guess)
        try:
            resolved = resolve_guess(guess, names, today, degraded=degraded)
        except LedgerError as exc:
            if degraded:
                raise UpstreamDegraded(
                    "Classifier unavailable and the fallback transaction could not be resolved"
                ) from exc
            raise

        txn = LedgerService(self.session, self.user_id).apply(resolved)
        return RecordResult(transaction=txn, degraded=degraded)


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def recent(self, limit: int = 50, offset: int = 0) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.account), joinedload(Transaction.target_account)
            )
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt).all())


class StatsService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def monthly(self, period: Period) -> list[dict[str, object]]:
        """Income and expense totals per native currency; transfers excluded."""
        rows = self.session.execute(
            select(
                Account.currency,
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0),
            )
            .join(Account, Transaction.account_id == Account.id)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date >= period.start,
                Transaction.date <= period.end,
                Transaction.type.in_([TransactionType.income, TransactionType.expense]),
            )
            .group_by(Account.currency, Transaction.type)
        ).all()

        totals: dict[CurrencyCode, dict[str, int]] = {}
        for currency, txn_type, amount in rows:
            bucket = totals.setdefault(currency, {"income_cents": 0, "expense_cents": 0})
            if txn_type == TransactionType.income:
                bucket["income_cents"] += int(amount)
            else:
                bucket["expense_cents"] += int(amount)
        return [
            {"currency": currency, **bucket}
            for currency, bucket in sorted(totals.items(), key=lambda item: item[0].value)
        ]


class ValuationService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def snapshot(
        self, display_currency: CurrencyCode, fx: FxRateService
    ) -> dict[str, object]:
        """Per-account display balances plus the net total.

        The CAD/CNY rate is only requested when some balance is in another
        currency than the one it is shown in.
        """
        accounts = AccountService(self.session, self.user_id).list_all()
        needs_rate = any(
            account.currency != display_currency
            or account.currency != account.display_currency
            for account in accounts
        )
        if needs_rate:
            quote = fx.cad_to_cny()
        else:
            quote = fx.latest_quote(display_currency, display_currency)
        total = valuation_total(accounts, display_currency, quote.rate)
        return {
            "accounts": [
                (account, to_cents(display_balance(account, quote.rate)))
                for account in accounts
            ],
            "valuation": {
                "display_currency": display_currency,
                "total_cents": to_cents(total),
                "rate": str(quote.rate),
                "rate_source": quote.provider,
                "rate_date": quote.rate_date,
                "degraded": quote.degraded,
            },
        }
