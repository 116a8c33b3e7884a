"""Sign rules for applying a transaction to asset and liability accounts.

Liability balances are amounts owed: spending on them increases the balance,
refunds and repayments decrease it. A transfer always drains its source; its
target grows when it is an asset and shrinks when it is a liability.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from errors import InvalidAmount, TransferMissingTarget
from models import AccountType, TransactionType

# per transaction, in cents (one billion major units)
MAX_AMOUNT_CENTS = 100_000_000_000


@dataclass(frozen=True)
class ResolvedTransaction:
    amount_cents: int
    type: TransactionType
    category: str
    account: str
    target_account: Optional[str]
    date: date
    note: Optional[str] = None
    degraded: bool = False


def amount_to_cents(value: object) -> int:
    """Convert a major-unit amount (35, 35.5, "35.50") to non-negative cents."""
    if value is None or isinstance(value, bool):
        raise InvalidAmount("Amount is required")
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidAmount("Amount must be a finite number")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise InvalidAmount(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise InvalidAmount("Amount must be a finite number")
    if amount < 0:
        raise InvalidAmount("Amount must not be negative")
    scaled = amount * 100
    if scaled > MAX_AMOUNT_CENTS:
        raise InvalidAmount(f"Amount exceeds the maximum of {MAX_AMOUNT_CENTS // 100}")
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def balance_deltas(
    txn_type: TransactionType,
    source_type: AccountType,
    target_type: Optional[AccountType],
    amount_cents: int,
) -> tuple[int, Optional[int]]:
    """Return (source delta, target delta) in cents; target delta is None
    unless the transaction is a transfer."""
    if amount_cents < 0:
        raise InvalidAmount("Amount must not be negative")

    if txn_type == TransactionType.expense:
        if source_type == AccountType.asset:
            return -amount_cents, None
        return amount_cents, None

    if txn_type == TransactionType.income:
        if source_type == AccountType.asset:
            return amount_cents, None
        return -amount_cents, None

    if target_type is None:
        raise TransferMissingTarget("Transfer requires a target account")
    if target_type == AccountType.asset:
        return -amount_cents, amount_cents
    return -amount_cents, -amount_cents


def transaction_effect(
    txn_type: TransactionType,
    amount_cents: int,
    account_type: AccountType,
    *,
    as_target: bool = False,
) -> int:
    """Balance effect of one recorded transaction on one side of it."""
    if as_target:
        return amount_cents if account_type == AccountType.asset else -amount_cents
    if txn_type == TransactionType.transfer:
        return -amount_cents
    source_delta, _ = balance_deltas(txn_type, account_type, None, amount_cents)
    return source_delta
