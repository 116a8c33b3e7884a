"""Read-only portfolio valuation across CAD and CNY accounts.

Balances stay in each account's native currency; conversion happens here,
for display only, and nothing is ever written back.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from models import Account, AccountType, CurrencyCode


def convert(
    amount: int | Decimal,
    from_currency: CurrencyCode,
    to_currency: CurrencyCode,
    rate: Decimal,
) -> Decimal:
    """Convert ``amount`` using ``rate`` = CNY per 1 CAD."""
    value = Decimal(amount)
    if from_currency == to_currency:
        return value
    if rate <= 0:
        raise ValueError("FX rate must be positive")
    if from_currency == CurrencyCode.cad and to_currency == CurrencyCode.cny:
        return value * rate
    if from_currency == CurrencyCode.cny and to_currency == CurrencyCode.cad:
        return value / rate
    raise ValueError(f"Unsupported currency pair: {from_currency}/{to_currency}")


def signed_value(
    account: Account, display_currency: CurrencyCode, rate: Decimal
) -> Decimal:
    value = convert(account.balance_cents, account.currency, display_currency, rate)
    if account.type == AccountType.liability:
        return -value
    return value


def total(
    accounts: Iterable[Account], display_currency: CurrencyCode, rate: Decimal
) -> Decimal:
    """Net worth in ``display_currency`` minor units; liabilities count negative."""
    result = Decimal("0")
    for account in accounts:
        result += signed_value(account, display_currency, rate)
    return result


def display_balance(account: Account, rate: Decimal) -> Decimal:
    return convert(
        account.balance_cents, account.currency, account.display_currency, rate
    )


def to_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
