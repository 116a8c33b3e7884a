from datetime import date
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ledger import MAX_AMOUNT_CENTS
from models import AccountType, CurrencyCode, TransactionType


class ClassifiedGuess(BaseModel):
    """Untrusted classifier output; validated before it touches the ledger."""

    model_config = ConfigDict(extra="ignore")

    amount: Optional[Union[float, str]] = None
    type: Optional[str] = None
    category: Optional[str] = None
    account: Optional[str] = None
    target_account: Optional[str] = None
    date: Optional[str] = None
    note: Optional[str] = None


class RecordIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str = Field(..., min_length=1, max_length=500)


class LiabilityAccountIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=60)
    currency: Optional[CurrencyCode] = None
    display_currency: Optional[CurrencyCode] = None
    balance_cents: int = Field(default=0, ge=-MAX_AMOUNT_CENTS, le=MAX_AMOUNT_CENTS)
    due_date: Optional[int] = Field(default=None, ge=1, le=31)
    billing_date: Optional[int] = Field(default=None, ge=1, le=31)


class ReconcileIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    balance_cents: int = Field(..., ge=-MAX_AMOUNT_CENTS, le=MAX_AMOUNT_CENTS)
    due_date: Optional[int] = Field(default=None, ge=1, le=31)
    billing_date: Optional[int] = Field(default=None, ge=1, le=31)
    display_currency: Optional[CurrencyCode] = None


class AccountOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: int
    name: str
    type: AccountType
    currency: CurrencyCode
    display_currency: CurrencyCode
    balance_cents: int
    display_balance_cents: int
    due_date: Optional[int]
    billing_date: Optional[int]


class TransactionOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: int
    date: date
    type: TransactionType
    amount_cents: int
    currency: CurrencyCode
    category: str
    account: str
    target_account: Optional[str]
    note: Optional[str]
    degraded: bool


class ValuationOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    display_currency: CurrencyCode
    total_cents: int
    rate: str
    rate_source: str
    rate_date: date
    degraded: bool


class MonthlyTotalsOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    currency: CurrencyCode
    income_cents: int
    expense_cents: int


class MonthlyStatsOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    period: str
    start: date
    end: date
    totals: list[MonthlyTotalsOut]


class ErrorOut(BaseModel):
    error: str
    kind: str
    status: Literal["error"] = "error"
