import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from classifier import GeminiClassifier
from config import get_settings
from database import SessionLocal
from errors import LedgerError, ValidationError
from fx_rates import FxRateService
from models import Account, CurrencyCode, Transaction
from periods import resolve_period
from schemas import (
    AccountOut,
    ErrorOut,
    LiabilityAccountIn,
    MonthlyStatsOut,
    MonthlyTotalsOut,
    ReconcileIn,
    RecordIn,
    TransactionOut,
    ValuationOut,
)
from services import (
    AccountService,
    RecordService,
    StatsService,
    TransactionService,
    ValuationService,
    get_current_user_id,
    local_today,
)
from valuation import display_balance, to_cents

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Ledger")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_user_id(x_user_id: Optional[int] = Header(default=None)) -> int:
    if x_user_id is not None and x_user_id <= 0:
        raise ValidationError("X-User-Id must be a positive integer")
    return x_user_id or get_current_user_id()


def get_classifier() -> GeminiClassifier:
    return GeminiClassifier(get_settings())


def get_fx_service() -> FxRateService:
    return FxRateService(get_settings())


def _error_response(status_code: int, message: str, kind: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorOut(error=message, kind=kind).model_dump(),
    )


@app.exception_handler(LedgerError)
def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"request_failed: path={request.url.path} kind={exc.kind} error={exc}")
    return _error_response(exc.status_code, str(exc), exc.kind)


@app.exception_handler(RequestValidationError)
def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    )
    return _error_response(422, details or "Invalid request", ValidationError.kind)


def account_payload(account: Account, display_balance_cents: int) -> dict[str, object]:
    return AccountOut(
        id=account.id,
        name=account.name,
        type=account.type,
        currency=account.currency,
        display_currency=account.display_currency,
        balance_cents=account.balance_cents,
        display_balance_cents=display_balance_cents,
        due_date=account.due_date,
        billing_date=account.billing_date,
    ).model_dump(mode="json")


def transaction_payload(txn: Transaction) -> dict[str, object]:
    return TransactionOut(
        id=txn.id,
        date=txn.date,
        type=txn.type,
        amount_cents=txn.amount_cents,
        currency=txn.account.currency,
        category=txn.category,
        account=txn.account.name,
        target_account=txn.target_account.name if txn.target_account else None,
        note=txn.note,
        degraded=txn.degraded,
    ).model_dump(mode="json")


@app.post("/api/record", status_code=201)
def api_record(
    payload: RecordIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
    classifier: GeminiClassifier = Depends(get_classifier),
):
    result = RecordService(db, classifier, user_id).record(payload.text)
    return {
        "message": "recorded",
        "degraded": result.degraded,
        "data": transaction_payload(result.transaction),
    }


@app.get("/api/accounts")
def api_accounts(
    display_currency: Optional[CurrencyCode] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
    fx: FxRateService = Depends(get_fx_service),
):
    AccountService(db, user_id).bootstrap_if_empty()
    currency = display_currency or CurrencyCode(get_settings().default_currency)
    snapshot = ValuationService(db, user_id).snapshot(currency, fx)
    return {
        "accounts": [
            account_payload(account, display_cents)
            for account, display_cents in snapshot["accounts"]
        ],
        "valuation": ValuationOut(**snapshot["valuation"]).model_dump(mode="json"),
    }


@app.post("/api/init-accounts")
def api_init_accounts(
    db: Session = Depends(get_db), user_id: int = Depends(get_user_id)
):
    created, existing = AccountService(db, user_id).ensure_defaults()
    return {
        "message": "accounts initialized",
        "created": [account.name for account in created],
        "existing": [account.name for account in existing],
    }


def _display_balance_cents(account: Account, fx: FxRateService) -> int:
    if account.currency == account.display_currency:
        return account.balance_cents
    return to_cents(display_balance(account, fx.cad_to_cny().rate))


@app.post("/api/accounts", status_code=201)
def api_create_account(
    payload: LiabilityAccountIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
    fx: FxRateService = Depends(get_fx_service),
):
    account = AccountService(db, user_id).create_liability(payload)
    return account_payload(account, _display_balance_cents(account, fx))


@app.put("/api/accounts/{name}")
def api_reconcile_account(
    name: str,
    payload: ReconcileIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
    fx: FxRateService = Depends(get_fx_service),
):
    account = AccountService(db, user_id).reconcile(name, payload)
    return account_payload(account, _display_balance_cents(account, fx))


@app.get("/api/stats/monthly")
def api_monthly_stats(
    period: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        window = resolve_period(period, start, end, today=local_today())
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    totals = StatsService(db, user_id).monthly(window)
    return MonthlyStatsOut(
        period=window.slug,
        start=window.start,
        end=window.end,
        totals=[MonthlyTotalsOut(**row) for row in totals],
    ).model_dump(mode="json")


@app.get("/api/transactions")
def api_transactions(
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    offset = (page - 1) * limit
    items = TransactionService(db, user_id).recent(limit=limit + 1, offset=offset)
    has_more = len(items) > limit
    return {
        "items": [transaction_payload(txn) for txn in items[:limit]],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.get("/health")
def health():
    return {"status": "ok"}
