import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        default_currency: str,
        opening_balance_cents: int,
        fx_provider: str,
        fx_timeout_secs: float,
        fx_fallback_rate: Decimal,
        gemini_api_key: str,
        classifier_model: str,
        classifier_timeout_secs: float,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.default_currency = default_currency
        self.opening_balance_cents = opening_balance_cents
        self.fx_provider = fx_provider
        self.fx_timeout_secs = fx_timeout_secs
        self.fx_fallback_rate = fx_fallback_rate  # CNY per 1 CAD
        self.gemini_api_key = gemini_api_key
        self.classifier_model = classifier_model
        self.classifier_timeout_secs = classifier_timeout_secs


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "America/Toronto")
    default_currency = os.getenv("LEDGER_DEFAULT_CURRENCY", "CAD").upper()
    opening_balance_cents = int(os.getenv("LEDGER_OPENING_BALANCE_CENTS", "0"))
    fx_provider = os.getenv("LEDGER_FX_PROVIDER", "frankfurter")
    fx_timeout_secs = float(os.getenv("LEDGER_FX_TIMEOUT_SECS", "5"))
    fx_fallback_rate = Decimal(os.getenv("LEDGER_FX_FALLBACK_RATE", "5.2"))
    gemini_api_key = os.getenv("GEMINI_API_KEY", "")
    classifier_model = os.getenv("LEDGER_CLASSIFIER_MODEL", "gemini-1.5-flash")
    classifier_timeout_secs = float(os.getenv("LEDGER_CLASSIFIER_TIMEOUT_SECS", "10"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        default_currency=default_currency,
        opening_balance_cents=opening_balance_cents,
        fx_provider=fx_provider,
        fx_timeout_secs=fx_timeout_secs,
        fx_fallback_rate=fx_fallback_rate,
        gemini_api_key=gemini_api_key,
        classifier_model=classifier_model,
        classifier_timeout_secs=classifier_timeout_secs,
    )
