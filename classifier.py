"""Free-text to transaction-guess classification via Gemini.

The model is a translator, not a source of truth: whatever it returns is an
untrusted ``ClassifiedGuess`` that still has to pass the repayment override,
validation and account resolution before the ledger is touched. When the
model is unavailable, slow or returns garbage, a fixed placeholder guess is
used instead and flagged as degraded.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import Optional, Sequence

import google.generativeai as genai

from config import Settings, get_settings
from name_resolver import DEBIT_CARD
from schemas import ClassifiedGuess

logger = logging.getLogger(__name__)

DEGRADED_CATEGORY = "Uncategorized"
DEGRADED_NOTE_PREFIX = "[degraded]"

SYSTEM_PROMPT = """# Role
You are a bookkeeping assistant. Turn a short, possibly vague, description of
a money movement (English or Chinese) into one transaction as JSON.

# Rules
1. Output JSON only. No markdown, no comments, no extra text.
2. Amounts are plain numbers in the account's currency, no thousands separators.
3. When no date is mentioned use today's date; resolve "yesterday"/"昨天" and
   "the day before yesterday"/"前天" relative to today.
4. "account" is the account money leaves (or, for income, arrives in).
   Pick it from the available accounts; default to "DebitCard" when none is named.
5. Paying back a credit card is a transfer from the paying account with
   "target_account" set to the credit card, never an expense.

# Output schema
{"amount": number, "type": "expense" | "income" | "transfer", "category": string,
 "account": string, "target_account": string | null, "date": "YYYY-MM-DD", "note": string}

# Examples (today = 2026-02-25)
"昨天吃火锅微信付了200" ->
{"amount": 200, "type": "expense", "category": "餐饮", "account": "WeChat", "target_account": null, "date": "2026-02-24", "note": "火锅"}
"deposited 5000 into my debit card" ->
{"amount": 5000, "type": "income", "category": "Deposit", "account": "DebitCard", "target_account": null, "date": "2026-02-25", "note": "deposit"}
"从借记卡转了1000去还信用卡" ->
{"amount": 1000, "type": "transfer", "category": "还款", "account": "DebitCard", "target_account": "CreditCard", "date": "2026-02-25", "note": "还信用卡"}
"""


class ClassifierError(RuntimeError):
    pass


def build_prompt(text: str, account_names: Sequence[str], today: date) -> str:
    accounts = ", ".join(account_names) or DEBIT_CARD
    return (
        f"Today: {today.isoformat()} ({today.strftime('%A')})\n"
        f"Available accounts: {accounts}\n"
        f'Input: "{text}"\n'
        "Respond with the JSON object only."
    )


def parse_guess(raw: str) -> ClassifiedGuess:
    cleaned = (raw or "").replace("```json", "").replace("```", "").strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}") + 1
    if start < 0 or end <= start:
        raise ClassifierError("Classifier response contained no JSON object")
    payload = json.loads(cleaned[start:end])
    if not isinstance(payload, dict):
        raise ClassifierError("Classifier response is not a JSON object")
    return ClassifiedGuess.model_validate(payload)


def fallback_guess(text: str, today: date) -> ClassifiedGuess:
    return ClassifiedGuess(
        amount=0,
        type="expense",
        category=DEGRADED_CATEGORY,
        account=DEBIT_CARD,
        target_account=None,
        date=today.isoformat(),
        note=f"{DEGRADED_NOTE_PREFIX} classifier unavailable: {text[:150]}",
    )


class GeminiClassifier:
    def __init__(self, settings: Optional[Settings] = None, model=None) -> None:
        self.settings = settings or get_settings()
        self._model = model

    def _get_model(self):
        if self._model is None:
            if not self.settings.gemini_api_key:
                raise ClassifierError("GEMINI_API_KEY is not configured")
            genai.configure(api_key=self.settings.gemini_api_key)
            self._model = genai.GenerativeModel(
                model_name=self.settings.classifier_model,
                system_instruction=SYSTEM_PROMPT,
                generation_config={
                    "temperature": 0,
                    "response_mime_type": "application/json",
                },
            )
        return self._model

    def classify(
        self, text: str, account_names: Sequence[str], today: date
    ) -> ClassifiedGuess:
        model = self._get_model()
        response = model.generate_content(
            build_prompt(text, account_names, today),
            request_options={"timeout": self.settings.classifier_timeout_secs},
        )
        return parse_guess(response.text)


def classify_or_fallback(
    classifier, text: str, account_names: Sequence[str], today: date
) -> tuple[ClassifiedGuess, bool]:
    """Return (guess, degraded)."""
    try:
        return classifier.classify(text, account_names, today), False
    except Exception as exc:
        logger.warning(
            f"classifier_degraded: reason={type(exc).__name__}: {exc}"
        )
        return fallback_guess(text, today), True
