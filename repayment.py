"""Deterministic credit-card repayment override.

The classifier regularly labels "repaid the credit card" as an expense, which
would count the repayment as new spending. These patterns are matched against
the raw text only, never against the classifier's fields.
"""

from __future__ import annotations

import logging
import re

from models import TransactionType
from name_resolver import CREDIT_CARD, DEBIT_CARD, canonical_alias
from schemas import ClassifiedGuess

logger = logging.getLogger(__name__)

# The card has to be the object of the verb. Gaps may not cross a clause
# boundary or an instrument marker ("with my credit card", "用信用卡").
_ZH_GAP = r"[^，。,.；;!?！？用拿刷以]"
_EN_INSTRUMENT = r"(?:with|using|via|on|by|through|from|for)\b"
_EN_GAP = rf"(?:(?!{_EN_INSTRUMENT})[\w'$]+\s+){{0,3}}?"

REPAYMENT_PATTERNS = (
    re.compile(rf"还(?!有|是|在|要|没|用|可以){_ZH_GAP}{{0,8}}?信用卡"),
    re.compile(rf"(?:还清|结清|还完){_ZH_GAP}{{0,8}}?信用卡"),
    re.compile(rf"信用卡{_ZH_GAP}{{0,4}}?(?:还款|还清|结清|还完)"),
    re.compile(
        rf"\b(?:repa(?:y|id|ying)|pa(?:y|id|ying)\s+(?:off|down|back)|settl(?:e|ed|ing))\s+"
        rf"{_EN_GAP}credit[\s_-]?card\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"\bpa(?:y|id|ying)\s+(?:the\s+|my\s+)?credit[\s_-]?card\s+(?:bill|balance|debt)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\bcredit[\s_-]?card\s+(?:re)?payment\b", re.IGNORECASE),
)


def is_repayment(text: str) -> bool:
    if not text:
        return False
    return any(pattern.search(text) for pattern in REPAYMENT_PATTERNS)


def _is_credit_card(raw_account: str | None) -> bool:
    return canonical_alias(raw_account) == CREDIT_CARD


def apply_repayment_override(text: str, guess: ClassifiedGuess) -> ClassifiedGuess:
    """Force transfer semantics onto ``guess`` when ``text`` describes a repayment.

    Returns ``guess`` untouched when no pattern matches, otherwise a copy with
    ``type=transfer`` and ``target_account=CreditCard``. A source that is
    missing or is the credit card itself is replaced by the debit card.
    """
    if not is_repayment(text):
        return guess

    update: dict[str, object] = {
        "type": TransactionType.transfer.value,
        "target_account": CREDIT_CARD,
    }
    if not (guess.account or "").strip() or _is_credit_card(guess.account):
        update["account"] = DEBIT_CARD
    logger.info(
        f"repayment_override: type={guess.type} account={guess.account} "
        f"target={guess.target_account} -> {update}"
    )
    return guess.model_copy(update=update)
