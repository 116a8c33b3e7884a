"""Map raw account tokens onto a user's canonical account names.

Resolution order: identity, alias table, normalized equality, containment
(longest overlap wins, ties are ambiguous), then a single-edit typo match.
Everything here is pure so it can be exercised without a database.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

from rapidfuzz.distance import Levenshtein

WECHAT = "WeChat"
CASH = "Cash"
CREDIT_CARD = "CreditCard"
DEBIT_CARD = "DebitCard"

RESERVED_ACCOUNT_NAMES = (WECHAT, CASH, DEBIT_CARD, CREDIT_CARD)

_SEPARATORS = re.compile(r"[\s_\-]+")

_ALIASES: dict[str, tuple[str, ...]] = {
    WECHAT: ("wechat", "wechat pay", "weixin", "wx", "微信", "微信支付", "wallet", "钱包"),
    CASH: ("cash", "xianjin", "现金"),
    CREDIT_CARD: ("credit card", "credit_card", "creditcard", "cc", "信用卡"),
    DEBIT_CARD: (
        "debit card",
        "debit_card",
        "debitcard",
        "debit",
        "借记卡",
        "储蓄卡",
        "银行卡",
    ),
}

MIN_TYPO_LENGTH = 4


def normalize(raw: Optional[str]) -> str:
    if not raw:
        return ""
    return _SEPARATORS.sub("", raw.strip().lower())


def _build_alias_table() -> dict[str, str]:
    table: dict[str, str] = {}
    for canonical, aliases in _ALIASES.items():
        table[normalize(canonical)] = canonical
        for alias in aliases:
            table[normalize(alias)] = canonical
    return table


ALIAS_TABLE = _build_alias_table()


def canonical_alias(raw: Optional[str]) -> Optional[str]:
    """Reserved account name for an alias, or None."""
    return ALIAS_TABLE.get(normalize(raw))


def _containment_match(needle: str, candidates: list[tuple[str, str]]) -> Optional[str]:
    best_overlap = 0
    best: list[str] = []
    for name, normalized in candidates:
        if not normalized:
            continue
        if needle in normalized or normalized in needle:
            overlap = min(len(needle), len(normalized))
            if overlap > best_overlap:
                best_overlap = overlap
                best = [name]
            elif overlap == best_overlap:
                best.append(name)
    if len(best) == 1:
        return best[0]
    return None


def _typo_match(needle: str, candidates: list[tuple[str, str]]) -> Optional[str]:
    if len(needle) < MIN_TYPO_LENGTH:
        return None
    matches = [
        name
        for name, normalized in candidates
        if normalized and Levenshtein.distance(needle, normalized) <= 1
    ]
    if len(matches) == 1:
        return matches[0]
    return None


def resolve(raw_name: Optional[str], candidate_names: Iterable[str]) -> Optional[str]:
    """Return the canonical candidate for ``raw_name`` or None when not found.

    ``candidate_names`` is taken in directory order. Ambiguous containment or
    typo matches resolve to None rather than guessing.
    """
    candidates = list(candidate_names)
    needle = normalize(raw_name)
    if not needle:
        return None
    if raw_name in candidates:
        return raw_name

    alias = ALIAS_TABLE.get(needle)
    if alias is not None and alias in candidates:
        return alias

    normalized = [(name, normalize(name)) for name in candidates]
    for name, norm in normalized:
        if norm == needle:
            return name

    contained = _containment_match(needle, normalized)
    if contained is not None:
        return contained

    return _typo_match(needle, normalized)
