"""
Receipt name resolution.

Maps item names typed in (or read off a receipt) to catalog items:

- manual mapping or exact normalized match -> confidence 1.0, accepted
- otherwise the best Levenshtein similarity is accepted only when it is
  >= match_auto_accept_score and ahead of the runner-up by match_min_gap
- accepted matches still go to review when the price is off by more than
  match_price_tolerance, or when the quantity is not positive
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd

from menu_engine import CONFIG

_PRICE_SUFFIX = re.compile(r"\d+(\.\d+)?\s*(\$|usd|riel|khr|원|won)", re.IGNORECASE)


def normalize_name(name: str) -> str:
    """Lowercase, drop prices, brackets, whitespace and punctuation (Hangul kept)."""
    if name is None or (not isinstance(name, str) and pd.isna(name)):
        return ""
    text = _PRICE_SUFFIX.sub("", str(name).lower())
    text = re.sub(r"[()\[\]]", "", text)
    text = re.sub(r"\s+", "", text)
    return re.sub(r"[^\w가-힣]", "", text)


def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    dp = np.zeros((len(a) + 1, len(b) + 1), dtype=int)
    dp[:, 0] = np.arange(len(a) + 1)
    dp[0, :] = np.arange(len(b) + 1)
    for i in range(1, len(a) + 1):
        for j in range(1, len(b) + 1):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            dp[i, j] = min(dp[i - 1, j] + 1, dp[i, j - 1] + 1, dp[i - 1, j - 1] + cost)
    return int(dp[len(a), len(b)])


def similarity(a: str, b: str) -> float:
    """1 - distance / longer length, on normalized names."""
    a, b = normalize_name(a), normalize_name(b)
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


@dataclass
class MatchCandidate:
    item_id: str
    item_name: str
    score: float


@dataclass
class CorrectedItem:
    """
    One resolved receipt line.

    Attributes:
        matched_item_id: Catalog id, or None when nothing could be accepted
        original_name: Name as entered
        corrected_name: Catalog name when matched, else the original
        price: Price as entered (None if not given)
        qty: Quantity as entered
        confidence: 0-1 similarity of the chosen match (1.0 for manual/exact)
        needs_review: True when a person should confirm the line
        candidates: Up to three best catalog matches
    """
    matched_item_id: Optional[str]
    original_name: str
    corrected_name: str
    price: Optional[float]
    qty: float
    confidence: float
    needs_review: bool
    candidates: List[MatchCandidate] = field(default_factory=list)


def rank_candidates(name: str, catalog: pd.DataFrame, top_n: int = 3) -> List[MatchCandidate]:
    scored = [
        MatchCandidate(str(item_id), item_name, similarity(name, item_name))
        for item_id, item_name in zip(catalog["item_id"], catalog["item_name"])
    ]
    # Stable on catalog order for equal scores
    scored.sort(key=lambda c: -c.score)
    return scored[:top_n]


def _price_mismatch(price: Optional[float], catalog_price: float, tolerance: float) -> bool:
    if price is None or pd.isna(price) or catalog_price <= 0:
        return False
    return abs(price - catalog_price) / catalog_price > tolerance


def resolve_item_name(name: str,
                      price: Optional[float],
                      qty: float,
                      catalog: pd.DataFrame,
                      manual_mappings: dict = None,
                      config: dict = CONFIG) -> CorrectedItem:
    """
    Resolve one entered line against the catalog.

    `manual_mappings` maps an entered name (raw or normalized) to an item id
    and always wins.
    """
    manual_mappings = manual_mappings or {}
    normalized = normalize_name(name)
    by_id = {str(i): n for i, n in zip(catalog["item_id"], catalog["item_name"])}
    price_of = {str(i): p for i, p in zip(catalog["item_id"], catalog["sell_price"])}
    candidates = rank_candidates(name, catalog)
    bad_qty = qty is None or qty <= 0

    mapped_id = manual_mappings.get(name, manual_mappings.get(normalized))
    if mapped_id is not None and str(mapped_id) in by_id:
        mapped_id = str(mapped_id)
        return CorrectedItem(mapped_id, name, by_id[mapped_id], price, qty, 1.0, bad_qty, candidates)

    for item_id, item_name in by_id.items():
        if normalized and normalize_name(item_name) == normalized:
            return CorrectedItem(item_id, name, item_name, price, qty, 1.0, bad_qty, candidates)

    if not candidates:
        return CorrectedItem(None, name, name, price, qty, 0.0, True, candidates)

    best = candidates[0]
    gap = best.score - candidates[1].score if len(candidates) > 1 else best.score
    accepted = best.score >= config["match_auto_accept_score"] and gap >= config["match_min_gap"]
    if not accepted:
        return CorrectedItem(None, name, name, price, qty, best.score, True, candidates)

    needs_review = bad_qty or _price_mismatch(price, price_of[best.item_id], config["match_price_tolerance"])
    return CorrectedItem(best.item_id, name, best.item_name, price, qty, best.score, needs_review, candidates)
