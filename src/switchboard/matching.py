import logging
import math
from dataclasses import dataclass
from typing import Sequence

from switchboard.catalog import CatalogItem
from switchboard.synonyms import expand_with_synonyms

logger = logging.getLogger(__name__)

FULL_MATCH_WEIGHT = 1.0
PARTIAL_MATCH_WEIGHT = 0.5
PARTIAL_MIN_TOKEN_LENGTH = 3  # tokens must be longer than this to partial-match
NEGATIVE_KEYWORD_PENALTY = 5.0
MAX_CANDIDATES = 5

EMBEDDING_MIN_SIMILARITY = 60.0


@dataclass(frozen=True)
class ScoredItem:
    item: CatalogItem
    score: float  # 0-100
    raw_score: float = 0.0


def _raw_keyword_score(item: CatalogItem, expanded_tokens: list[str], lower_text: str) -> float:
    item_tokens = set(item.keywords) | set(item.name_tokens)
    score = 0.0
    for token in expanded_tokens:
        if token in item_tokens:
            score += FULL_MATCH_WEIGHT
        elif len(token) > PARTIAL_MIN_TOKEN_LENGTH and any(token in t for t in item_tokens):
            score += PARTIAL_MATCH_WEIGHT
    for negative in item.negative_keywords:
        if negative in lower_text:
            score -= NEGATIVE_KEYWORD_PENALTY
    return score


def normalize_keyword_score(item: CatalogItem, raw_score: float) -> float:
    """Scale a raw overlap score to 0-100 against the size of the item's keyword set."""
    denominator = len(item.keywords) or len(item.name_tokens) or 1
    return max(0.0, min(100.0, 100.0 * raw_score / denominator))


def keyword_match(text: str, items: Sequence[CatalogItem], limit: int = MAX_CANDIDATES) -> list[ScoredItem]:
    """Score active items by synonym-expanded token overlap.

    Returns the top ``limit`` items with a positive score, best first. Pure:
    the same text against the same snapshot always yields the same ranking.
    """
    expanded = expand_with_synonyms(text)
    if not expanded:
        return []
    lower_text = text.lower()

    scored = []
    for item in items:
        if not item.active:
            continue
        raw = _raw_keyword_score(item, expanded, lower_text)
        if raw <= 0:
            continue
        scored.append(ScoredItem(item=item, score=normalize_keyword_score(item, raw), raw_score=raw))

    scored.sort(key=lambda s: s.score, reverse=True)
    return scored[:limit]


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    if len(vec_a) != len(vec_b) or not vec_a:
        return 0.0
    dot = sum(a * b for a, b in zip(vec_a, vec_b))
    mag_a = math.sqrt(sum(a * a for a in vec_a))
    mag_b = math.sqrt(sum(b * b for b in vec_b))
    if mag_a == 0 or mag_b == 0:
        return 0.0
    return dot / (mag_a * mag_b)


def embedding_match(
    vector: Sequence[float],
    items: Sequence[CatalogItem],
    min_similarity: float = EMBEDDING_MIN_SIMILARITY,
    limit: int = MAX_CANDIDATES,
) -> list[ScoredItem]:
    """Rank items with a precomputed embedding by cosine similarity (0-100 scale)."""
    scored = []
    for item in items:
        if not item.active or not item.embedding:
            continue
        similarity = cosine_similarity(vector, item.embedding) * 100
        if similarity > min_similarity:
            scored.append(ScoredItem(item=item, score=similarity))
    scored.sort(key=lambda s: s.score, reverse=True)
    return scored[:limit]
