"""Shared retrieval utilities used by the store, reranker and orchestration."""

from __future__ import annotations

import math
import re
from typing import Any, Hashable, Iterable, Sequence

_TOKEN_PATTERN = re.compile(r"[^\W_]{3,}", re.UNICODE)

MAX_PAGE_SIZE = 50
SNIPPET_LENGTH = 150
SNIPPET_STEP = 100
SNIPPET_SCAN_CHARS = 10000


def sigmoid(x: float) -> float:
    """Numerically safe sigmoid used for reranker logit normalization."""
    try:
        return 1.0 / (1.0 + math.exp(-x))
    except OverflowError:
        return 0.0


def normalize_sigmoid_scores(raw_scores: Any) -> list[float]:
    """
    Normalize reranker logits to [0, 1].

    Accepts lists, tuples, numpy arrays, or scalar numeric values.
    """
    if raw_scores is None:
        return []
    if hasattr(raw_scores, "tolist"):
        raw_scores = raw_scores.tolist()
    if isinstance(raw_scores, (int, float)):
        raw_scores = [raw_scores]
    return [sigmoid(float(score)) for score in list(raw_scores)]


def extract_query_tokens(query: str) -> list[str]:
    """Lowercased unique word tokens of three or more letters/digits, in query order."""
    seen: set[str] = set()
    tokens: list[str] = []
    for token in _TOKEN_PATTERN.findall((query or "").lower()):
        if token not in seen:
            seen.add(token)
            tokens.append(token)
    return tokens


def reciprocal_rank_fusion(
    ranked_lists: Iterable[Sequence[Hashable]],
    k: int = 60,
) -> list[tuple[Hashable, float]]:
    """
    Fuse ranked key lists with Reciprocal Rank Fusion.

    Each list contributes ``1 / (k + rank)`` for every key it contains, with
    ranks starting at 1. Keys are returned by descending fused score; equal
    scores keep first-seen order across the input lists.

    Args:
        ranked_lists: Lists of keys, best first. Duplicate keys inside one list
            count only at their best rank.
        k: RRF constant.

    Returns:
        List of ``(key, score)`` pairs.
    """
    if k < 0:
        raise ValueError("k must be non-negative")
    scores: dict[Hashable, float] = {}
    for ranked in ranked_lists:
        seen_in_list: set[Hashable] = set()
        for rank, key in enumerate(ranked, start=1):
            if key in seen_in_list:
                continue
            seen_in_list.add(key)
            scores[key] = scores.get(key, 0.0) + 1.0 / (k + rank)
    # sorted() is stable, so insertion order breaks ties.
    return sorted(scores.items(), key=lambda item: item[1], reverse=True)


def generate_snippet(content: str, tokens: Sequence[str], max_length: int = SNIPPET_LENGTH) -> str:
    """Pick the window of ``content`` containing the most query tokens."""
    if not content:
        return ""
    lower_content = content.lower()
    best_start = 0
    best_score = 0
    for start in range(0, min(len(content), SNIPPET_SCAN_CHARS), SNIPPET_STEP):
        window = lower_content[start:start + max_length]
        score = sum(1 for token in tokens if token in window)
        if score > best_score:
            best_score = score
            best_start = start

    snippet = content[best_start:best_start + max_length]
    if best_start > 0:
        snippet = "…" + snippet
    if best_start + max_length < len(content):
        snippet = snippet + "…"
    return snippet.strip()


def normalize_page(page: Any) -> int:
    try:
        value = int(page)
    except (TypeError, ValueError):
        return 1
    return max(1, value)


def normalize_page_size(page_size: Any, default: int = 5) -> int:
    """Clamp a page size into ``[1, MAX_PAGE_SIZE]``."""
    try:
        value = int(page_size)
    except (TypeError, ValueError):
        return default
    return min(MAX_PAGE_SIZE, max(1, value))


def compute_total_pages(total: int, page_size: int) -> int:
    """Number of pages for ``total`` hits; a result with no hits still has one page."""
    if total <= 0:
        return 1
    return math.ceil(total / max(1, page_size))
