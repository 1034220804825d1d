"""Pure ranking stages for Lovdata search results.

Every stage maps ``list[SearchHit] -> list[SearchHit]`` without mutating its
input, so the pipeline boost -> rerank -> boost -> paginate can be tested one
stage at a time.
"""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Iterable, Sequence
from urllib.parse import urlencode

from .types import SearchHit

AMENDMENT_TERMS: tuple[str, ...] = (
    "endring",
    "endringer",
    "ikraftsetting",
    "ikraftsetjing",
    "ikrafttredelse",
    "delegering",
    "overføring",
    "opphevelse",
)

VIEWER_PATH = "/documents/xml"

# "Lov 4. juli 1991 nr. 47 om ekteskap"
_OFFICIAL_LAW_TITLE = re.compile(
    r"^lov\s+\d{1,2}\.?\s+\w+\s+\d{4}\s+nr\.?\s+\d+\s+om\s+(?P<subject>[^\s,.(]+)",
    re.IGNORECASE,
)
_SUBJECT_STEM_CHARS = 6


def is_amendment_title(title: str | None) -> bool:
    """True when the title reads like an amending, commencing or delegating instrument."""
    if not title:
        return False
    title_lower = title.lower()
    return any(term in title_lower for term in AMENDMENT_TERMS)


def is_exact_base_law(title: str | None, query: str) -> bool:
    """
    True when the title is the official title of a base law the query asks about.

    Official titles look like "Lov 4. juli 1991 nr. 47 om ekteskap". The law is
    considered asked about when the query contains the stem of its subject,
    e.g. "ekteskapsloven" for "om ekteskap".
    """
    if not title or is_amendment_title(title):
        return False
    match = _OFFICIAL_LAW_TITLE.match(title.strip())
    if not match:
        return False
    subject = match.group("subject").lower()
    stem = subject[:_SUBJECT_STEM_CHARS] if len(subject) > _SUBJECT_STEM_CHARS else subject
    return stem in (query or "").lower()


def boost_base_laws(hits: Sequence[SearchHit], query: str = "") -> list[SearchHit]:
    """
    Partition hits into exact base laws, other base documents and amendments.

    Order inside each partition is preserved, so this can be applied after any
    other ranking step without losing that step's relative order.
    """
    exact: list[SearchHit] = []
    base: list[SearchHit] = []
    amendments: list[SearchHit] = []
    for hit in hits:
        if is_amendment_title(hit.title):
            amendments.append(hit)
        elif is_exact_base_law(hit.title, query):
            exact.append(hit)
        else:
            base.append(hit)
    return exact + base + amendments


def apply_rerank_order(
    hits: Sequence[SearchHit],
    ranked: Iterable[tuple[int, float]],
) -> list[SearchHit]:
    """
    Reorder hits by rerank results.

    Args:
        hits: Hits in the order they were sent to the reranker.
        ranked: ``(index, relevance_score)`` pairs, best first. Indexes outside
            ``hits`` and repeated indexes are ignored.

    Returns:
        Reranked hits carrying ``rerank_score`` in their relevance signals.
        Hits the reranker did not return are dropped.
    """
    ordered: list[SearchHit] = []
    seen: set[int] = set()
    for index, score in ranked:
        if index in seen or index < 0 or index >= len(hits):
            continue
        seen.add(index)
        hit = hits[index]
        signals = dict(hit.relevance_signals)
        signals["rerank_score"] = float(score)
        ordered.append(replace(hit, relevance_signals=signals))
    return ordered


def slice_page(hits: Sequence[SearchHit], offset: int, page_size: int) -> list[SearchHit]:
    offset = max(0, offset)
    return list(hits[offset:offset + max(0, page_size)])


def build_viewer_url(filename: str | None, member: str | None, base_url: str = "") -> str | None:
    """
    Public viewer URL for a document.

    ``.xml`` members are rewritten to ``.html``; the viewer endpoint falls back
    to the ``.xml`` twin when serving.
    """
    if not filename or not member:
        return None
    html_member = re.sub(r"\.xml$", ".html", member, flags=re.IGNORECASE)
    query = urlencode({"filename": filename, "member": html_member})
    return f"{base_url.rstrip('/')}{VIEWER_PATH}?{query}"


def with_viewer_urls(hits: Sequence[SearchHit], base_url: str = "") -> list[SearchHit]:
    return [replace(hit, url=build_viewer_url(hit.filename, hit.member, base_url)) for hit in hits]


def distinct_filenames(hits: Iterable[SearchHit]) -> list[str]:
    seen: dict[str, None] = {}
    for hit in hits:
        if hit.filename:
            seen.setdefault(hit.filename, None)
    return list(seen)
