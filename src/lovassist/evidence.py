"""Conversion of search hits and web results into deduplicated evidence."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from .ranking import build_viewer_url
from .types import Evidence, SearchHit
from .web_search import WebResult, is_document_link

logger = logging.getLogger(__name__)

LOVDATA_SOURCE = "lovdata"
LOVDATA_PREFIX = "lovdata"
SERPER_PREFIX = "serper"
FALLBACK_PREFIX = "fallback"
UNTITLED = "Uten tittel"


def serper_source(site: str = "lovdata.no") -> str:
    return f"serper:{site}"


def natural_key(item: Evidence) -> tuple[str, ...]:
    """Deduplication key: (filename, member) for store evidence, the link otherwise."""
    if item.source == LOVDATA_SOURCE:
        return ("document", str(item.metadata.get("filename") or ""), str(item.metadata.get("member") or ""))
    return ("link", item.link or "")


class EvidenceBuilder:
    """
    Accumulates evidence for one request.

    Ids are assigned per prefix in arrival order (``lovdata-1``, ``serper-1``...).
    Items whose natural key is already present are dropped. Discarding a
    source restarts the numbering of the prefixes used for it.
    """

    def __init__(self, public_base_url: str = "", site: str = "lovdata.no"):
        self.public_base_url = public_base_url
        self.site = site
        self._items: list[Evidence] = []
        self._keys: set[tuple[str, ...]] = set()
        self._counters: dict[str, int] = {}
        self._prefixes_by_source: dict[str, set[str]] = {}

    @property
    def items(self) -> list[Evidence]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def _next_id(self, prefix: str, source: str) -> str:
        self._counters[prefix] = self._counters.get(prefix, 0) + 1
        self._prefixes_by_source.setdefault(source, set()).add(prefix)
        return f"{prefix}-{self._counters[prefix]}"

    def _append(self, key: tuple[str, ...], make: Callable[[], Evidence]) -> Optional[Evidence]:
        if key in self._keys:
            return None
        item = make()
        self._keys.add(key)
        self._items.append(item)
        return item

    def add_search_hits(self, hits: Iterable[SearchHit]) -> list[Evidence]:
        """Add store hits as ``lovdata-N`` evidence, skipping known (filename, member) pairs."""
        added: list[Evidence] = []
        for hit in hits:
            key = ("document", *hit.key)

            def make(hit: SearchHit = hit) -> Evidence:
                metadata = {"filename": hit.filename, "member": hit.member}
                if hit.law_type:
                    metadata["lawType"] = hit.law_type
                if hit.year is not None:
                    metadata["year"] = hit.year
                if hit.ministry:
                    metadata["ministry"] = hit.ministry
                if "rerank_score" in hit.relevance_signals:
                    metadata["rerankScore"] = hit.relevance_signals["rerank_score"]
                return Evidence(
                    id=self._next_id(LOVDATA_PREFIX, LOVDATA_SOURCE),
                    source=LOVDATA_SOURCE,
                    title=hit.title or hit.filename or UNTITLED,
                    snippet=hit.snippet or None,
                    date=hit.date,
                    link=hit.url or build_viewer_url(hit.filename, hit.member, self.public_base_url),
                    metadata=metadata,
                )

            item = self._append(key, make)
            if item is not None:
                added.append(item)
        return added

    def add_web_results(self, results: Iterable[WebResult], prefix: str = SERPER_PREFIX) -> list[Evidence]:
        """
        Add web results as ``<prefix>-N`` evidence.

        Results without a link, links that are not direct document links, and
        links already present are dropped.
        """
        source = serper_source(self.site)
        added: list[Evidence] = []
        for result in results:
            if not result.link:
                logger.debug("Dropping web result without link: %r", result.title)
                continue
            if not is_document_link(result.link, self.site):
                logger.debug("Dropping non-document link: %s", result.link)
                continue
            key = ("link", result.link)

            def make(result: WebResult = result) -> Evidence:
                return Evidence(
                    id=self._next_id(prefix, source),
                    source=source,
                    title=result.title or UNTITLED,
                    snippet=result.snippet,
                    date=result.date,
                    link=result.link,
                    metadata={"provider": prefix},
                )

            item = self._append(key, make)
            if item is not None:
                added.append(item)
        return added

    def discard_source(self, source: str) -> int:
        """Remove all evidence from ``source``; other sources are untouched."""
        kept = [item for item in self._items if item.source != source]
        removed = len(self._items) - len(kept)
        self._items = kept
        self._keys = {natural_key(item) for item in kept}
        for prefix in self._prefixes_by_source.pop(source, set()):
            if not any(item.id.startswith(prefix + "-") for item in kept):
                self._counters.pop(prefix, None)
        if removed:
            logger.debug("Discarded %d evidence items from %s", removed, source)
        return removed

    def replace_items(self, items: Iterable[Evidence]) -> None:
        """Swap in updated copies of the accumulated items (e.g. after hydration)."""
        self._items = list(items)
        self._keys = {natural_key(item) for item in self._items}


def build_evidence(
    raw_hits: Iterable[SearchHit],
    fallback_organic: Iterable[WebResult] | None = None,
    *,
    public_base_url: str = "",
    site: str = "lovdata.no",
) -> list[Evidence]:
    """Store hits as ``lovdata-N`` followed by fallback web results as ``fallback-N``, deduplicated."""
    builder = EvidenceBuilder(public_base_url=public_base_url, site=site)
    builder.add_search_hits(raw_hits)
    if fallback_organic:
        builder.add_web_results(fallback_organic, prefix=FALLBACK_PREFIX)
    return builder.items
