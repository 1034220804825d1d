"""Lovdata search orchestration.

:func:`search_lovdata_public_data` composes the store query, base-law boosting,
optional reranking and pagination. :func:`search_with_type_priority` wraps it
with the document-type priority policy used when the caller names no type.
:class:`LovdataSearchService` binds both to the process-wide clients.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional

from .config import Settings
from .enhancement import Enhancement, attempt
from .errors import RerankError
from .filters import apply_default_year, infer_filters, merge_filters, normalize_law_type
from .ranking import (
    apply_rerank_order,
    boost_base_laws,
    distinct_filenames,
    slice_page,
    with_viewer_urls,
)
from .reranking import RerankService, candidates_from_hits
from .retrieval_shared import compute_total_pages, normalize_page, normalize_page_size
from .types import LAW_TYPES, LovdataSearchResult, Pagination, SearchFilters, SearchHit
from .web_search import SerperClient, WebSearchResponse

logger = logging.getLogger(__name__)

DEFAULT_RERANK_TOP_N = 50
RERANK_BUFFER = 5
PRIORITY_CONCURRENT_TYPES: tuple[str, str] = ("Lov", "Forskrift")
FALLBACK_PROVIDER = "Serper"


async def search_lovdata_public_data(
    store: Any,
    query: str,
    *,
    page: int = 1,
    page_size: int = 5,
    filters: SearchFilters | None = None,
    enable_reranking: bool = False,
    rerank_top_n: int = DEFAULT_RERANK_TOP_N,
    query_embedding: Optional[list[float]] = None,
    reranker: RerankService | None = None,
    rerank_timeout: float = 5.0,
    rrf_k: Optional[int] = None,
    public_base_url: str = "",
) -> LovdataSearchResult:
    """
    Search the Lovdata store and return one page of ranked hits.

    Args:
        store: Object with an async ``search(query, limit=, offset=, filters=,
            query_embedding=, rrf_k=)`` method.
        query: Free-text query.
        page: 1-based page number.
        page_size: Hits per page, clamped to [1, 50].
        filters: Exact-match constraints.
        enable_reranking: Rerank the candidate window when a reranker is given.
        rerank_top_n: Candidate pool size when reranking.
        query_embedding: Dense vector for hybrid search, if available.
        reranker: Rerank service used when reranking is enabled.
        rerank_timeout: Seconds allowed for the rerank call.
        rrf_k: RRF constant override passed to the store.
        public_base_url: Prefix for viewer URLs.

    Returns:
        Page hits with viewer URLs, touched filenames and pagination computed
        from the store's total.

    Raises:
        StoreError: Store failures are not masked.
    """
    page = normalize_page(page)
    page_size = normalize_page_size(page_size)
    offset = (page - 1) * page_size
    reranking = bool(enable_reranking and reranker is not None)

    if reranking:
        candidate_limit = max(int(rerank_top_n), offset + page_size)
        store_offset = 0
    else:
        candidate_limit = page_size
        store_offset = offset

    raw = await store.search(
        query,
        limit=candidate_limit,
        offset=store_offset,
        filters=filters,
        query_embedding=query_embedding,
        rrf_k=rrf_k,
    )
    boosted = boost_base_laws(raw.hits, query)

    reranked = False
    if reranking and boosted:
        rerank_limit = min(offset + page_size + RERANK_BUFFER, len(boosted))
        outcome: Enhancement[list[SearchHit]] = await attempt(
            lambda: _rerank_hits(reranker, query, boosted, rerank_limit),
            timeout=rerank_timeout,
            label="Reranking",
        )
        reranked = outcome.ok
        ordered = outcome.map(lambda hits: boost_base_laws(hits, query)).or_else(boosted)
        page_hits = slice_page(ordered, offset, page_size)
    else:
        # The store already applied the offset.
        page_hits = slice_page(boosted, offset - store_offset, page_size)

    page_hits = with_viewer_urls(page_hits, public_base_url)
    pagination = Pagination(
        page=page,
        page_size=page_size,
        total_hits=raw.total,
        total_pages=compute_total_pages(raw.total, page_size),
    )
    logger.debug(
        "Lovdata search %r: %d candidates, %d on page %d, total=%d, reranked=%s",
        query,
        len(raw.hits),
        len(page_hits),
        page,
        raw.total,
        reranked,
    )
    return LovdataSearchResult(
        hits=page_hits,
        searched_files=distinct_filenames(page_hits),
        pagination=pagination,
        filters=filters or SearchFilters(),
        reranked=reranked,
    )


async def _rerank_hits(
    reranker: RerankService,
    query: str,
    hits: list[SearchHit],
    top_n: int,
) -> list[SearchHit]:
    results = await reranker.rerank(query, candidates_from_hits(hits), top_n)
    if not results:
        raise RerankError("Reranker returned no results")
    return apply_rerank_order(hits, ((result.index, result.relevance_score) for result in results))


def mentioned_law_type(query: str) -> Optional[str]:
    """Forskrift or Lov when named in the query; Forskrift is checked first."""
    query_lower = (query or "").lower()
    if "forskrift" in query_lower:
        return "Forskrift"
    if "lov" in query_lower:
        return "Lov"
    return None


def min_results_threshold(page_size: int) -> int:
    return max(3, page_size // 2)


SearchRunner = Callable[[SearchFilters], Awaitable[LovdataSearchResult]]


async def search_with_type_priority(
    run: SearchRunner,
    query: str,
    filters: SearchFilters,
    page_size: int,
) -> LovdataSearchResult:
    """
    Pick the most authoritative document type that yields results.

    Lov and Forskrift are searched concurrently. A type named in the query wins
    when it has hits. Otherwise the first of the two reaching the threshold
    wins, then the remaining types are tried in priority order. The first type
    reaching the threshold wins; failing that, the type with the most hits
    (earliest on ties). With no hits under any type the search is repeated
    without a type filter.

    Args:
        run: Executes one search with the given filters.
        query: Free-text query, used to detect a named document type.
        filters: Base filters; must not carry a law type.
        page_size: Page size, used for the threshold.
    """
    threshold = min_results_threshold(page_size)
    first, second = PRIORITY_CONCURRENT_TYPES
    tasks = [asyncio.ensure_future(run(replace(filters, law_type=law_type))) for law_type in (first, second)]
    try:
        first_result, second_result = await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        raise
    concurrent = {first: first_result, second: second_result}

    named = mentioned_law_type(query)
    if named and concurrent[named].pagination.total_hits > 0:
        logger.debug("Using explicitly named law type %s", named)
        return concurrent[named]

    for law_type in PRIORITY_CONCURRENT_TYPES:
        if concurrent[law_type].pagination.total_hits >= threshold:
            logger.debug("Law type %s met threshold %d", law_type, threshold)
            return concurrent[law_type]

    best = first_result
    if second_result.pagination.total_hits > best.pagination.total_hits:
        best = second_result

    for law_type in LAW_TYPES:
        if law_type in concurrent:
            continue
        result = await run(replace(filters, law_type=law_type))
        if result.pagination.total_hits >= threshold:
            logger.debug("Law type %s met threshold %d", law_type, threshold)
            return result
        if result.pagination.total_hits > best.pagination.total_hits:
            best = result

    if best.pagination.total_hits > 0:
        logger.debug("No law type met threshold, using best (%s)", best.filters.law_type)
        return best

    logger.debug("No hits under any law type, retrying without type filter")
    return await run(replace(filters, law_type=None))


@dataclass
class FallbackResults:
    """Web results used when the store returns too little."""

    provider: str
    response: WebSearchResponse


class LovdataSearchService:
    """Search orchestration bound to the store, embeddings, reranker and web search."""

    def __init__(
        self,
        store: Any,
        settings: Settings,
        *,
        embeddings: Any = None,
        reranker: RerankService | None = None,
        web_search: SerperClient | None = None,
    ):
        self.store = store
        self.settings = settings
        self.embeddings = embeddings
        self.reranker = reranker
        self.web_search = web_search

    async def embed_query(self, query: str) -> Optional[list[float]]:
        """Dense query vector, or None when embeddings are disabled or fail."""
        if self.embeddings is None:
            return None
        outcome = await attempt(
            lambda: self.embeddings.aembed_query(query),
            timeout=self.settings.embedding_timeout,
            label="Query embedding",
        )
        return outcome.or_else(None)

    def resolve_filters(
        self,
        query: str,
        filters: SearchFilters | None,
        *,
        infer: bool = False,
    ) -> SearchFilters:
        """Normalise caller filters, optionally fill gaps from the query, apply the recency default."""
        resolved = filters or SearchFilters()
        resolved = replace(resolved, law_type=normalize_law_type(resolved.law_type))
        if infer:
            # Law type is left to type prioritisation.
            inferred = replace(infer_filters(query), law_type=None)
            resolved = merge_filters(resolved, inferred)
        if self.settings.default_year_filter_enabled:
            resolved = apply_default_year(resolved, self.settings.default_year_window)
        return resolved

    async def search(
        self,
        query: str,
        *,
        page: int = 1,
        page_size: int = 5,
        filters: SearchFilters | None = None,
        infer: bool = False,
    ) -> LovdataSearchResult:
        """
        Run an orchestrated search, applying type prioritisation when no type is given.

        Raises:
            StoreError: When the store fails.
        """
        resolved = self.resolve_filters(query, filters, infer=infer)
        embedding = await self.embed_query(query) if self.settings.embeddings_enabled else None

        async def run(run_filters: SearchFilters) -> LovdataSearchResult:
            return await search_lovdata_public_data(
                self.store,
                query,
                page=page,
                page_size=page_size,
                filters=run_filters,
                enable_reranking=self.settings.reranker_enabled,
                rerank_top_n=self.settings.rerank_top_n,
                query_embedding=embedding,
                reranker=self.reranker,
                rerank_timeout=self.settings.rerank_timeout,
                rrf_k=self.settings.rrf_k,
                public_base_url=self.settings.public_base_url,
            )

        if resolved.law_type:
            return await run(resolved)
        return await search_with_type_priority(run, query, resolved, normalize_page_size(page_size))

    async def search_with_fallback(
        self,
        query: str,
        *,
        page: int = 1,
        page_size: int = 5,
        filters: SearchFilters | None = None,
        infer: bool = False,
    ) -> tuple[LovdataSearchResult, Optional[FallbackResults]]:
        """Search the store and add unrestricted web results when the first page is thin."""
        result = await self.search(query, page=page, page_size=page_size, filters=filters, infer=infer)
        if self.web_search is None:
            return result, None
        wanted = min(result.pagination.page_size, 5)
        if result.pagination.page > 1 or (result.hits and len(result.hits) >= wanted):
            return result, None

        outcome = await attempt(
            lambda: self.web_search.search(query, num=10, restrict_to_practice=False),
            timeout=self.settings.web_search_timeout,
            label="Fallback web search",
        )
        if not outcome.ok:
            return result, None
        return result, FallbackResults(provider=FALLBACK_PROVIDER, response=outcome.value)
