"""Tests for Lovdata search orchestration."""

import asyncio

import pytest
from unittest.mock import AsyncMock, Mock

from conftest import FakeStore, make_hit

from lovassist.errors import RerankError, StoreError
from lovassist.reranking import RerankResult
from lovassist.search import (
    FALLBACK_PROVIDER,
    LovdataSearchService,
    mentioned_law_type,
    min_results_threshold,
    search_lovdata_public_data,
    search_with_type_priority,
)
from lovassist.types import SearchFilters
from lovassist.web_search import WebResult, WebSearchResponse


def _members(result):
    return [hit.member for hit in result.hits]


def _failing_reranker(error=None):
    reranker = Mock()
    reranker.rerank = AsyncMock(side_effect=error or RerankError("503 from rerank API"))
    return reranker


@pytest.mark.asyncio
async def test_last_page_is_partial():
    store = FakeStore(default_hits=[make_hit(i) for i in range(1, 13)])

    result = await search_lovdata_public_data(store, "husleie", page=3, page_size=5)

    assert result.pagination.total_hits == 12
    assert result.pagination.total_pages == 3
    assert _members(result) == ["nl/nl-11.xml", "nl/nl-12.xml"]
    assert store.calls[0]["offset"] == 10


@pytest.mark.asyncio
async def test_empty_result_has_one_page():
    result = await search_lovdata_public_data(FakeStore(), "husleie", page=1, page_size=5)
    assert result.hits == []
    assert result.pagination.total_pages == 1
    assert result.searched_files == []


@pytest.mark.asyncio
@pytest.mark.parametrize("page", [1, 2, 3])
@pytest.mark.parametrize("error", [RerankError("bad index"), TimeoutError("slow"), ValueError("bad json")])
async def test_rerank_failure_matches_disabled_reranking(page, error):
    hits = [make_hit(i) for i in range(1, 13)]

    disabled = await search_lovdata_public_data(FakeStore(default_hits=hits), "husleie", page=page, page_size=5)
    failed = await search_lovdata_public_data(
        FakeStore(default_hits=hits),
        "husleie",
        page=page,
        page_size=5,
        enable_reranking=True,
        reranker=_failing_reranker(error),
    )

    assert _members(failed) == _members(disabled)
    assert failed.pagination == disabled.pagination
    assert failed.reranked is False


@pytest.mark.asyncio
async def test_rerank_reorders_but_amendments_stay_last():
    hits = [
        make_hit(1, "Lov om husleieavtaler"),
        make_hit(2, "Lov om endringer i husleieloven"),
        make_hit(3, "Forskrift om husleietvistutvalget"),
    ]
    reranker = Mock()
    reranker.rerank = AsyncMock(
        return_value=[
            RerankResult(index=2, relevance_score=0.99),
            RerankResult(index=1, relevance_score=0.80),
            RerankResult(index=0, relevance_score=0.10),
        ]
    )

    result = await search_lovdata_public_data(
        FakeStore(default_hits=hits), "husleie", page_size=5, enable_reranking=True, reranker=reranker
    )

    assert result.reranked is True
    assert _members(result) == ["nl/nl-3.xml", "nl/nl-1.xml", "nl/nl-2.xml"]
    assert result.hits[0].relevance_signals["rerank_score"] == 0.80
    call = reranker.rerank.await_args
    assert call.args[2] == 3


@pytest.mark.asyncio
async def test_rerank_fetches_candidate_pool_from_start():
    store = FakeStore(default_hits=[make_hit(i) for i in range(1, 80)])
    reranker = _failing_reranker()

    await search_lovdata_public_data(
        store, "husleie", page=2, page_size=5, enable_reranking=True, rerank_top_n=50, reranker=reranker
    )

    assert store.calls[0]["offset"] == 0
    assert store.calls[0]["limit"] == 50


@pytest.mark.asyncio
async def test_hits_carry_viewer_urls():
    store = FakeStore(default_hits=[make_hit(1)])
    result = await search_lovdata_public_data(store, "husleie", public_base_url="https://example.org")
    assert result.hits[0].url == (
        "https://example.org/documents/xml?filename=gjeldende-lover.tar.bz2&member=nl%2Fnl-1.html"
    )


@pytest.mark.asyncio
async def test_store_errors_propagate():
    store = FakeStore(error=StoreError("connection refused"))
    with pytest.raises(StoreError):
        await search_lovdata_public_data(store, "husleie")


def test_mentioned_law_type_and_threshold():
    assert mentioned_law_type("Forskrift til lov om personvern") == "Forskrift"
    assert mentioned_law_type("Hva sier loven?") == "Lov"
    assert mentioned_law_type("oppsigelse") is None
    assert min_results_threshold(5) == 3
    assert min_results_threshold(20) == 10


def _runner(store):
    async def run(filters):
        return await search_lovdata_public_data(store, "query", page=1, page_size=5, filters=filters)

    return run


@pytest.mark.asyncio
async def test_named_regulation_preferred_over_larger_law_result():
    store = FakeStore(
        hits_by_type={
            "Lov": [make_hit(i, law_type="Lov") for i in range(10)],
            "Forskrift": [make_hit(100, law_type="Forskrift")],
        }
    )

    result = await search_with_type_priority(
        _runner(store), "Forskrift til lov om personvern", SearchFilters(), page_size=5
    )

    assert result.filters.law_type == "Forskrift"
    assert _members(result) == ["nl/nl-100.xml"]


@pytest.mark.asyncio
async def test_law_wins_when_it_meets_threshold():
    store = FakeStore(
        hits_by_type={
            "Lov": [make_hit(i) for i in range(3)],
            "Forskrift": [make_hit(i + 10) for i in range(8)],
        }
    )
    result = await search_with_type_priority(_runner(store), "personvern", SearchFilters(), page_size=5)
    assert result.filters.law_type == "Lov"


@pytest.mark.asyncio
async def test_remaining_types_searched_in_priority_order():
    store = FakeStore(
        hits_by_type={
            "Lov": [make_hit(1)],
            "Vedtak": [make_hit(i + 10) for i in range(3)],
            "Instruks": [make_hit(i + 20) for i in range(9)],
        }
    )
    result = await search_with_type_priority(_runner(store), "personvern", SearchFilters(), page_size=5)
    assert result.filters.law_type == "Vedtak"
    searched = [call["filters"].law_type for call in store.calls]
    assert "Instruks" not in searched


@pytest.mark.asyncio
async def test_best_type_used_when_none_meets_threshold():
    store = FakeStore(
        hits_by_type={
            "Lov": [make_hit(1)],
            "Reglement": [make_hit(10), make_hit(11)],
            "Vedlegg": [make_hit(20), make_hit(21)],
        }
    )
    result = await search_with_type_priority(_runner(store), "personvern", SearchFilters(), page_size=5)
    # Ties go to the earlier type in priority order.
    assert result.filters.law_type == "Reglement"


@pytest.mark.asyncio
async def test_zero_hits_under_every_type_equals_unfiltered_search():
    unfiltered_hits = [make_hit(i) for i in range(4)]
    store = FakeStore(default_hits=unfiltered_hits)

    prioritised = await search_with_type_priority(_runner(store), "personvern", SearchFilters(), page_size=5)
    direct = await search_lovdata_public_data(FakeStore(default_hits=unfiltered_hits), "query", page_size=5)

    assert _members(prioritised) == _members(direct)
    assert prioritised.pagination == direct.pagination
    assert prioritised.filters.law_type is None


def _service(settings, store, web_search=None):
    return LovdataSearchService(store, settings, web_search=web_search)


@pytest.mark.asyncio
async def test_service_uses_explicit_law_type_directly(settings):
    store = FakeStore(hits_by_type={"Forskrift": [make_hit(1)]})
    result = await _service(settings, store).search("personvern", filters=SearchFilters(law_type="forskrift"))
    assert len(store.calls) == 1
    assert result.filters.law_type == "Forskrift"


def test_service_infers_year_but_not_law_type(settings):
    service = _service(settings, FakeStore())
    resolved = service.resolve_filters("forskrift fra Finansdepartementet 2020", None, infer=True)
    assert resolved.year == 2020
    assert resolved.ministry == "Finansdepartementet"
    assert resolved.law_type is None


@pytest.mark.asyncio
async def test_fallback_web_search_when_store_is_thin(settings):
    web_search = Mock()
    web_search.search = AsyncMock(
        return_value=WebSearchResponse(
            query="personvern",
            site="lovdata.no",
            organic=[WebResult(title="Personopplysningsloven", link="https://lovdata.no/lov/2018-06-15-38")],
        )
    )
    service = _service(settings, FakeStore(), web_search=web_search)

    result, fallback = await service.search_with_fallback("personvern")

    assert result.hits == []
    assert fallback.provider == FALLBACK_PROVIDER
    web_search.search.assert_awaited_once_with("personvern", num=10, restrict_to_practice=False)


@pytest.mark.asyncio
async def test_no_fallback_when_store_has_enough(settings):
    web_search = Mock()
    web_search.search = AsyncMock()
    store = FakeStore(default_hits=[make_hit(i) for i in range(10)])
    service = _service(settings, store, web_search=web_search)

    _result, fallback = await service.search_with_fallback("personvern")

    assert fallback is None
    web_search.search.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_fallback_is_ignored(settings):
    web_search = Mock()
    web_search.search = AsyncMock(side_effect=RuntimeError("serper down"))
    service = _service(settings, FakeStore(), web_search=web_search)

    _result, fallback = await service.search_with_fallback("personvern")

    assert fallback is None


@pytest.mark.asyncio
async def test_failed_type_search_cancels_sibling():
    cancelled = asyncio.Event()

    async def run(filters):
        if filters.law_type == "Lov":
            raise StoreError("connection refused")
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    with pytest.raises(StoreError):
        await search_with_type_priority(run, "personvern", SearchFilters(), page_size=5)

    await asyncio.wait_for(cancelled.wait(), timeout=1)
