"""Tests for the rerank service and backends."""

import json

import httpx
import pytest
from unittest.mock import Mock

from conftest import make_hit

from lovassist.errors import RerankError
from lovassist.reranking import (
    CohereRerankBackend,
    CrossEncoderRerankBackend,
    RerankCandidate,
    RerankService,
    candidate_text,
    candidates_from_hits,
)


class RecordingBackend:
    """Scores documents by position (later is better) and records what it was sent."""

    def __init__(self, result=None):
        self.documents = None
        self.top_n = None
        self.result = result

    async def score(self, query, documents, top_n):
        self.documents = documents
        self.top_n = top_n
        if self.result is not None:
            return self.result
        ranked = sorted(range(len(documents)), reverse=True)
        return [(index, index / len(documents)) for index in ranked[:top_n]]


@pytest.mark.asyncio
async def test_candidate_list_truncated_to_cap():
    backend = RecordingBackend()
    service = RerankService(backend, max_candidates=100)
    candidates = [RerankCandidate(text=f"dokument {i}") for i in range(150)]

    results = await service.rerank("husleie", candidates, top_n=10)

    assert len(backend.documents) == 100
    assert len(results) == 10
    assert results[0].index == 99


@pytest.mark.asyncio
async def test_indexes_map_back_past_empty_candidates():
    backend = RecordingBackend()
    service = RerankService(backend)
    candidates = [
        RerankCandidate(text="første"),
        RerankCandidate(text="   "),
        RerankCandidate(text="", metadata={"title": "Tittel", "snippet": "utdrag"}),
    ]

    results = await service.rerank("spørsmål", candidates, top_n=5)

    assert backend.documents == ["første", "Tittel utdrag"]
    assert backend.top_n == 2
    assert [result.index for result in results] == [2, 0]


@pytest.mark.asyncio
async def test_empty_query_raises():
    with pytest.raises(RerankError):
        await RerankService(RecordingBackend()).rerank(" ", [RerankCandidate(text="x")], 1)


@pytest.mark.asyncio
async def test_invalid_backend_index_raises():
    service = RerankService(RecordingBackend(result=[(7, 0.9)]))
    with pytest.raises(RerankError, match="Invalid result index"):
        await service.rerank("q", [RerankCandidate(text="x")], 1)


@pytest.mark.asyncio
async def test_no_candidates_returns_empty():
    assert await RerankService(RecordingBackend()).rerank("q", [], 5) == []


def test_candidate_text_fallback():
    assert candidate_text(RerankCandidate(text="", metadata={"content": "innhold"})) == "innhold"


def test_candidates_from_hits_keep_positions():
    candidates = candidates_from_hits([make_hit(1, "Lov om husleie", snippet="depositum")])
    assert candidates[0].text == "Lov om husleie depositum"
    assert candidates[0].index == 0
    assert candidates[0].metadata["member"] == "nl/nl-1.xml"


@pytest.mark.asyncio
async def test_cohere_backend_posts_rerank_request():
    sent = {}

    def handler(request: httpx.Request) -> httpx.Response:
        sent["url"] = str(request.url)
        sent["auth"] = request.headers["Authorization"]
        sent["body"] = json.loads(request.content)
        return httpx.Response(200, json={"results": [{"index": 1, "relevance_score": 0.8}, {"index": 0, "relevance_score": 0.1}]})

    backend = CohereRerankBackend(
        "secret",
        base_url="https://rerank.example/v1/",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    scored = await backend.score("q", ["a", "b"], 2)
    await backend.aclose()

    assert sent["url"] == "https://rerank.example/v1/rerank"
    assert sent["auth"] == "Bearer secret"
    assert sent["body"]["top_n"] == 2
    assert sent["body"]["return_documents"] is False
    assert scored == [(1, 0.8), (0, 0.1)]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, text="unavailable"),
        httpx.Response(200, json={"unexpected": True}),
        httpx.Response(200, json={"results": [{"index": "x"}]}),
    ],
)
async def test_cohere_backend_errors(response):
    backend = CohereRerankBackend(
        "secret",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: response)),
    )
    with pytest.raises(RerankError):
        await backend.score("q", ["a"], 1)


def test_cohere_backend_requires_key():
    with pytest.raises(RerankError):
        CohereRerankBackend("")


@pytest.mark.asyncio
async def test_cross_encoder_backend_normalises_and_sorts():
    model = Mock()
    model.predict.return_value = [-2.0, 3.0, 0.0]
    backend = CrossEncoderRerankBackend(model)

    scored = await backend.score("q", ["a", "b", "c"], 2)

    assert [index for index, _ in scored] == [1, 2]
    assert 0.0 < scored[1][1] < scored[0][1] < 1.0
