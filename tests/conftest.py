"""Pytest configuration and shared fixtures."""

import pytest
import sys
from pathlib import Path

# Add src to path so we can import lovassist
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from lovassist.config import Settings  # noqa: E402
from lovassist.types import SearchHit, StoreSearchResult  # noqa: E402


def make_hit(number: int, title: str | None = None, **kwargs) -> SearchHit:
    """Store hit with a unique (filename, member) key derived from ``number``."""
    return SearchHit(
        filename=kwargs.pop("filename", "gjeldende-lover.tar.bz2"),
        member=kwargs.pop("member", f"nl/nl-{number}.xml"),
        title=title if title is not None else f"Dokument {number}",
        snippet=kwargs.pop("snippet", f"utdrag {number}"),
        **kwargs,
    )


class FakeStore:
    """In-memory stand-in for LovdataStore.search that honours limit/offset and law_type."""

    def __init__(self, hits_by_type=None, default_hits=None, error=None):
        self.hits_by_type = hits_by_type or {}
        self.default_hits = list(default_hits or [])
        self.error = error
        self.calls = []
        self.documents = {}

    async def search(self, query, *, limit, offset=0, filters=None, query_embedding=None, rrf_k=None):
        self.calls.append({"query": query, "limit": limit, "offset": offset, "filters": filters})
        if self.error is not None:
            raise self.error
        law_type = filters.law_type if filters else None
        hits = self.hits_by_type.get(law_type, []) if law_type else self.default_hits
        return StoreSearchResult(hits=list(hits[offset:offset + limit]), total=len(hits))

    async def fetch_document(self, filename, member):
        if member.endswith(".html"):
            xml_member = member[: -len(".html")] + ".xml"
            if (filename, xml_member) in self.documents:
                return self.documents[(filename, xml_member)], xml_member
        return self.documents.get((filename, member)), member


@pytest.fixture
def settings():
    """Real settings isolated from the developer's .env file."""
    return Settings(
        _env_file=None,
        openrouter_api_key=None,
        serper_api_key=None,
        cohere_api_key=None,
        qdrant_api_key=None,
        api_bearer_token=None,
        embeddings_enabled=False,
        reranker_enabled=False,
        default_year_filter_enabled=False,
        public_base_url="",
    )


@pytest.fixture
def fake_store():
    return FakeStore()
