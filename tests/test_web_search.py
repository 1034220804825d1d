"""Tests for the Serper client and document link classification."""

import httpx
import pytest

from lovassist.errors import WebSearchError
from lovassist.web_search import SerperClient, build_site_query, is_document_link, normalize_site


@pytest.mark.parametrize(
    "url",
    [
        "https://lovdata.no/dokument/NL/lov/1999-03-26-17",
        "https://lovdata.no/lov/1999-03-26-17",
        "https://lovdata.no/avgjørelser/HR-2020-123-A",
        "https://www.lovdata.no/forskrift/2004-06-01-930",
        "https://lovdata.no/dokument/TRR/avgjorelse/trr-2019-1234",
    ],
)
def test_document_links_accepted(url):
    assert is_document_link(url)


@pytest.mark.parametrize(
    "url",
    [
        None,
        "",
        "https://lovdata.no/",
        "https://lovdata.no/lov/",
        "https://lovdata.no/sok?q=husleie",
        "https://lovdata.no/register/lover",
        "https://example.com/dokument/NL/lov/1999-03-26-17",
        "https://lovdata.no/info/om-lovdata",
    ],
)
def test_non_document_links_rejected(url):
    assert not is_document_link(url)


def test_build_site_query():
    assert build_site_query("husleie", "https://lovdata.no/") == "site:lovdata.no husleie"
    assert build_site_query("husleie", "lovdata.no", ("/lovtidend/",)) == "site:lovdata.no (inurl:/lovtidend/) husleie"
    assert build_site_query(" husleie ", None) == "husleie"
    assert normalize_site("http://lovdata.no/") == "lovdata.no"


@pytest.mark.asyncio
async def test_search_requires_api_key():
    client = SerperClient(None)
    with pytest.raises(WebSearchError):
        await client.search("husleie")


@pytest.mark.asyncio
async def test_search_parses_organic_results():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["headers"] = request.headers
        captured["body"] = request.content
        return httpx.Response(
            200,
            json={
                "organic": [
                    {"title": "HR-2020-123-A", "link": "https://lovdata.no/avgjørelser/HR-2020-123-A", "snippet": "..."},
                    "not a dict",
                ]
            },
        )

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = SerperClient("key", http_client=http_client)
    response = await client.search("husleie", num=20)
    await client.aclose()

    assert captured["headers"]["X-API-KEY"] == "key"
    assert b"inurl:/avgj" in captured["body"]
    assert b'"num":20' in captured["body"].replace(b" ", b"")
    assert len(response.organic) == 1
    assert response.organic[0].is_document


@pytest.mark.asyncio
async def test_search_raises_on_http_error():
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")))
    client = SerperClient("key", http_client=http_client)
    with pytest.raises(WebSearchError, match="500"):
        await client.search("husleie")
    await client.aclose()


@pytest.mark.asyncio
async def test_results_are_classified_against_configured_site():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "organic": [
                    {"title": "Speil", "link": "https://lovspeil.example/dokument/NL/lov/1999-03-26-17"},
                    {"title": "Lovdata", "link": "https://lovdata.no/dokument/NL/lov/1999-03-26-17"},
                ]
            },
        )

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = SerperClient("key", site="https://lovspeil.example/", http_client=http_client)
    response = await client.search("husleie")
    await client.aclose()

    assert [result.is_document for result in response.organic] == [True, False]
    assert "link" in response.organic[0].to_dict() and "site" not in response.organic[0].to_dict()
