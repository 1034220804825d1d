"""Site-scoped web search through the Serper API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence
from urllib.parse import unquote, urlsplit

import httpx

from .config import Settings
from .errors import WebSearchError

logger = logging.getLogger(__name__)

# URL sections holding court decisions and other legal practice.
PRACTICE_URL_PATTERNS: tuple[str, ...] = (
    "/avgjørelser/",
    "/lovtidend/",
    "/husleietvistutvalget/",
    "/trygderetten/",
    "/sph2025/",
)

DOCUMENT_URL_PATTERNS: tuple[str, ...] = (
    "/dokument/",
    "/lov/",
    "/forskrift/",
    "/rundskriv/",
    "/vedtak/",
    "/lovsamling/",
    "/historikk/",
    "/avgjørelser/",
    "/lokaleForskrifter/",
    "/lovtidend/",
    "/eosavtalen/",
    "/traktater/",
    "/trygderetten/",
    "/tariffavtaler/",
    "/husleietvistutvalget/",
    "/sph2025/",
)


def is_document_link(url: Optional[str], site: str = "lovdata.no") -> bool:
    """
    True when ``url`` points at an individual document on ``site``.

    Search pages, register listings, URLs with query parameters and bare
    section roots such as ``https://lovdata.no/lov/`` are rejected.
    """
    if not url:
        return False
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    if parts.query or "?" in url:
        return False
    host = (parts.hostname or "").lower()
    site = normalize_site(site).lower()
    if host and host != site and not host.endswith("." + site):
        return False
    path = unquote(parts.path or "")
    if "/register/" in path:
        return False
    for pattern in DOCUMENT_URL_PATTERNS:
        position = path.find(pattern)
        if position == -1:
            continue
        remainder = path[position + len(pattern):].strip("/")
        if remainder:
            return True
    return False


def normalize_site(site: str) -> str:
    site = site.strip()
    for prefix in ("https://", "http://"):
        if site.startswith(prefix):
            site = site[len(prefix):]
    return site.rstrip("/")


def build_site_query(query: str, site: Optional[str], patterns: Sequence[str] = ()) -> str:
    """Prefix ``query`` with a ``site:`` scope and optional ``inurl:`` alternatives."""
    if not site:
        return query.strip()
    scope = f"site:{normalize_site(site)}"
    if patterns:
        scope += " (" + " OR ".join(f"inurl:{pattern}" for pattern in patterns) + ")"
    return f"{scope} {query.strip()}".strip()


@dataclass
class WebResult:
    title: Optional[str] = None
    link: Optional[str] = None
    snippet: Optional[str] = None
    date: Optional[str] = None
    site: str = "lovdata.no"
    """Site the result was searched on; document links must belong to it."""

    @property
    def is_document(self) -> bool:
        return is_document_link(self.link, self.site)

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "link": self.link, "snippet": self.snippet, "date": self.date}


@dataclass
class WebSearchResponse:
    query: str
    site: Optional[str] = None
    organic: list[WebResult] = field(default_factory=list)


class SerperClient:
    """Async client for the Serper Google search API."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = "https://google.serper.dev/search",
        site: str = "lovdata.no",
        gl: str = "no",
        hl: str = "no",
        timeout: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.site = site
        self.gl = gl
        self.hl = hl
        self.timeout = timeout
        self._client = http_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "SerperClient":
        return cls(
            settings.serper_api_key,
            base_url=settings.serper_base_url,
            site=settings.serper_site,
            gl=settings.serper_gl,
            hl=settings.serper_hl,
            timeout=settings.web_search_timeout,
        )

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    async def search(
        self,
        query: str,
        *,
        num: int = 10,
        restrict_to_practice: bool = True,
    ) -> WebSearchResponse:
        """
        Search ``self.site``.

        Args:
            query: Free-text query.
            num: Number of organic results requested.
            restrict_to_practice: Limit to court decisions and similar sections.

        Raises:
            WebSearchError: When no API key is configured or the request fails.
        """
        if not self.api_key:
            raise WebSearchError("SERPER_API_KEY is required for web search")
        if not query or not query.strip():
            raise WebSearchError("Search query is required")

        patterns = PRACTICE_URL_PATTERNS if restrict_to_practice else ()
        payload = {
            "q": build_site_query(query, self.site, patterns),
            "num": num,
            "gl": self.gl,
            "hl": self.hl,
        }
        headers = {"Content-Type": "application/json", "X-API-KEY": self.api_key}
        try:
            resp = await self._http().post(self.base_url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise WebSearchError(f"Serper search timed out after {self.timeout:.1f}s") from exc
        except httpx.HTTPError as exc:
            raise WebSearchError(f"Serper request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise WebSearchError(f"Serper search failed ({resp.status_code}): {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise WebSearchError("Serper returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise WebSearchError("Serper response not a JSON object")

        organic: list[WebResult] = []
        for item in data.get("organic") or []:
            if not isinstance(item, dict):
                continue
            organic.append(
                WebResult(
                    title=item.get("title"),
                    link=item.get("link"),
                    snippet=item.get("snippet"),
                    date=item.get("date"),
                    site=normalize_site(self.site),
                )
            )
        logger.debug("Serper returned %d organic results for %r", len(organic), query)
        return WebSearchResponse(query=query, site=self.site, organic=organic)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
