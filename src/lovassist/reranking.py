"""Reranking of search candidates.

Two backends score candidates: a hosted Cohere-compatible ``/rerank`` endpoint,
and a local sentence-transformers cross-encoder. Both sit behind
:class:`RerankService`, which handles the candidate cap, the empty-text filter
and mapping scores back to original positions.

Reranking is an enhancement. Callers run :meth:`RerankService.rerank` through
:func:`lovassist.enhancement.attempt` and keep the incoming order on failure.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Sequence

import httpx

from .config import Settings
from .errors import RerankError
from .retrieval_shared import normalize_sigmoid_scores
from .types import SearchHit

logger = logging.getLogger(__name__)

DEFAULT_MAX_CANDIDATES = 100


@dataclass
class RerankCandidate:
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    index: Optional[int] = None
    """Position in the caller's list; defaults to the position in the rerank call."""


@dataclass
class RerankResult:
    index: int
    """Position of the candidate in the list passed to ``rerank``."""

    relevance_score: float
    text: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


class RerankBackend(Protocol):
    """Scores texts against a query."""

    async def score(self, query: str, documents: list[str], top_n: int) -> list[tuple[int, float]]:
        """Return ``(document_index, score)`` pairs, best first, at most ``top_n``."""


def candidate_text(candidate: RerankCandidate) -> str:
    """Candidate text, falling back to title + snippet + content from metadata."""
    text = (candidate.text or "").strip()
    if text:
        return text
    parts = [
        str(candidate.metadata.get(name)).strip()
        for name in ("title", "snippet", "content")
        if candidate.metadata.get(name)
    ]
    return " ".join(part for part in parts if part)


def candidates_from_hits(hits: Sequence[SearchHit]) -> list[RerankCandidate]:
    """Build rerank candidates from store hits (title and snippet as text)."""
    return [
        RerankCandidate(
            text=f"{hit.title or ''} {hit.snippet or ''}".strip(),
            metadata={
                "title": hit.title,
                "snippet": hit.snippet,
                "content": hit.content,
                "filename": hit.filename,
                "member": hit.member,
            },
            index=position,
        )
        for position, hit in enumerate(hits)
    ]


class CohereRerankBackend:
    """Hosted rerank API speaking the Cohere ``/rerank`` contract."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.cohere.ai/v1",
        model: str = "rerank-multilingual-v3.0",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ):
        if not api_key:
            raise RerankError("Rerank API key is not configured")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._client = http_client

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    async def score(self, query: str, documents: list[str], top_n: int) -> list[tuple[int, float]]:
        payload = {
            "model": self.model,
            "query": query,
            "documents": documents,
            "top_n": top_n,
            "return_documents": False,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            resp = await self._http().post(f"{self.base_url}/rerank", json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise RerankError(f"Rerank request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise RerankError(f"Rerank API error ({resp.status_code}): {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise RerankError("Rerank API returned invalid JSON") from exc

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise RerankError("Invalid response format from rerank API")

        scored: list[tuple[int, float]] = []
        for item in results:
            try:
                scored.append((int(item["index"]), float(item["relevance_score"])))
            except (KeyError, TypeError, ValueError) as exc:
                raise RerankError(f"Malformed rerank result: {item!r}") from exc
        return scored

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


class CrossEncoderRerankBackend:
    """Local cross-encoder scored in a worker thread."""

    def __init__(self, model: Any):
        self.model = model

    @classmethod
    def load(cls, model_name: str) -> "CrossEncoderRerankBackend":
        from sentence_transformers import CrossEncoder

        logger.info("Loading cross-encoder reranker: %s", model_name)
        return cls(CrossEncoder(model_name))

    async def score(self, query: str, documents: list[str], top_n: int) -> list[tuple[int, float]]:
        pairs = [[query, text] for text in documents]
        try:
            raw_scores = await asyncio.to_thread(self.model.predict, pairs)
        except Exception as exc:
            raise RerankError(f"Cross-encoder scoring failed: {exc}") from exc
        scores = normalize_sigmoid_scores(raw_scores)
        if len(scores) != len(documents):
            raise RerankError(f"Cross-encoder returned {len(scores)} scores for {len(documents)} documents")
        ranked = sorted(enumerate(scores), key=lambda item: item[1], reverse=True)
        return ranked[:top_n]


class RerankService:
    """Reorders candidates by relevance to a query."""

    def __init__(self, backend: RerankBackend, *, max_candidates: int = DEFAULT_MAX_CANDIDATES):
        self.backend = backend
        self.max_candidates = max_candidates

    @classmethod
    def from_settings(cls, settings: Settings) -> "RerankService":
        if settings.reranker_backend == "cross-encoder":
            backend: RerankBackend = CrossEncoderRerankBackend.load(settings.cross_encoder_model)
        else:
            backend = CohereRerankBackend(
                settings.cohere_api_key or "",
                base_url=settings.cohere_base_url,
                model=settings.reranker_model,
                timeout=settings.rerank_timeout,
            )
        return cls(backend, max_candidates=settings.rerank_max_candidates)

    async def rerank(
        self,
        query: str,
        candidates: Sequence[RerankCandidate],
        top_n: int,
    ) -> list[RerankResult]:
        """
        Score candidates and return the best ``top_n``, highest score first.

        Args:
            query: Search query.
            candidates: Candidates in current rank order. Only the first
                ``max_candidates`` are scored; candidates without usable text
                are skipped.
            top_n: Number of results wanted, clamped to the valid candidates.

        Returns:
            Results whose ``index`` is the candidate's position in ``candidates``.

        Raises:
            RerankError: On an empty query or any backend failure.
        """
        if not query or not query.strip():
            raise RerankError("Query cannot be empty")
        if not candidates:
            return []

        if len(candidates) > self.max_candidates:
            logger.warning(
                "Too many rerank candidates (%d), truncating to %d",
                len(candidates),
                self.max_candidates,
            )
            candidates = list(candidates)[: self.max_candidates]

        valid: list[tuple[int, str, RerankCandidate]] = []
        for position, candidate in enumerate(candidates):
            text = candidate_text(candidate)
            if text:
                valid.append((position, text, candidate))

        if not valid:
            logger.warning("No valid candidates for reranking")
            return []

        target = min(max(1, int(top_n)), len(valid))
        scored = await self.backend.score(query, [text for _, text, _ in valid], target)

        results: list[RerankResult] = []
        for valid_index, score in scored:
            if valid_index < 0 or valid_index >= len(valid):
                raise RerankError(f"Invalid result index: {valid_index}")
            position, text, candidate = valid[valid_index]
            results.append(
                RerankResult(
                    index=position,
                    relevance_score=score,
                    text=text,
                    metadata=candidate.metadata,
                )
            )
        results.sort(key=lambda result: result.relevance_score, reverse=True)
        logger.debug(
            "Reranked %d/%d candidates, top score: %s",
            len(results),
            len(candidates),
            f"{results[0].relevance_score:.3f}" if results else "n/a",
        )
        return results[:target]
