"""Hybrid document store over Qdrant.

Each point holds one Lovdata document (or one chunk of it) with payload fields
``filename``, ``member``, ``title``, ``date``, ``year``, ``law_type``,
``ministry``, ``content`` and optionally ``chunk_index``. Points carry a named
``dense`` vector produced by the same embedding model used for queries.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from qdrant_client import AsyncQdrantClient
from qdrant_client.http import models as qdrant_models

from .config import Settings
from .errors import StoreError
from .retrieval_shared import extract_query_tokens, generate_snippet, reciprocal_rank_fusion
from .types import SearchFilters, SearchHit, StoreSearchResult

logger = logging.getLogger(__name__)

DENSE_VECTOR_NAME = "dense"
LEXICAL_SCAN_PAGE = 256
CONTENT_EXCERPT_CHARS = 1000
MAX_CHUNKS_PER_DOCUMENT = 256


def build_filter_conditions(filters: SearchFilters | None) -> list[qdrant_models.Condition]:
    """Translate SearchFilters into Qdrant payload conditions (a conjunction)."""
    if filters is None or filters.is_empty():
        return []
    conditions: list[qdrant_models.Condition] = []
    if filters.year is not None:
        conditions.append(
            qdrant_models.FieldCondition(key="year", match=qdrant_models.MatchValue(value=filters.year))
        )
    elif filters.min_year is not None:
        conditions.append(
            qdrant_models.FieldCondition(key="year", range=qdrant_models.Range(gte=filters.min_year))
        )
    if filters.law_type:
        conditions.append(
            qdrant_models.FieldCondition(key="law_type", match=qdrant_models.MatchValue(value=filters.law_type))
        )
    if filters.ministry:
        conditions.append(
            qdrant_models.FieldCondition(key="ministry", match=qdrant_models.MatchValue(value=filters.ministry))
        )
    return conditions


def lexical_score(payload: dict[str, Any], tokens: list[str]) -> int:
    """Number of query tokens present in title or content."""
    haystack = f"{payload.get('title') or ''} {payload.get('content') or ''}".lower()
    return sum(1 for token in tokens if token in haystack)


def hit_from_payload(payload: dict[str, Any], tokens: list[str]) -> SearchHit:
    content = payload.get("content") or ""
    year = payload.get("year")
    return SearchHit(
        filename=str(payload.get("filename") or ""),
        member=str(payload.get("member") or ""),
        title=payload.get("title"),
        date=payload.get("date"),
        snippet=generate_snippet(content, tokens),
        content=content[:CONTENT_EXCERPT_CHARS] or None,
        law_type=payload.get("law_type"),
        year=int(year) if isinstance(year, (int, str)) and str(year).isdigit() else None,
        ministry=payload.get("ministry"),
    )


class LovdataStore:
    """Document Store Query Interface backed by an async Qdrant client."""

    def __init__(
        self,
        client: AsyncQdrantClient,
        collection_name: str,
        *,
        rrf_k: int = 60,
        timeout: float = 5.0,
    ):
        self.client = client
        self.collection_name = collection_name
        self.rrf_k = rrf_k
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "LovdataStore":
        client = AsyncQdrantClient(url=settings.qdrant_url, api_key=settings.qdrant_api_key)
        return cls(
            client,
            settings.qdrant_collection_name,
            rrf_k=settings.rrf_k,
            timeout=settings.store_timeout,
        )

    async def search(
        self,
        query: str,
        *,
        limit: int,
        offset: int = 0,
        filters: SearchFilters | None = None,
        query_embedding: Optional[list[float]] = None,
        rrf_k: Optional[int] = None,
    ) -> StoreSearchResult:
        """
        Run a hybrid search and return one page of hits plus the total count.

        Args:
            query: Free-text query.
            limit: Page size.
            offset: Number of fused results to skip.
            filters: Exact-match metadata constraints.
            query_embedding: Dense query vector; when given, lexical and dense
                rankings are fused with Reciprocal Rank Fusion.
            rrf_k: Override for the RRF constant.

        Raises:
            StoreError: On any Qdrant failure or timeout.
        """
        tokens = extract_query_tokens(query)
        if not tokens:
            logger.debug("No searchable tokens in query %r", query)
            return StoreSearchResult(hits=[], total=0)
        limit = max(0, int(limit))
        offset = max(0, int(offset))
        if limit == 0:
            return StoreSearchResult(hits=[], total=0)

        try:
            return await asyncio.wait_for(
                self._search(tokens, limit, offset, filters, query_embedding, rrf_k or self.rrf_k),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise StoreError(f"Store search timed out after {self.timeout:.1f}s") from exc
        except StoreError:
            raise
        except Exception as exc:
            raise StoreError(f"Store search failed: {exc}") from exc

    async def _search(
        self,
        tokens: list[str],
        limit: int,
        offset: int,
        filters: SearchFilters | None,
        query_embedding: Optional[list[float]],
        rrf_k: int,
    ) -> StoreSearchResult:
        conditions = build_filter_conditions(filters)
        window = offset + limit
        lexical_filter = qdrant_models.Filter(
            must=conditions or None,
            should=[
                qdrant_models.FieldCondition(key="content", match=qdrant_models.MatchText(text=token))
                for token in tokens
            ],
        )

        lexical_task = self._scan(lexical_filter)
        count_task = self.client.count(
            collection_name=self.collection_name,
            count_filter=lexical_filter,
            exact=True,
        )
        if query_embedding is not None:
            dense_task = self.client.query_points(
                collection_name=self.collection_name,
                query=query_embedding,
                using=DENSE_VECTOR_NAME,
                query_filter=qdrant_models.Filter(must=conditions) if conditions else None,
                limit=window,
                with_payload=True,
            )
            lexical_points, count_result, dense_response = await asyncio.gather(
                lexical_task, count_task, dense_task
            )
            dense_points = list(dense_response.points)
        else:
            lexical_points, count_result = await asyncio.gather(lexical_task, count_task)
            dense_points = []

        payloads: dict[tuple[str, str], dict[str, Any]] = {}
        lexical_scores: dict[tuple[str, str], int] = {}
        for point in lexical_points:
            payload = point.payload or {}
            key = (str(payload.get("filename") or ""), str(payload.get("member") or ""))
            score = lexical_score(payload, tokens)
            if key not in payloads or score > lexical_scores.get(key, 0):
                payloads[key] = payload
                lexical_scores[key] = score
        # Stable sort keeps point-id order among equal lexical scores.
        lexical_ranking = sorted(lexical_scores, key=lambda key: lexical_scores[key], reverse=True)[:window]

        dense_ranking: list[tuple[str, str]] = []
        dense_scores: dict[tuple[str, str], float] = {}
        for point in dense_points:
            payload = point.payload or {}
            key = (str(payload.get("filename") or ""), str(payload.get("member") or ""))
            if key in dense_scores:
                continue
            payloads.setdefault(key, payload)
            dense_scores[key] = float(point.score or 0.0)
            dense_ranking.append(key)

        if dense_ranking:
            fused = reciprocal_rank_fusion([lexical_ranking, dense_ranking], k=rrf_k)
        else:
            fused = [(key, float(lexical_scores[key])) for key in lexical_ranking]

        lexical_ranks = {key: rank for rank, key in enumerate(lexical_ranking, start=1)}
        dense_ranks = {key: rank for rank, key in enumerate(dense_ranking, start=1)}
        hits: list[SearchHit] = []
        for key, score in fused[offset:offset + limit]:
            base = hit_from_payload(payloads[key], tokens)
            signals: dict[str, float] = {"fused_score": score}
            if key in lexical_ranks:
                signals["lexical_rank"] = lexical_ranks[key]
                signals["lexical_matches"] = lexical_scores[key]
            if key in dense_ranks:
                signals["dense_rank"] = dense_ranks[key]
                signals["dense_score"] = dense_scores[key]
            hits.append(
                SearchHit(
                    filename=base.filename,
                    member=base.member,
                    title=base.title,
                    date=base.date,
                    snippet=base.snippet,
                    content=base.content,
                    law_type=base.law_type,
                    year=base.year,
                    ministry=base.ministry,
                    score=score,
                    relevance_signals=signals,
                )
            )

        total = max(int(count_result.count), len(fused))
        logger.debug(
            "Hybrid search: %d lexical, %d dense, %d fused, total=%d",
            len(lexical_ranking),
            len(dense_ranking),
            len(fused),
            total,
        )
        return StoreSearchResult(hits=hits, total=total)

    async def _scan(self, scroll_filter: qdrant_models.Filter) -> list[Any]:
        """Scroll through every point matching ``scroll_filter``."""
        points: list[Any] = []
        next_offset: Any = None
        while True:
            page, next_offset = await self.client.scroll(
                collection_name=self.collection_name,
                scroll_filter=scroll_filter,
                limit=LEXICAL_SCAN_PAGE,
                offset=next_offset,
                with_payload=True,
                with_vectors=False,
            )
            points.extend(page)
            if next_offset is None or not page:
                return points

    async def fetch_full_text(self, filename: str, member: str) -> Optional[str]:
        """
        Return the stored text of one document, or None when it is not indexed.

        Chunked documents are reassembled in ``chunk_index`` order.

        Raises:
            StoreError: On any Qdrant failure or timeout.
        """
        document_filter = qdrant_models.Filter(
            must=[
                qdrant_models.FieldCondition(key="filename", match=qdrant_models.MatchValue(value=filename)),
                qdrant_models.FieldCondition(key="member", match=qdrant_models.MatchValue(value=member)),
            ]
        )
        try:
            points, _next = await asyncio.wait_for(
                self.client.scroll(
                    collection_name=self.collection_name,
                    scroll_filter=document_filter,
                    limit=MAX_CHUNKS_PER_DOCUMENT,
                    with_payload=True,
                    with_vectors=False,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise StoreError(f"Fetching {filename}:{member} timed out") from exc
        except Exception as exc:
            raise StoreError(f"Fetching {filename}:{member} failed: {exc}") from exc

        if not points:
            return None
        payloads = sorted((point.payload or {} for point in points), key=lambda p: p.get("chunk_index") or 0)
        parts = [p.get("content") or "" for p in payloads]
        text = "\n".join(part for part in parts if part)
        return text or None

    async def fetch_document(self, filename: str, member: str) -> tuple[Optional[str], str]:
        """
        Fetch a document addressed by its viewer member name.

        ``.html`` members are served from their ``.xml`` twin when one is
        indexed, since archives hold the XML source.

        Returns:
            ``(text, resolved_member)``; text is None when neither exists.
        """
        if member.lower().endswith(".html"):
            xml_member = member[: -len(".html")] + ".xml"
            text = await self.fetch_full_text(filename, xml_member)
            if text is not None:
                return text, xml_member
        return await self.fetch_full_text(filename, member), member

    async def ensure_payload_indexes(self, collection_name: str | None = None) -> None:
        """
        Ensure payload indexes needed for filtering and full-text matching are present.

        This operation is safe to run repeatedly.
        """
        name = collection_name or self.collection_name
        fields: list[tuple[str, Any]] = [
            ("filename", qdrant_models.PayloadSchemaType.KEYWORD),
            ("member", qdrant_models.PayloadSchemaType.KEYWORD),
            ("law_type", qdrant_models.PayloadSchemaType.KEYWORD),
            ("ministry", qdrant_models.PayloadSchemaType.KEYWORD),
            ("year", qdrant_models.PayloadSchemaType.INTEGER),
            (
                "content",
                qdrant_models.TextIndexParams(
                    type=qdrant_models.TextIndexType.TEXT,
                    tokenizer=qdrant_models.TokenizerType.WORD,
                    lowercase=True,
                ),
            ),
        ]
        for field_name, schema in fields:
            try:
                await self.client.create_payload_index(
                    collection_name=name,
                    field_name=field_name,
                    field_schema=schema,
                    wait=True,
                )
                logger.info("Ensured payload index: %s", field_name)
            except Exception as exc:
                # Index may already exist with another schema; keep going.
                logger.warning("Failed ensuring payload index %s: %s", field_name, exc)

    async def close(self) -> None:
        await self.client.close()
