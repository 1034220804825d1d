"""Shared dataclasses used across store, search, evidence and assistant modules.

No imports from other lovassist modules, which keeps this safe as a foundation
that any module can import without risk of circular dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

LAW_TYPES: tuple[str, ...] = ("Lov", "Forskrift", "Vedtak", "Instruks", "Reglement", "Vedlegg")
"""Document types in priority order (most authoritative first)."""


@dataclass(frozen=True)
class SearchFilters:
    """Exact-match metadata constraints for a store search."""

    year: Optional[int] = None
    law_type: Optional[str] = None
    ministry: Optional[str] = None
    min_year: Optional[int] = None
    """Lower bound on year, used by the optional recency default."""

    def is_empty(self) -> bool:
        return self.year is None and self.law_type is None and self.ministry is None and self.min_year is None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.year is not None:
            data["year"] = self.year
        if self.law_type:
            data["lawType"] = self.law_type
        if self.ministry:
            data["ministry"] = self.ministry
        if self.min_year is not None:
            data["minYear"] = self.min_year
        return data


@dataclass(frozen=True)
class SearchHit:
    """One candidate document segment returned by the store."""

    filename: str
    """Archive the document belongs to. Together with member forms the natural key."""

    member: str
    """Path of the document inside the archive."""

    title: Optional[str] = None
    date: Optional[str] = None
    snippet: str = ""
    content: Optional[str] = None
    """Leading excerpt of the stored text, when the store returned one."""

    law_type: Optional[str] = None
    year: Optional[int] = None
    ministry: Optional[str] = None
    score: float = 0.0
    """Hybrid relevance score (RRF sum, or lexical score without embeddings)."""

    relevance_signals: dict[str, float] = field(default_factory=dict)
    """Per-signal ranks and scores (lexical_rank, dense_rank, rerank_score...)."""

    url: Optional[str] = None
    """Public viewer URL, filled in by search orchestration."""

    @property
    def key(self) -> tuple[str, str]:
        return (self.filename, self.member)


@dataclass
class StoreSearchResult:
    """Raw result of one store query."""

    hits: list[SearchHit]
    total: int


@dataclass(frozen=True)
class Pagination:
    """Page window plus totals computed before slicing."""

    page: int
    page_size: int
    total_hits: int
    total_pages: int

    def to_dict(self) -> dict[str, int]:
        return {
            "page": self.page,
            "pageSize": self.page_size,
            "totalHits": self.total_hits,
            "totalPages": self.total_pages,
        }


@dataclass
class LovdataSearchResult:
    """Outcome of one orchestrated Lovdata search."""

    hits: list[SearchHit]
    """Hits for the requested page, in display order."""

    searched_files: list[str]
    """Distinct archive filenames touched by the page, in first-seen order."""

    pagination: Pagination

    filters: SearchFilters = field(default_factory=SearchFilters)
    """Filters that actually produced the hits (after type prioritisation)."""

    reranked: bool = False
    """True when reranking succeeded and shaped the order."""


@dataclass
class Evidence:
    """The unit the agent and the citation system operate on."""

    id: str
    """Session-scoped handle such as ``lovdata-1`` or ``serper-2``."""

    source: str
    """``lovdata``, ``serper:<domain>`` or another provider tag."""

    title: Optional[str] = None
    snippet: Optional[str] = None
    date: Optional[str] = None
    link: Optional[str] = None
    content: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "title": self.title,
            "snippet": self.snippet,
            "date": self.date,
            "link": self.link,
            "content": self.content,
            "metadata": dict(self.metadata),
        }


@dataclass
class Citation:
    evidence_id: str
    label: str = ""
    quote: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"evidenceId": self.evidence_id, "label": self.label}
        if self.quote:
            data["quote"] = self.quote
        return data


@dataclass
class AgentFunctionResult:
    """Outcome of one tool invocation, fed back to the language model."""

    name: str
    """Tool name as exposed to the model."""

    arguments: dict[str, Any]
    """Validated arguments the tool ran with, or ``{"raw": ...}`` for a rejected call."""

    result: dict[str, Any]
    """Summarised structured result (counts, titles, ids)."""

    guidance: str
    """Evaluative hint describing hit count and refinement options."""

    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "name": self.name,
            "arguments": self.arguments,
            "result": self.result,
            "guidance": self.guidance,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class ToolCall:
    """A tool invocation requested by the model, before validation."""

    name: str
    arguments: Union[dict[str, Any], str]
    """Parsed arguments, or the raw text when the model sent malformed JSON."""

    id: Optional[str] = None


@dataclass
class AgentOutput:
    """One response from the language-model interface."""

    answer: Optional[str] = None
    citations: list[Citation] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    model: Optional[str] = None

    @property
    def is_final(self) -> bool:
        return not self.tool_calls


@dataclass
class AssistantResponse:
    answer: str
    evidence: list[Evidence]
    citations: list[Citation]
    pagination: Pagination
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "answer": self.answer,
            "evidence": [item.to_dict() for item in self.evidence],
            "citations": [citation.to_dict() for citation in self.citations],
            "pagination": self.pagination.to_dict(),
            "metadata": dict(self.metadata),
        }
