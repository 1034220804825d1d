"""Lovassist - Legal research assistant over Lovdata public data."""

__version__ = "0.1.0"

# Configuration
from .config import Settings, get_settings

# Types
from .types import (
    LAW_TYPES,
    AgentFunctionResult,
    AgentOutput,
    AssistantResponse,
    Citation,
    Evidence,
    LovdataSearchResult,
    Pagination,
    SearchFilters,
    SearchHit,
)

# Errors
from .errors import (
    AgentError,
    LovassistError,
    RerankError,
    StoreError,
    ToolArgumentsError,
    WebSearchError,
)

# Search
from .search import LovdataSearchService, search_lovdata_public_data, search_with_type_priority
from .store import LovdataStore

# Evidence / assistant
from .evidence import EvidenceBuilder, build_evidence
from .assistant import (
    AgentLoop,
    AssistantServices,
    build_fallback_answer,
    normalise_citations,
    run_assistant,
)

__all__ = [
    # config
    "Settings",
    "get_settings",
    # types
    "LAW_TYPES",
    "AgentFunctionResult",
    "AgentOutput",
    "AssistantResponse",
    "Citation",
    "Evidence",
    "LovdataSearchResult",
    "Pagination",
    "SearchFilters",
    "SearchHit",
    # errors
    "AgentError",
    "LovassistError",
    "RerankError",
    "StoreError",
    "ToolArgumentsError",
    "WebSearchError",
    # search
    "LovdataSearchService",
    "LovdataStore",
    "search_lovdata_public_data",
    "search_with_type_priority",
    # evidence / assistant
    "EvidenceBuilder",
    "build_evidence",
    "AgentLoop",
    "AssistantServices",
    "build_fallback_answer",
    "normalise_citations",
    "run_assistant",
]
