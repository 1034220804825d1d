"""Configuration management using Pydantic settings."""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenRouter API Configuration
    openrouter_api_key: str | None = Field(
        default=None,
        description="OpenRouter API key for the agent LLM (agent is disabled when unset)",
    )
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="OpenRouter API base URL",
    )

    # LLM Configuration (via OpenRouter)
    llm_model: str = Field(
        default="openai/gpt-4o-mini",
        description="OpenRouter model name used by the tool-calling agent",
    )
    llm_temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=2.0,
        description="LLM temperature (lower = more factual)",
    )

    # Qdrant Configuration
    qdrant_url: str = Field(
        default="http://localhost:6333",
        description="Qdrant server URL",
    )
    qdrant_api_key: str | None = Field(
        default=None,
        description="Qdrant API key (required for cloud instances)",
    )
    qdrant_collection_name: str = Field(
        default="lovdata_documents",
        description="Qdrant collection holding Lovdata document segments",
    )

    # Embedding Model Configuration
    embedding_model_name: str = Field(
        default="BAAI/bge-m3",
        description="Hugging Face model name for query embeddings",
    )
    embeddings_enabled: bool = Field(
        default=True,
        description="Embed queries for the dense leg of hybrid search",
    )
    rrf_k: int = Field(
        default=60,
        ge=1,
        le=1000,
        description="Reciprocal Rank Fusion constant",
    )

    # Reranker Configuration
    reranker_enabled: bool = Field(
        default=False,
        description="Enable reranking of the candidate window",
    )
    reranker_backend: Literal["cohere", "cross-encoder"] = Field(
        default="cohere",
        description="Rerank backend: hosted Cohere-compatible API or local cross-encoder",
    )
    reranker_model: str = Field(
        default="rerank-multilingual-v3.0",
        description="Model name sent to the hosted rerank API",
    )
    cross_encoder_model: str = Field(
        default="BAAI/bge-reranker-v2-m3",
        description="Cross-encoder model used when reranker_backend is cross-encoder",
    )
    cohere_api_key: str | None = Field(
        default=None,
        description="API key for the hosted rerank API",
    )
    cohere_base_url: str = Field(
        default="https://api.cohere.ai/v1",
        description="Base URL for the hosted rerank API",
    )
    rerank_top_n: int = Field(
        default=50,
        ge=1,
        le=100,
        description="Candidate pool size fetched from the store when reranking",
    )
    rerank_max_candidates: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Hard cap on candidates sent to the reranker",
    )

    # Web search (Serper)
    serper_api_key: str | None = Field(
        default=None,
        description="Serper API key (legal practice search disabled when unset)",
    )
    serper_base_url: str = Field(
        default="https://google.serper.dev/search",
        description="Serper search endpoint",
    )
    serper_site: str = Field(
        default="lovdata.no",
        description="Site that web searches are scoped to",
    )
    serper_gl: str = Field(default="no", description="Serper country code")
    serper_hl: str = Field(default="no", description="Serper interface language")

    # Timeouts (seconds)
    store_timeout: float = Field(default=5.0, gt=0, description="Timeout for document store queries")
    embedding_timeout: float = Field(default=5.0, gt=0, description="Timeout for query embedding")
    rerank_timeout: float = Field(default=5.0, gt=0, description="Timeout for the rerank call")
    web_search_timeout: float = Field(default=5.0, gt=0, description="Timeout for web search calls")
    hydration_timeout: float = Field(default=5.0, gt=0, description="Timeout for evidence content hydration")
    llm_timeout_base: float = Field(default=20.0, gt=0, description="Base timeout for one LLM call")
    llm_timeout_max: float = Field(default=45.0, gt=0, description="Upper bound for one LLM call")
    request_timeout: float = Field(
        default=55.0,
        gt=0,
        description="Wall-clock budget for one assistant request",
    )
    response_reserve: float = Field(
        default=3.0,
        ge=0,
        description="Part of request_timeout kept back to always send a response",
    )

    # Agent Configuration
    agent_max_iterations: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Maximum tool-calling iterations per request",
    )
    agent_max_evidence: int = Field(
        default=6,
        ge=1,
        le=50,
        description="Evidence items rendered into each LLM prompt",
    )
    agent_max_content_chars: int = Field(
        default=3000,
        ge=200,
        description="Maximum content characters per evidence item in the prompt",
    )
    agent_max_prompt_chars: int = Field(
        default=50000,
        ge=2000,
        description="Maximum total prompt length",
    )
    max_question_length: int = Field(
        default=5000,
        ge=3,
        description="Longest accepted question",
    )

    # API Configuration
    api_bearer_token: str | None = Field(
        default=None,
        description="When set, requests must carry 'Authorization: Bearer <token>'",
    )
    public_base_url: str = Field(
        default="",
        description="Prefix for public document viewer URLs",
    )
    default_year_filter_enabled: bool = Field(
        default=False,
        description="Restrict Lov/Forskrift searches without a year to recent documents",
    )
    default_year_window: int = Field(
        default=5,
        ge=0,
        le=100,
        description="Years back from today used by the default year filter",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("openrouter_api_key", "cohere_api_key", "serper_api_key", "qdrant_api_key", "api_bearer_token")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        """Strip secrets and treat blank values as unset."""
        if v is None:
            return None
        v = v.strip()
        return v or None

    @property
    def agent_enabled(self) -> bool:
        return bool(self.openrouter_api_key)

    @property
    def request_budget(self) -> float:
        """Seconds available for work before the response must be sent."""
        return max(1.0, self.request_timeout - self.response_reserve)


# Singleton instance
_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """
    Get application settings instance (singleton pattern).

    Returns:
        Settings instance (cached after first call)
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
