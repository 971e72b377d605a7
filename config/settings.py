"""
Centralized configuration for the Luvia product assistant.

All settings are loaded from environment variables via .env file.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings."""

    # Persona
    agent_name: str = Field(default="Luvia", env="AGENT_NAME")

    # AWS / Bedrock
    aws_region: str = Field(default="us-east-1", env="AWS_REGION")
    aws_access_key_id: Optional[str] = Field(default=None, env="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: Optional[str] = Field(default=None, env="AWS_SECRET_ACCESS_KEY")
    bedrock_embed_model_id: str = Field(
        default="amazon.titan-embed-text-v2:0", env="BEDROCK_EMBED_MODEL_ID"
    )
    bedrock_llm_model_id: str = Field(
        default="us.anthropic.claude-sonnet-4-20250514-v1:0", env="BEDROCK_LLM_MODEL_ID"
    )

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None, env="OPENAI_API_KEY")
    openai_embed_model: str = Field(default="text-embedding-3-small", env="OPENAI_EMBED_MODEL")
    openai_llm_model: str = Field(default="gpt-4o-mini", env="OPENAI_LLM_MODEL")
    oracle_model: Optional[str] = Field(default=None, env="ORACLE_MODEL")

    # LLM provider selection
    llm_provider: str = Field(default="openai", env="LLM_PROVIDER")  # bedrock | openai
    max_tokens: int = Field(default=1024, env="MAX_TOKENS")
    temperature: float = Field(default=0.3, env="TEMPERATURE")
    embedding_dimension: int = Field(default=1536, env="EMBEDDING_DIMENSION")

    # Hybrid search
    search_match_threshold: float = Field(default=0.15, env="SEARCH_MATCH_THRESHOLD")
    search_bm25_weight: float = Field(default=0.3, env="SEARCH_BM25_WEIGHT")
    search_vector_weight: float = Field(default=0.7, env="SEARCH_VECTOR_WEIGHT")
    search_result_limit: int = Field(default=20, env="SEARCH_RESULT_LIMIT")

    # Reranking (Cohere)
    rerank_enabled: bool = Field(default=False, env="RERANK_ENABLED")
    cohere_api_key: Optional[str] = Field(default=None, env="COHERE_API_KEY")
    cohere_rerank_model: str = Field(default="rerank-multilingual-v3.0", env="COHERE_RERANK_MODEL")
    cohere_api_url: str = Field(default="https://api.cohere.com/v2/rerank", env="COHERE_API_URL")

    # Resolution
    history_lookback_days: int = Field(default=7, env="HISTORY_LOOKBACK_DAYS")

    # Security gate
    rate_limit_window_seconds: float = Field(default=10.0, env="RATE_LIMIT_WINDOW_SECONDS")
    rate_limit_max_requests: int = Field(default=5, env="RATE_LIMIT_MAX_REQUESTS")

    # Pending confirmations
    pending_ttl_hours: float = Field(default=24.0, env="PENDING_TTL_HOURS")

    # Timeouts
    external_call_timeout_seconds: float = Field(default=15.0, env="EXTERNAL_CALL_TIMEOUT_SECONDS")
    webhook_timeout_seconds: float = Field(default=30.0, env="WEBHOOK_TIMEOUT_SECONDS")

    # Escalation
    escalation_webhook_url: Optional[str] = Field(default=None, env="ESCALATION_WEBHOOK_URL")
    escalate_on_failure: bool = Field(default=True, env="ESCALATE_ON_FAILURE")
    handoff_pauses_bot: bool = Field(default=False, env="HANDOFF_PAUSES_BOT")

    # Message consolidation
    message_buffer_seconds: float = Field(default=3.0, env="MESSAGE_BUFFER_SECONDS")

    # Database
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")
    database_pool_size: int = Field(default=5, env="DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(default=10, env="DATABASE_MAX_OVERFLOW")

    # API
    api_host: str = Field(default="0.0.0.0", env="API_HOST")
    api_port: int = Field(default=8000, env="API_PORT")
    api_title: str = Field(default="Luvia Product Assistant API", env="API_TITLE")
    api_version: str = Field(default="1.0.0", env="API_VERSION")
    admin_api_key: Optional[str] = Field(default=None, env="ADMIN_API_KEY")
    cors_origins: str = Field(default="*", env="CORS_ORIGINS")

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    debug: bool = Field(default=False, env="DEBUG")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def is_bedrock(self) -> bool:
        return self.llm_provider.lower() == "bedrock"

    @property
    def is_openai(self) -> bool:
        return self.llm_provider.lower() == "openai"

    @property
    def embed_model_id(self) -> str:
        if self.is_openai:
            return self.openai_embed_model
        return self.bedrock_embed_model_id

    @property
    def llm_model_id(self) -> str:
        if self.is_openai:
            return self.openai_llm_model
        return self.bedrock_llm_model_id

    @property
    def oracle_model_id(self) -> str:
        return self.oracle_model or self.llm_model_id

    @property
    def reranker_available(self) -> bool:
        return self.rerank_enabled and bool(self.cohere_api_key)

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
