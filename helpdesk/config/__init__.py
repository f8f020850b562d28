"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-ai", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== LLM Provider ==========
    llm_provider: str = Field(
        default="openai",
        description="Chat/embedding provider: openai, zai or mock"
    )
    mock_llm: bool = Field(
        default=False,
        description="Use mock LLM responses for testing (no API calls)"
    )
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    openai_base_url: Optional[str] = Field(
        default=None,
        description="Override for OpenAI-compatible endpoints"
    )
    zai_api_key: Optional[str] = Field(default=None, description="Z.AI API key")
    llm_model: str = Field(default="gpt-4o", description="Chat model for every pipeline step")
    llm_temperature: float = Field(
        default=0.3,
        description="Default temperature for LLM",
        ge=0.0,
        le=1.0
    )
    llm_max_tokens: int = Field(
        default=2000,
        description="Default max tokens for LLM generation",
        ge=1,
        le=16000
    )

    # ========== Embeddings ==========
    embedding_model: str = Field(
        default="text-embedding-3-large",
        description="Embedding model"
    )
    embedding_dimension: int = Field(
        default=1536,
        description="Embedding vector dimension",
        ge=8
    )
    embedding_concurrency: int = Field(
        default=8,
        description="Max concurrent embedding requests per pipeline run",
        ge=1
    )

    # ========== Moderation ==========
    moderation_provider: str = Field(
        default="openai",
        description="openai uses the moderation endpoint, llm uses a chat prompt"
    )
    moderation_model: str = Field(
        default="text-moderation-latest",
        description="OpenAI moderation model"
    )

    # ========== Chunking & Retrieval ==========
    chunk_size: int = Field(
        default=5000,
        description="Character size for text chunks",
        ge=1
    )
    chunk_overlap: int = Field(
        default=1500,
        description="Overlap between consecutive chunks",
        ge=0
    )
    match_threshold: float = Field(
        default=0.7,
        description="Minimum cosine similarity for knowledge matches",
        ge=-1.0,
        le=1.0
    )
    resolution_match_count: int = Field(
        default=5,
        description="Knowledge matches used when resolving a ticket",
        ge=1,
        le=50
    )
    message_match_count: int = Field(
        default=3,
        description="Knowledge matches used when answering a customer message",
        ge=1,
        le=50
    )
    quality_check_enabled: bool = Field(
        default=False,
        description="Run the quality checker over AI replies before posting"
    )

    # ========== External Calls ==========
    external_call_timeout_seconds: float = Field(
        default=60.0,
        description="Timeout applied to every LLM, embedding and store call",
        gt=0,
        le=600
    )

    # ========== Document Parsing ==========
    unstructured_endpoint: Optional[str] = Field(
        default=None,
        description="Unstructured-style partition endpoint for attachments"
    )
    unstructured_strategy: str = Field(default="fast", description="Partition strategy")
    unstructured_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for document parsing calls",
        gt=0
    )
    attachments_dir: Path = Field(
        default=Path("attachments"),
        description="Directory holding uploaded attachment files"
    )

    # ========== Vector Store ==========
    vector_store: str = Field(
        default="memory",
        description="Knowledge base backend: milvus or memory"
    )
    zilliz_uri: str = Field(
        default="",
        description="Zilliz Cloud / Milvus URI"
    )
    zilliz_api_key: str = Field(
        default="",
        description="Zilliz Cloud API key"
    )
    milvus_collection_name: str = Field(
        default="knowledge_base_embeddings",
        description="Milvus collection name"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    # ========== Grafana OTLP Metrics ==========
    grafana_host: Optional[str] = Field(
        default=None,
        description="Grafana OTLP gateway URL (e.g., https://otlp-gateway-prod-ap-south-1.grafana.net)"
    )
    grafana_api_key: Optional[str] = Field(
        default=None,
        description="Grafana API key for OTLP authentication"
    )
    grafana_instance_id: Optional[str] = Field(
        default=None,
        description="Grafana instance ID for OTLP authentication"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "test", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        allowed = {"openai", "zai", "mock"}
        if v not in allowed:
            raise ValueError(f"llm_provider must be one of {allowed}")
        return v

    @field_validator("moderation_provider")
    @classmethod
    def validate_moderation_provider(cls, v: str) -> str:
        allowed = {"openai", "llm"}
        if v not in allowed:
            raise ValueError(f"moderation_provider must be one of {allowed}")
        return v

    @field_validator("vector_store")
    @classmethod
    def validate_vector_store(cls, v: str) -> str:
        allowed = {"milvus", "memory"}
        if v not in allowed:
            raise ValueError(f"vector_store must be one of {allowed}")
        return v

    @model_validator(mode="after")
    def validate_chunking(self) -> "Settings":
        """Chunk overlap must leave room for forward progress."""
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketStatus(str, Enum):
    """Ticket lifecycle statuses."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    WAITING_ON_CUSTOMER = "waiting_on_customer"
    RESOLVED = "resolved"
    CLOSED = "closed"


class TicketPriority(str, Enum):
    """Ticket priority levels."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class Complexity(str, Enum):
    """Estimated ticket complexity."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class NextAction(str, Enum):
    """Follow-up the support agent recommends after replying."""
    CLOSE = "close"
    WAIT_FOR_CUSTOMER = "wait_for_customer"
    ESCALATE = "escalate"
    FOLLOW_UP = "follow_up"


class FeedbackType(str, Enum):
    """Kind of feedback requested after resolution."""
    AUTOMATED = "automated"
    AGENT = "agent"
    NONE = "none"


class SourceType(str, Enum):
    """Knowledge base source kinds."""
    FAQ = "faq"
    ARTICLE = "article"
    FILE = "file"


class NotificationType(str, Enum):
    """Notification kinds emitted by the pipeline."""
    ORPHAN_TICKET = "orphan_ticket"
    HIGH_PRIORITY = "high_priority"
    SLA_BREACH = "sla_breach"
    TEAM_ASSIGNMENT = "team_assignment"


class EntityType(str):
    """Entity names referenced by notifications."""
    TICKET = "support_tickets"
    MESSAGE = "ticket_messages"


# ========== Lists for validation ==========

VALID_STATUSES = [s.value for s in TicketStatus]
VALID_PRIORITIES = [p.value for p in TicketPriority]
VALID_SOURCE_TYPES = [s.value for s in SourceType]
