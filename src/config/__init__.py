"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="message-grouping-service", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/tickets",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== LLM Provider ==========
    llm_provider: str = Field(
        default="zai",
        description="Text-understanding provider: zai, openai or mock"
    )
    zai_api_key: Optional[str] = Field(
        default=None,
        description="Z.AI API key for GLM models"
    )
    openai_api_key: Optional[str] = Field(
        default=None,
        description="API key for an OpenAI-compatible endpoint"
    )
    openai_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for an OpenAI-compatible endpoint (Gemini, Groq, ...)"
    )
    mock_llm: bool = Field(
        default=False,
        description="Use mock LLM responses for testing (no API calls)"
    )

    # ========== LLM Settings ==========
    llm_model: str = Field(
        default="glm-4.7",
        description="Model used for classification and topic extraction"
    )
    llm_temperature: float = Field(
        default=0.2,
        description="Default temperature for LLM",
        ge=0.0,
        le=1.0
    )
    llm_max_tokens: int = Field(
        default=300,
        description="Default max tokens for LLM generation",
        ge=1,
        le=8000
    )
    llm_timeout_seconds: float = Field(
        default=10.0,
        description="Upper bound for a single LLM call before falling back",
        gt=0,
        le=120
    )

    # ========== Grouping ==========
    similarity_threshold: float = Field(
        default=0.25,
        description="Minimum group-key similarity for a fuzzy ticket match",
        ge=0.0,
        le=1.0
    )
    fuzzy_candidate_limit: int = Field(
        default=50,
        description="Number of active tickets scored in the fuzzy tier",
        ge=1,
        le=500
    )
    summary_search_min_length: int = Field(
        default=20,
        description="Summaries must be longer than this to use full-text matching",
        ge=0
    )
    summary_search_terms: int = Field(
        default=5,
        description="Leading summary words used as full-text search terms",
        ge=1
    )
    summary_search_limit: int = Field(
        default=3,
        description="Maximum full-text hits fetched",
        ge=1
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
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        """Ensure the provider is one we have a client for."""
        v = v.lower()
        allowed = {"zai", "openai", "mock"}
        if v not in allowed:
            raise ValueError(f"llm_provider must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class MessageCategory(str):
    """Intent categories assigned to chat messages."""
    SUPPORT = "support"
    BUG = "bug"
    FEATURE_REQUEST = "feature_request"
    QUESTION = "question"
    IRRELEVANT = "irrelevant"


class TicketStatus(str):
    """Ticket lifecycle statuses."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class GroupingOutcome(str):
    """What happened to a message after grouping."""
    STORED_IRRELEVANT = "stored_irrelevant"
    GROUPED = "grouped"
    NEW_TICKET = "new_ticket"
    STORED_WITHOUT_GROUPING = "stored_without_grouping"
    ALREADY_PROCESSED = "already_processed"


class TicketEventAction(str):
    """Live-update event types."""
    CREATED = "created"
    MESSAGE_ADDED = "message_added"
    STATUS_CHANGED = "status_changed"
    DELETED = "deleted"


# ========== Lists for validation ==========

MESSAGE_CATEGORIES = [
    MessageCategory.SUPPORT, MessageCategory.BUG,
    MessageCategory.FEATURE_REQUEST, MessageCategory.QUESTION,
    MessageCategory.IRRELEVANT
]
VALID_STATUSES = [
    TicketStatus.OPEN, TicketStatus.IN_PROGRESS,
    TicketStatus.RESOLVED, TicketStatus.CLOSED
]
# Only these statuses take part in grouping
ACTIVE_STATUSES = [TicketStatus.OPEN, TicketStatus.IN_PROGRESS]
