"""Environment-bound configuration objects.

This module provides Pydantic BaseSettings-based configuration loading from .env files.
All settings classes automatically load from environment variables with support for
multiple alias names (e.g., MODEL_CHAT and MODEL_CHAT_ID both work).

Example:
    from agentcycle.config.settings import get_settings

    settings = get_settings()  # Cached singleton
    max_steps = settings.governance.max_graph_steps
    capacity = settings.memory.short_term_memory
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .agent_config import AgentMode, ExecutionMode, PlannerMode


load_dotenv()


class ModelSettings(BaseSettings):
    """Model identifiers and credentials.

    - chat: model used for planning, reasoning and summarization
    - fast: model used for validators and planner status detection
    - embedding: embedding model for long-term memory
    """

    chat: str = Field(
        default="gpt-4o-mini",
        validation_alias=AliasChoices("MODEL_CHAT", "MODEL_CHAT_ID"),
    )
    fast: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MODEL_FAST", "MODEL_FAST_ID"),
    )
    embedding: str = Field(
        default="text-embedding-3-small",
        validation_alias=AliasChoices("MODEL_EMBEDDING", "MODEL_EMBEDDING_ID"),
    )
    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MODEL_API_KEY", "OPENAI_API_KEY"),
    )
    base_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MODEL_BASE_URL", "OPENAI_BASE_URL"),
    )
    temperature: float = Field(default=0.2, ge=0.0, le=2.0, alias="MODEL_TEMPERATURE")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class GovernanceSettings(BaseSettings):
    """Iteration, retry and timeout limits.

    - max_graph_steps: session-wide node execution ceiling (default: 100)
    - max_retries: per step/plan retry ceiling (default: 3)
    - tool_timeout / model_timeout: seconds before a call is treated as failed
    - tool_output_max_chars: tool output truncation ceiling
    """

    max_graph_steps: int = Field(default=100, ge=1, le=10000, alias="MAX_GRAPH_STEPS")
    max_retries: int = Field(default=3, ge=1, le=20, alias="MAX_RETRIES")
    tool_timeout: float = Field(default=30.0, gt=0, alias="TOOL_TIMEOUT")
    model_timeout: float = Field(default=45.0, gt=0, alias="MODEL_TIMEOUT")
    tool_output_max_chars: int = Field(default=100_000, ge=1000, alias="TOOL_OUTPUT_MAX_CHARS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class MemorySettings(BaseSettings):
    """Short-term window and long-term store settings.

    - memory_size: records kept per long-term store before the oldest are evicted
    - ltm_dir: directory of the JSON-dumped vector stores, empty keeps them in process
    """

    short_term_memory: int = Field(default=5, ge=1, le=100, alias="STM_CAPACITY")
    memory_size: int = Field(default=20, ge=1, alias="MEMORY_SIZE")
    ltm_dir: Optional[str] = Field(default="data/ltm", alias="LTM_DIR")
    ltm_enabled: bool = Field(default=True, alias="LTM_ENABLED")
    ltm_top_k: int = Field(default=4, ge=1, le=50, alias="LTM_TOP_K")
    similarity_threshold: float = Field(
        default=0.0,
        validation_alias=AliasChoices("MEMORY_SIMILARITY_THRESHOLD", "SIMILARITY_THRESHOLD"),
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class AgentSettings(BaseSettings):
    """Agent identity and mode selection."""

    name: str = Field(default="agentcycle", alias="AGENT_NAME")
    mode: AgentMode = Field(default=AgentMode.INTERACTIVE, alias="AGENT_MODE")
    execution_mode: ExecutionMode = Field(default=ExecutionMode.PLANNING, alias="EXECUTION_MODE")
    planner_mode: PlannerMode = Field(default=PlannerMode.ACTIVATED, alias="PLANNER_MODE")
    human_in_the_loop: bool = Field(default=False, alias="HUMAN_IN_THE_LOOP")
    plan_validation_enabled: bool = Field(default=True, alias="PLAN_VALIDATION_ENABLED")
    profile_path: Optional[str] = Field(default=None, alias="AGENT_PROFILE")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class ObservabilitySettings(BaseSettings):
    """Logging and persistence configuration.

    - log_level / log_dir: file + console logging (see utils.logging_utils)
    - session_db_path: SQLite checkpoint database, empty keeps checkpoints in memory
    """

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_dir: str = Field(default="logs", alias="LOG_DIR")
    session_db_path: Optional[str] = Field(default=None, alias="SESSION_DB_PATH")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class Settings(BaseSettings):
    """Root application settings loaded from .env file.

    Hierarchical structure containing five nested settings groups:
    - models: Model ids and API credentials (ModelSettings)
    - governance: Iteration/retry/timeout limits (GovernanceSettings)
    - memory: STM capacity and LTM retrieval (MemorySettings)
    - agent: Agent modes (AgentSettings)
    - observability: Logging and persistence (ObservabilitySettings)

    Use get_settings() to obtain a cached singleton instance.
    """

    environment: str = Field(default="dev", alias="APP_ENV")
    models: ModelSettings = Field(default_factory=ModelSettings)
    governance: GovernanceSettings = Field(default_factory=GovernanceSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
        case_sensitive=False,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton Settings instance."""
    return Settings()
