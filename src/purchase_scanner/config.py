"""Configuration management for Purchase Scanner.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the PURCHASE_SCANNER_ prefix (e.g., PURCHASE_SCANNER_OLLAMA_HOST).
    """

    model_config = SettingsConfigDict(
        env_prefix="PURCHASE_SCANNER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Oracle Configuration
    llm_provider: Literal["ollama", "anthropic"] = Field(
        default="ollama",
        description="Which extraction backend to call (ollama or anthropic)",
    )
    ollama_host: str = Field(
        default="http://localhost:11434",
        description="Ollama API host URL",
    )
    ollama_fast_model: str = Field(
        default="llama3.1:8b",
        description="Ollama model used for the fast extraction tier",
    )
    ollama_strong_model: str = Field(
        default="llama3.1:70b",
        description="Ollama model used for the strong extraction tier",
    )
    anthropic_api_key: str | None = Field(
        default=None,
        description="Anthropic API key (required when llm_provider=anthropic)",
    )
    anthropic_fast_model: str = Field(
        default="claude-3-5-haiku-latest",
        description="Anthropic model used for the fast extraction tier",
    )
    anthropic_strong_model: str = Field(
        default="claude-3-5-sonnet-latest",
        description="Anthropic model used for the strong extraction tier",
    )
    oracle_timeout_seconds: float = Field(
        default=60.0,
        description="Hard wall-clock timeout for a single oracle call in seconds",
    )
    oracle_max_tokens: int = Field(
        default=4000,
        description="Maximum tokens the oracle may generate per call",
    )

    # Retry Configuration
    rate_limit_retries: int = Field(
        default=3,
        description="Retries after a rate-limited oracle call",
    )
    transient_retries: int = Field(
        default=2,
        description="Retries after other transient oracle failures",
    )
    strong_tier_retries: int = Field(
        default=1,
        description="Retry budget for the strong tier after fast-tier rate limiting",
    )
    backoff_base_seconds: float = Field(
        default=2.0,
        description="Delay before the first retry in seconds",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        description="Multiplier applied to the delay after each retry",
    )

    # Reduction Configuration
    excerpt_max_chars: int = Field(
        default=12_000,
        description="Maximum characters of reduced email text sent to the oracle",
    )
    reduction_floor_chars: int = Field(
        default=8_000,
        description="Excerpts shorter than this fall back to a full strip of large emails",
    )
    min_reduction_ratio: float = Field(
        default=0.15,
        ge=0.0,
        le=1.0,
        description="Excerpt/source ratio below which the reducer falls back to a full strip",
    )

    # Gmail Configuration
    gmail_credentials_path: Path = Field(
        default=Path("credentials.json"),
        description="Path to Gmail API credentials file",
    )
    gmail_token_dir: Path = Field(
        default=Path("tokens"),
        description="Directory holding one OAuth token file per account",
    )
    gmail_scope: str = Field(
        default="https://www.googleapis.com/auth/gmail.readonly",
        description="OAuth scope used for Gmail access",
    )
    gmail_max_results: int = Field(
        default=100,
        description="Maximum number of candidate messages fetched per scan",
    )

    # Purchase store configuration
    purchases_db_path: Path = Field(
        default=Path("purchases.sqlite3"),
        description="Path to local SQLite database storing verified purchases",
    )
    default_days_back: int = Field(
        default=30,
        description="How far back a scan searches when no window is given",
    )
    rule_tables_path: Path | None = Field(
        default=None,
        description="Optional JSON file replacing the bundled verification rule tables",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
