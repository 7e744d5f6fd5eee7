"""Application settings and configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ENGINE_HMAC_KEY = "dev-engine-hmac-key-change-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: Optional[str] = None
    postgres_user: str = "ledgerflow"
    postgres_password: str = "ledgerflow_dev_password"
    postgres_db: str = "ledgerflow"
    postgres_port: int = 5432

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    environment: str = "development"

    # Logging
    log_level: str = "INFO"

    # Ledger
    ledger_chain_id: str = "ledgerflow-local"

    # Indexer
    indexer_enabled: bool = True
    indexer_backfill_blocks: int = 10  # Trailing window scanned on start
    dead_letter_max_attempts: int = 5

    # Query API
    records_default_limit: int = 50
    records_max_limit: int = 200

    # Content store
    content_store_provider: str = "ipfs"  # ipfs, memory
    ipfs_gateway_url: str = "https://gateway.pinata.cloud/ipfs"
    pinata_api_url: str = "https://api.pinata.cloud/pinning/pinFileToIPFS"
    pinata_api_key: Optional[str] = None
    pinata_secret_api_key: Optional[str] = None
    content_fetch_timeout_seconds: float = 10.0
    content_upload_max_bytes: int = 2 * 1024 * 1024

    # Computation engine
    engine_url: Optional[str] = None
    engine_hmac_key: str = DEFAULT_ENGINE_HMAC_KEY
    engine_timeout_seconds: float = 30.0
    engine_max_retries: int = 0
    engine_retry_backoff_seconds: float = 0.5
    engine_target_type: str = "euint64"
    allow_mock_engine: bool = False

    # Rate Limiting
    rate_limit_enabled: bool = True
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 900
    rate_limit_ttl_seconds: int = 1800  # TTL for rate limit keys in Redis

    # CORS
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:8080",
        "http://localhost:8081",
        "http://localhost:3000",
    ]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    @property
    def database_url_computed(self) -> str:
        """Compute database URL if not explicitly set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@localhost:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() in ("development", "test", "dev")

    def validate_production_settings(self):
        """Validate settings for production environment."""
        if self.is_development:
            return
        if self.allow_mock_engine:
            raise ValueError(
                "ALLOW_MOCK_ENGINE=true is not allowed in production. "
                "Engine failures must surface as errors."
            )
        if self.engine_hmac_key == DEFAULT_ENGINE_HMAC_KEY:
            raise ValueError(
                "ENGINE_HMAC_KEY must be set in production. "
                "Do not use the development default."
            )
        if not self.engine_url:
            raise ValueError("ENGINE_URL is required in production.")
        if self.content_store_provider == "memory":
            raise ValueError(
                "CONTENT_STORE_PROVIDER=memory is not allowed in production. "
                "Use CONTENT_STORE_PROVIDER=ipfs."
            )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
