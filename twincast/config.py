"""Application configuration using Pydantic Settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./twincast.db"

    # Environment ("development", "production", "test")
    ENVIRONMENT: str = "development"

    # API security
    API_SECRET_KEY: str = ""
    # Only honoured when ENVIRONMENT == "development"
    ALLOW_UNSIGNED_WEBHOOKS: bool = False

    # LLM (OpenAI-compatible chat completions)
    LLM_API_KEY: str = ""
    LLM_BASE_URL: str = "https://api.openai.com/v1"
    LLM_MODEL: str = "gpt-5-mini"
    LLM_TIMEOUT: float = 120.0

    # Embeddings
    EMBEDDING_MODEL: str = "text-embedding-3-large"
    EMBED_DIM: int = 768
    EMBEDDING_BATCH_SIZE: int = 64

    # Neynar
    NEYNAR_API_KEY: str = ""
    NEYNAR_BASE_URL: str = "https://api.neynar.com/v2/farcaster"
    NEYNAR_WEBHOOK_ID: str = ""
    NEYNAR_WEBHOOK_SECRET: str = ""
    NEYNAR_TIMEOUT: float = 30.0

    # Custody wallet (Farcaster IdRegistry on Optimism)
    ID_REGISTRY_ADDRESS: str = "0x00000000Fc6c5F01Fc30151999387Bb99A9f489b"
    ID_REGISTRY_CHAIN_ID: int = 10

    # Distributed lock
    LOCK_LEASE_MS: int = 30000
    LOCK_RETRY_COUNT: int = 20
    LOCK_RETRY_DELAY_MS: int = 200

    # Job retention
    COMPLETED_KEEP_COUNT: int = 20
    COMPLETED_KEEP_AGE: int = 24 * 3600
    FAILED_KEEP_COUNT: int = 20
    FAILED_KEEP_AGE: int = 7 * 24 * 3600

    # Worker
    WORKER_POLL_INTERVAL: float = 2.0
    JOB_LOCK_DURATION: int = 30
    STALLED_INTERVAL: int = 30
    MAX_STALLED_COUNT: int = 3
    WEBHOOK_WORKER_CONCURRENCY: int = 2
    WEBHOOK_RATE_LIMIT_MAX: int = 10
    WEBHOOK_RATE_LIMIT_WINDOW: float = 30.0
    ENABLE_WORKERS: bool = True

    # Ingestion
    CAST_FETCH_LIMIT: int = 2000
    REPLY_FETCH_LIMIT: int = 100
    CAST_MIN_LENGTH: int = 30
    PROFILE_MAX_CHARS: int = 60000

    # Retrieval
    MAX_CHUNK_CHARS: int = 3000
    RETRIEVAL_TOP_K: int = 3

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    @property
    def trusts_unsigned_webhooks(self) -> bool:
        """Unsigned webhooks are only accepted in local development."""
        return self.ALLOW_UNSIGNED_WEBHOOKS and self.ENVIRONMENT == "development"


# Global settings instance
settings = Settings()
