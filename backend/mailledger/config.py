"""Application configuration. All sensitive config from .env."""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """App settings from environment."""

    # Database - default SQLite for easy local dev; use DATABASE_URL for PostgreSQL
    database_url: str = "sqlite:///./mailledger.db"

    # SQLAlchemy pooling (Postgres only)
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout_s: int = 30
    db_pool_recycle_s: int = 1800

    # SQLite concurrency tuning (used when DATABASE_URL starts with sqlite://)
    sqlite_busy_timeout_ms: int = 5000

    # Gmail - paths relative to backend/ or set absolute
    credentials_path: str = "credentials.json"
    token_path: str = "token.pickle"
    # Label the bank notifications are filtered into (Gmail label id)
    target_label: str = ""
    gmail_messages_max_results: int = 100
    gmail_max_pages: int = 200

    # AI - set OPENAI_API_KEY
    openai_api_key: str = ""
    # Classification and time extraction
    openai_fast_model: str = "gpt-5-mini"
    # Categorization and internal-movement pairing
    openai_reasoning_model: str = "gpt-5.2"
    openai_timeout_s: float = 30.0
    openai_max_retries: int = 3
    openai_backoff_base_s: float = 1.0

    # Queue processing
    queue_default_batch_size: int = 10
    queue_scheduled_batch_size: int = 100
    queue_schedule_hours: int = 12
    # A claim older than this is considered abandoned
    processing_lock_timeout_s: int = 15 * 60
    # Hard execution budget of one processing run and the safety margin before it
    run_budget_s: int = 540
    run_budget_buffer_s: int = 30
    # Extra time past the soft limit before Celery kills the worker (one message can take 4 x 30s)
    task_hard_limit_grace_s: int = 180
    # Max mutations per flushed write batch
    store_write_batch_size: int = 450

    # Sync
    sync_extra_hours: int = 6
    # Start a processing job automatically once a sync queued new messages
    sync_auto_process: bool = True

    # CORS
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Redis (Celery broker/result backend)
    redis_url: str = "redis://localhost:6379/0"

    # Celery
    celery_broker_url: Optional[str] = None  # defaults to redis_url if not set

    # Auth - optional static API key; when empty the API is open (local dev)
    api_key_header: str = "X-API-Key"
    api_key: str = ""

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def celery_broker(self) -> str:
        return self.celery_broker_url or self.redis_url

    @property
    def run_deadline_s(self) -> int:
        return max(0, self.run_budget_s - self.run_budget_buffer_s)


settings = Settings()
