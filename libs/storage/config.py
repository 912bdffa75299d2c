# libs/storage/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict


class PipelineSettings(BaseSettings):
    """
    Environment variables:
      PIPELINE_STORE_URL=redis://localhost:6379/0
      PIPELINE_BROKER_URL=redis://localhost:6379/0
      PIPELINE_QUEUE_DUPLEX=true
      PIPELINE_LOG_LEVEL=INFO
    """

    # Article store: redis://... (shared) or memory:// (single process, dev/tests)
    STORE_URL: str = "redis://localhost:6379/0"

    # Queue broker: redis://... (shared) or memory:// (single process, dev/tests)
    BROKER_URL: str = "redis://localhost:6379/0"

    # Broker connection strategy: separate consume connection (duplex) or one shared (simplex)
    QUEUE_DUPLEX: bool = True

    LOG_LEVEL: str = "INFO"

    # Page fetch timeout for scrape jobs
    FETCH_TIMEOUT_SEC: float = 10.0

    # Default page size for GET /articles
    LIST_LIMIT: int = 30

    # Seconds to wait for both subsystems at startup
    READY_TIMEOUT_SEC: float = 30.0

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")
