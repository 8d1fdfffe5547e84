from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    database_url: str = "sqlite:///./shop_agent.db"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: Optional[str] = None
    debug: bool = False

    # Analysis job configuration
    job_batch_size: int = 3
    job_stale_after_seconds: int = 300
    job_error_buffer_size: int = 20
    job_progress_error_count: int = 5

    # Resilience configuration
    circuit_failure_threshold: int = 5
    circuit_recovery_timeout_seconds: float = 60.0
    operation_timeout_seconds: float = 30.0

    # Subscription
    subscription_tier: str = "free"

    # Worker
    worker_poll_interval_seconds: float = 5.0

    class Config:
        env_file = ".env"
        env_prefix = "SHOP_AGENT_"

settings = Settings()
