"""Application configuration"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database
    database_url: str = "sqlite:///./timebridge.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Jobs
    # How often the job queue is drained.
    queue_poll_interval_seconds: int = 10
    # Cron schedules used for newly created users (standard 5-field crontab).
    default_config_sync_schedule: str = "*/30 * * * *"
    default_time_entry_sync_schedule: str = "*/5 * * * *"
    # A failed job is retried until this many attempts were made.
    job_max_attempts: int = 2

    # Synced services
    # Fixed wait after an HTTP 429 response, then retry up to `rate_limit_max_retries` times.
    rate_limit_wait_seconds: float = 1.5
    rate_limit_max_retries: int = 3
    http_timeout_seconds: float = 30.0
    toggl_api_url: str = "https://api.track.toggl.com/api/v9"

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
