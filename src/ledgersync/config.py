from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./ledgersync.db"
    functions_base_url: str = "http://localhost:54321/functions/v1"
    service_role_key: str = ""
    sync_provider: str = "qbo"
    default_batch_size: int = 50
    reauth_grace_seconds: int = 300  # refresh five minutes before expiry
    invoice_due_days: int = 30
    milestone_runner_hour: int = 6
    bulk_sync_interval_minutes: int = 30
    halt_on_upstream_error: bool = False
    retry_settle_timeout_seconds: float = 30.0
    retry_poll_interval_seconds: float = 2.0
    http_timeout_seconds: float = 30.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "LEDGERSYNC_"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
