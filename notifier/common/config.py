"""Central environment-driven settings for the notification service.

The process loads this once at startup. Behavior is controlled by environment
variables (see `.env.example`); nested provider settings use `__` as the
delimiter, e.g. `PROVIDERS__SMS__URL`.
"""

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderSettings(BaseModel):
    """Connection details for one outbound delivery provider."""

    name: str = "http"
    url: str | None = None
    api_key: str | None = None
    enabled: bool = True
    timeout_seconds: float = 30.0
    sender: str | None = None


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "notification"
    log_level: str = "INFO"
    postgres_dsn: str
    api_key: str
    redis_url: str = "redis://redis:6379/0"
    redis_timeout_seconds: float = 2.0
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"

    retry_max_attempts: int = 3
    retry_initial_delay_ms: int = 1000
    retry_multiplier: float = 2.0
    retry_max_delay_ms: int = 10000

    dispatch_max_workers: int = 25
    dispatch_queue_capacity: int = 100

    recovery_enabled: bool = True
    recovery_interval_seconds: int = 300

    providers: dict[str, ProviderSettings] = {}
    model_config = SettingsConfigDict(env_file=".env", env_nested_delimiter="__", extra="ignore")


settings = CommonSettings()
