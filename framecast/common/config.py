"""Central environment-driven settings shared by both services.

Each service process loads this once at startup. Service-specific behavior is
controlled by environment variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "unknown-service"
    log_level: str = "INFO"
    kafka_bootstrap_servers: str = "kafka:9092"
    redis_url: str = "redis://redis:6379/0"
    postgres_dsn: str
    api_key: str
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"

    notifications_enabled: bool = False
    site_name: str = "framecast"
    content_events_topic: str = "posts.status_changed"

    rpc_url: str = ""
    rpc_timeout_seconds: float = 5.0
    key_registry_address: str = "0x00000000Fc1237824fb747aBDE0FF18990E59b7e"

    admin_email: str = ""
    smtp_host: str = "localhost"
    smtp_port: int = 25
    smtp_sender: str = "framecast@localhost"

    retry_delay_seconds: int = 300
    delivery_chunk_size: int = 100
    delivery_timeout_seconds: float = 10.0
    webhook_rate_limit_per_minute: int = 120
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
