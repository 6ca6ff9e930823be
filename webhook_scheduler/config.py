"""Application configuration management."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.debug and self.log_level.upper() != "TRACE":
            self.log_level = "DEBUG"

    # Database
    database_url: str = "sqlite:///./webhook_scheduler.db"

    # Security
    secret_key: str  # Verifies bearer tokens issued by the auth provider
    encryption_key: str  # Fernet key for webhook URLs at rest
    algorithm: str = "HS256"

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Reverse proxies whose X-Forwarded-For / X-Real-IP headers are honored
    trusted_proxies: str = "127.0.0.1/32,10.0.0.0/8,172.16.0.0/12,192.168.0.0/16"

    # Application
    debug: bool = False
    log_level: str = "INFO"
    api_v1_str: str = "/api/v1"

    # Dispatcher
    scheduler_enabled: bool = True
    dispatcher_tick_seconds: int = 60
    dispatcher_batch_size: int = 100
    dispatcher_max_workers: int = 8
    dispatcher_claim_lease_seconds: int = 300
    dispatcher_trigger_token: str = ""

    # Delivery
    delivery_timeout_seconds: float = 10.0
    webhook_url_prefixes: str = "https://discord.com/api/webhooks/,https://discordapp.com/api/webhooks/"

    # Quotas
    max_active_schedules_free: int = 3
    max_active_schedules_paid: int = 100
    max_saved_webhooks: int = 10

    # Storage and history
    attachment_storage_dir: str = "./data/attachments"
    execution_history_days: int = 90

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def trusted_proxies_list(self) -> List[str]:
        return [network.strip() for network in self.trusted_proxies.split(",") if network.strip()]

    @property
    def webhook_url_prefixes_list(self) -> List[str]:
        """Parse allowed webhook URL prefixes from comma-separated string."""
        return [prefix.strip() for prefix in self.webhook_url_prefixes.split(",") if prefix.strip()]

    def schedule_quota_for(self, tier: str) -> int:
        """Maximum number of active schedules for an owner tier."""
        return self.max_active_schedules_paid if tier == "paid" else self.max_active_schedules_free


# Global settings instance
settings = Settings()
