"""Application configuration using Pydantic Settings"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=Path(__file__).parent.parent / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(..., description="PostgreSQL database URL")
    database_ssl: str | None = Field(default="require", description="asyncpg ssl mode")

    # Contact field encryption (shared with the web frontend)
    encryption_key: str = Field(default="", description="Passphrase for contact encryption")

    # SMS gateway
    sms_api_key: str = Field(default="", description="SMS gateway API token")
    sms_api_url: str = Field(default="https://sms.iprogtech.com", description="SMS gateway URL")
    sms_sender_name: str = Field(default="Elaiza G. Beauty", description="SMS sender name")
    sms_provider: int = Field(default=2, description="SMS gateway provider id")

    # Transactional email (Brevo)
    brevo_api_key: str = Field(default="", description="Brevo API key")
    brevo_api_url: str = Field(default="https://api.brevo.com", description="Brevo API URL")
    email_sender_name: str = Field(default="Elaiza G. Beauty Lounge")
    email_sender_address: str = Field(default="glowpointcapstone@gmail.com")
    notification_timeout: float = Field(
        default=5.0, gt=0, description="Per-request timeout for the SMS and email gateways"
    )

    # Realtime relay
    queue_channel: str = Field(default="queue_changes", description="NOTIFY channel name")
    queue_poll_interval: float = Field(
        default=10.0, gt=0, description="Dashboard fallback refresh interval in seconds"
    )

    # Server URLs
    frontend_url: str = Field(default="http://localhost:3000", description="Frontend URL for CORS")

    # Environment
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    # Keep-Alive (Render)
    enable_keep_alive: bool = Field(default=True, description="Enable heartbeat keep-alive task")
    keep_alive_interval: int = Field(default=300, description="Heartbeat interval in seconds")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS allowed origins"""
        return [self.frontend_url]

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()  # type: ignore[call-arg]
