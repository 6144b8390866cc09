"""
Shared configuration management for Share Gate.
"""

from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="GATE_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Entry storage
    redis_url: Optional[str] = Field(default=None)
    entries_file: Optional[str] = Field(default=None)
    upload_directory: str = Field(default="./uploads")

    # Lookup databases
    geoip_database: Optional[str] = Field(default=None)
    ipcat_database: Optional[str] = Field(default=None)

    # Request handling
    trust_forwarded_headers: bool = Field(default=False)
    dns_timeout: float = Field(default=2.0)
    dns_budget: float = Field(default=3.0)
    evaluation_timeout: float = Field(default=5.0)
    proxy_timeout: float = Field(default=30.0)
    entry_lock_timeout: float = Field(default=10.0)
    not_found_message: str = Field(default="Not found")

    @model_validator(mode="after")
    def check_timeouts(self):
        # DNS exhaustion must degrade to no-match before evaluation times out
        if self.dns_budget >= self.evaluation_timeout:
            raise ValueError("dns_budget must be less than evaluation_timeout")
        return self


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
