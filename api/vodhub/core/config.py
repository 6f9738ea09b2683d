"""Application settings parsed from environment variables and defaults."""

import ipaddress
import json
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CORS_ORIGINS = ["*"]
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = "VODHub API"
    api_prefix: str = "/api"

    log_level: str = "INFO"
    cors_origins: list[str] | str = Field(default_factory=lambda: DEFAULT_CORS_ORIGINS.copy())

    sources_file: Optional[str] = "sources.yaml"

    search_timeout_seconds: float = 8.0
    search_retry_attempts: int = 2

    availability_check_enabled: bool = True
    availability_concurrency: int = 8
    availability_timeout_seconds: float = 5.0

    proxy_retry_budget: int = 5
    proxy_retry_backoff_seconds: float = 0.1
    proxy_timeout_seconds: float = 30.0
    proxy_public_origin: Optional[str] = None

    spoof_enabled: bool = True
    spoof_user_agent: str = DEFAULT_USER_AGENT
    spoof_client_ip: str = "202.108.22.5"
    spoof_referer: bool = True

    source_circuit_threshold: int = 3
    source_circuit_backoff_seconds: float = 15.0
    source_circuit_max_backoff_seconds: float = 300.0

    optimize_posters: bool = False
    image_optimizer_url: str = "https://images.weserv.nl/"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_cors_origins(cls, value: str | list[str] | None) -> list[str]:
        """Normalize CORS origins from JSON, CSV, or list inputs."""
        if isinstance(value, list):
            cleaned = [origin.strip() for origin in value if isinstance(origin, str) and origin.strip()]
            return cleaned or DEFAULT_CORS_ORIGINS.copy()
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return DEFAULT_CORS_ORIGINS.copy()
            try:
                parsed = json.loads(stripped)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                cleaned = [str(origin).strip() for origin in parsed if str(origin).strip()]
                if cleaned:
                    return cleaned
            origins = [origin.strip() for origin in stripped.split(",") if origin.strip()]
            if origins:
                return origins
        return DEFAULT_CORS_ORIGINS.copy()

    @field_validator("spoof_client_ip")
    @classmethod
    def _validate_spoof_client_ip(cls, value: str) -> str:
        """Reject spoofing addresses that are not valid IPv4/IPv6 literals."""
        try:
            ipaddress.ip_address(value.strip())
        except ValueError as exc:
            raise ValueError(f"SPOOF_CLIENT_IP must be an IP address, got {value!r}") from exc
        return value.strip()

    @field_validator("proxy_public_origin", mode="before")
    @classmethod
    def _strip_public_origin(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = str(value).strip().rstrip("/")
        return stripped or None

    @field_validator(
        "availability_concurrency",
        "proxy_retry_budget",
        "search_retry_attempts",
        "source_circuit_threshold",
    )
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be at least 1")
        return value

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """Return cached settings to avoid re-parsing environment variables."""
    return Settings()


settings = get_settings()
