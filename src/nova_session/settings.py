"""
nova_session.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide env-driven settings for the backend adapters, the local cache and the
  resilience policies (breaker, retry, debounce).
- Hide secrets from repr/logging (backend anon key).
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="NOVA_", case_sensitive=False)

    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "nova-session"
    log_level: str = "INFO"

    api_host: str = "127.0.0.1"
    api_port: int = 8090

    # Hosted backend (identity service + data API share one base url).
    backend_url: str = "http://localhost:54321"
    backend_anon_key: str = Field(default="dev-anon-key", repr=False)
    http_timeout_seconds: float = 12.0
    client_info: str = "Nova-HR-Console"

    # Local warm cache
    database_url: str = "sqlite+aiosqlite:///./nova_session.db"
    cache_key: str = "nova.session"
    auth_storage_key: str = "nova.auth"
    cache_ttl_hours: float = 24.0

    # Profile service circuit breaker
    breaker_failure_threshold: int = 3
    breaker_cooldown_seconds: float = 30.0
    breaker_backoff_factor: float = 1.0
    breaker_max_cooldown_seconds: float = 300.0

    # Retry/backoff for transport failures
    retry_max_retries: int = 2
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 8000

    # Coalescing window for bursts of provider events
    debounce_window_ms: int = 100


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Every policy constant lives here so tests can build a Settings(...) with tight
# windows instead of patching module globals.
