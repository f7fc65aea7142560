"""
nova_session.wiring

Composition root for the session core.

Responsibilities:
- Build the backend adapters, resilience policies, warm cache and persisted token
  store from `Settings`.
- Assemble them into the single `SessionStore` of the running client.
"""

from __future__ import annotations

from datetime import timedelta

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nova_session.backend.identity import HttpIdentityProvider
from nova_session.backend.profiles import HttpProfileStore
from nova_session.resilience.breaker import BreakerPolicy, CircuitBreaker
from nova_session.resilience.retry import RetryPolicy
from nova_session.session.cache import PersistenceCache
from nova_session.session.store import SessionStore
from nova_session.session.token_store import PersistedTokenStore
from nova_session.settings import Settings


def build_session_store(
    *,
    settings: Settings,
    http: httpx.AsyncClient,
    session_factory: async_sessionmaker[AsyncSession],
) -> SessionStore:
    provider = HttpIdentityProvider(
        http=http,
        anon_key=settings.backend_anon_key,
        token_store=PersistedTokenStore(session_factory, key=settings.auth_storage_key),
    )
    data_store = HttpProfileStore(
        http=http,
        anon_key=settings.backend_anon_key,
        token_source=lambda: provider.access_token,
    )
    cache = PersistenceCache(
        session_factory,
        key=settings.cache_key,
        ttl=timedelta(hours=settings.cache_ttl_hours),
    )
    breaker = CircuitBreaker(
        policy=BreakerPolicy(
            failure_threshold=settings.breaker_failure_threshold,
            cooldown=settings.breaker_cooldown_seconds,
            backoff_factor=settings.breaker_backoff_factor,
            max_cooldown=settings.breaker_max_cooldown_seconds,
        )
    )
    retry = RetryPolicy(
        max_retries=settings.retry_max_retries,
        base_delay_ms=settings.retry_base_delay_ms,
        max_delay_ms=settings.retry_max_delay_ms,
    )
    return SessionStore(
        provider=provider,
        data_store=data_store,
        cache=cache,
        breaker=breaker,
        retry=retry,
        debounce_window=settings.debounce_window_ms / 1000,
    )


# --- Module Notes -----------------------------------------------------------
# The data store reads the provider's access token lazily so a refreshed or restored
# token is picked up without rewiring.
