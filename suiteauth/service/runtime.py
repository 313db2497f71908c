from __future__ import annotations

import asyncio
import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from suiteauth.api.access import AccessControl
from suiteauth.config import get_settings, reset_settings_cache
from suiteauth.logging import get_logger
from suiteauth.service.auth import AuthService
from suiteauth.service.email import EmailService
from suiteauth.storage.memory import MemorySessionStore, MemoryStore
from suiteauth.storage.postgres import PostgresStore
from suiteauth.storage.redis_cache import RedisSessionStore, SyncRedisSessionStore

logger = get_logger(__name__)

SessionBackend = Union[RedisSessionStore, SyncRedisSessionStore, MemorySessionStore]


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """redis://:secret@host:6379 -> redis://:***@host:6379"""
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if not parsed.password:
            return url
        netloc = parsed.hostname or ""
        if parsed.port:
            netloc = f"{netloc}:{parsed.port}"
        netloc = f"{parsed.username or ''}:***@{netloc}"
        return urlunparse(
            (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
        )
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Process-wide wiring of stores and services used by the HTTP handlers."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_initialized", store_type=store_type)

        self.sessions = self._build_session_store()
        self.mailer = EmailService.from_settings(self.settings)
        self.auth = AuthService(self.store, self.sessions, self.settings, mailer=self.mailer)
        self.access = AccessControl(self.auth, cookie_name=self.settings.auth_cookie_name)

    def _build_session_store(self) -> SessionBackend:
        redis_error: Exception | None = None
        if self.settings.redis_url:
            try:
                # The sync client keeps tests free of event-loop binding
                if self.settings.test_mode:
                    sessions = SyncRedisSessionStore(self.settings.redis_url)
                else:
                    sessions = RedisSessionStore(self.settings.redis_url)
                sessions.verify_connection()
                return sessions
            except Exception as exc:
                redis_error = exc

        if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
            raise RuntimeError(
                "Redis is required for sessions; start Redis or set "
                "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for the in-memory fallback."
            ) from redis_error

        fallback_mode = "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
        logger.warning(
            "redis_disabled_fallback",
            redis_url=_mask_url_password(self.settings.redis_url),
            error=str(redis_error) if redis_error else "redis_url_missing",
            mode=fallback_mode,
        )
        return MemorySessionStore()

    async def close(self) -> None:
        await self.sessions.close()
        self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Return the process runtime, building it on first use (double-checked lock)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Rebuild the runtime from a freshly read environment; TEST_MODE only."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            previous = runtime.sessions
            if isinstance(previous, RedisSessionStore):
                try:
                    loop = asyncio.get_running_loop()
                except RuntimeError:
                    asyncio.run(previous.close())
                else:
                    loop.create_task(previous.close())
            elif isinstance(previous, SyncRedisSessionStore):
                previous.disconnect()
            runtime.store.close()

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
