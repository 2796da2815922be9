from __future__ import annotations

import time
from typing import Callable, Optional, Union
from urllib.parse import urlparse, urlunparse

from redis.exceptions import RedisError

from authcore.config import Settings
from authcore.logging import configure_logging, get_logger
from authcore.service.auth import AuthService
from authcore.service.email import EmailService
from authcore.service.passwords import SecretHasher
from authcore.service.tokens import TokenService
from authcore.service.totp import TOTPEngine
from authcore.service.two_factor import TwoFactorService
from authcore.service.verification import VerificationCodeService
from authcore.storage.memory import MemoryCache, MemoryIdentityStore
from authcore.storage.postgres import PostgresIdentityStore
from authcore.storage.redis_cache import RedisCache, SyncRedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password component of a URL with ``***`` for logging.

    redis://:hunter2@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        port = parsed.port
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if port:
        netloc = f"{netloc}:{port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds one instance of every store and service, wired from ``Settings``."""

    def __init__(
        self,
        settings: Settings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        configure_logging(settings.log_level, settings.log_format)
        logger.info(
            "runtime_init_started",
            use_memory_store=settings.use_memory_store,
            test_mode=settings.test_mode,
        )
        self.store = self._build_store()
        self.cache = self._build_cache(clock)

        self.hasher = SecretHasher(
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
        )
        self.tokens = TokenService.from_settings(self.cache, settings, clock=clock)
        self.codes = VerificationCodeService(
            self.cache,
            ttl_seconds=settings.verification_code_ttl_minutes * 60,
            length=settings.verification_code_length,
        )
        self.totp = TOTPEngine(
            digest=settings.totp_digest.value, window=settings.totp_window, clock=clock
        )
        self.two_factor = TwoFactorService(
            self.store,
            self.cache,
            self.totp,
            issuer=settings.app_name,
            setup_ttl_seconds=settings.two_factor_setup_ttl_minutes * 60,
        )
        self.email = EmailService.from_settings(settings)
        self.auth = AuthService(
            self.store,
            self.cache,
            hasher=self.hasher,
            tokens=self.tokens,
            codes=self.codes,
            two_factor=self.two_factor,
            email=self.email,
            challenge_ttl_seconds=settings.two_factor_login_ttl_minutes * 60,
        )
        logger.info("runtime_init_completed", cache_type=type(self.cache).__name__)

    def _build_store(self) -> Union[MemoryIdentityStore, PostgresIdentityStore]:
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            if self.settings.use_memory_store:
                store = MemoryIdentityStore(
                    mfa_encryption_key=self.settings.mfa_encryption_key
                )
            else:
                store = PostgresIdentityStore(
                    self.settings.database_url,
                    mfa_encryption_key=self.settings.mfa_encryption_key,
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
        return store

    def _build_cache(
        self, clock: Callable[[], float]
    ) -> Union[RedisCache, SyncRedisCache, MemoryCache]:
        redis_error: Optional[Exception] = None
        if self.settings.redis_url:
            try:
                # Sync client in test mode to avoid binding to a throwaway event loop
                if self.settings.test_mode:
                    cache = SyncRedisCache(self.settings.redis_url)
                else:
                    cache = RedisCache(self.settings.redis_url)
                cache.verify_connection()
                return cache
            except (RedisError, OSError) as exc:
                redis_error = exc

        if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
            raise RuntimeError(
                "Redis is required for sessions, one-time codes and token revocation; "
                "start Redis or set TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
            ) from redis_error

        fallback_mode = "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
        logger.warning(
            "redis_disabled_fallback",
            redis_url=_mask_url_password(self.settings.redis_url),
            error=str(redis_error) if redis_error else "redis_url_missing",
            mode=fallback_mode,
        )
        return MemoryCache(clock=clock)

    async def close(self) -> None:
        await self.cache.close()
        if isinstance(self.store, PostgresIdentityStore):
            self.store.close()


def build_runtime(
    settings: Optional[Settings] = None,
    *,
    clock: Callable[[], float] = time.time,
) -> Runtime:
    return Runtime(settings or Settings.from_env(), clock=clock)
