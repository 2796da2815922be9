from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass

from authcore.logging import get_logger
from authcore.service.errors import (
    AlreadyEnabled,
    InvalidCredentials,
    InvalidTwoFactorCode,
    NotEnabled,
    SetupExpired,
)
from authcore.service.totp import TOTPEngine, random_base32_secret
from authcore.storage.common import EphemeralStore, IdentityStore

logger = get_logger(__name__)


def setup_stage_key(user_id: str) -> str:
    return f"2fa:setup:{user_id}"


@dataclass(frozen=True)
class EnrollmentTicket:
    secret: str
    otpauth_uri: str
    qr_code: str

    def as_dict(self) -> dict:
        return asdict(self)


class TwoFactorService:
    """TOTP enrollment: NOT_ENABLED -> PENDING -> ENABLED.

    The pending secret lives only in the ephemeral store and disappears with
    its TTL; nothing reaches the identity store until a code confirms it.
    """

    def __init__(
        self,
        store: IdentityStore,
        cache: EphemeralStore,
        engine: TOTPEngine,
        *,
        issuer: str,
        setup_ttl_seconds: int = 10 * 60,
    ) -> None:
        self.store = store
        self.cache = cache
        self.engine = engine
        self.issuer = issuer
        self.setup_ttl_seconds = setup_ttl_seconds

    def _require_identity(self, user_id: str):
        identity = self.store.find_by_id(user_id)
        if not identity:
            raise InvalidCredentials("User not found")
        return identity

    async def verify(self, secret: str, code: str) -> bool:
        return await asyncio.to_thread(self.engine.verify, secret, code)

    async def begin_enrollment(self, user_id: str, email: str) -> EnrollmentTicket:
        identity = self._require_identity(user_id)
        if identity.two_factor_enabled:
            raise AlreadyEnabled()
        secret = random_base32_secret()
        uri = self.engine.provisioning_uri(secret, email, self.issuer)
        qr_code = await asyncio.to_thread(self.engine.qr_data_url, uri)
        await self.cache.set(setup_stage_key(user_id), secret, ttl=self.setup_ttl_seconds)
        logger.info("two_factor_enrollment_started", user_id=user_id)
        return EnrollmentTicket(secret=secret, otpauth_uri=uri, qr_code=qr_code)

    async def confirm_enrollment(self, user_id: str, code: str) -> None:
        key = setup_stage_key(user_id)
        secret = await self.cache.get(key)
        if not secret:
            raise SetupExpired()
        if not await self.verify(secret, code):
            logger.info("two_factor_enrollment_code_rejected", user_id=user_id)
            raise InvalidTwoFactorCode()
        self._require_identity(user_id)
        self.store.update_two_factor(user_id, True, secret)
        await self.cache.delete(key)
        logger.info("two_factor_enabled", user_id=user_id)

    async def disable(self, user_id: str, code: str) -> None:
        identity = self._require_identity(user_id)
        if not identity.two_factor_enabled or not identity.two_factor_secret:
            raise NotEnabled()
        if not await self.verify(identity.two_factor_secret, code):
            raise InvalidTwoFactorCode()
        self.store.update_two_factor(user_id, False, None)
        logger.info("two_factor_disabled", user_id=user_id)
