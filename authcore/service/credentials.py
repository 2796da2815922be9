from __future__ import annotations

from authcore.logging import get_logger, redact_email
from authcore.service.errors import AccountNotActive, InvalidCredentials
from authcore.service.passwords import SecretHasher
from authcore.storage.common import IdentityStore
from authcore.storage.models import Identity

logger = get_logger(__name__)


class CredentialVerifier:
    """Email + password check against the identity store.

    Does not look at email verification or two-factor state; those belong to
    the login flow.
    """

    def __init__(self, store: IdentityStore, hasher: SecretHasher) -> None:
        self.store = store
        self.hasher = hasher

    async def verify(self, email: str, password: str) -> Identity:
        identity = self.store.find_by_email(email)
        if not identity:
            await self.hasher.burn(password)
            logger.info("credentials_rejected", email=redact_email(email), reason="unknown")
            raise InvalidCredentials()
        if not await self.hasher.verify(identity.password_hash, password):
            logger.info("credentials_rejected", user_id=identity.id, reason="mismatch")
            raise InvalidCredentials()
        if not identity.is_active:
            raise AccountNotActive()
        if self.hasher.needs_rehash(identity.password_hash):
            self.store.update_credential(identity.id, await self.hasher.hash(password))
            logger.info("password_rehashed", user_id=identity.id)
        return identity
