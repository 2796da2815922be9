from __future__ import annotations

import asyncio
import re

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from authcore.logging import get_logger
from authcore.service.errors import PasswordTooWeak

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 8
COMMON_PASSWORDS = frozenset(
    {
        "password",
        "12345678",
        "123456789",
        "qwerty123",
        "abc123",
        "password1",
        "password123",
    }
)


def validate_password_strength(password: str) -> None:
    """Raise PasswordTooWeak unless the password meets the minimum policy."""
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise PasswordTooWeak(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    if not re.search(r"[A-Za-z]", password):
        raise PasswordTooWeak("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise PasswordTooWeak("Password must contain at least one number")
    if password.lower() in COMMON_PASSWORDS:
        raise PasswordTooWeak("Password is too common. Please choose a stronger password")


class SecretHasher:
    """Argon2id hashing with a configurable work factor.

    The blocking argon2 calls run in a worker thread so one slow hash does not
    stall unrelated requests on the event loop.
    """

    algorithm = "argon2id"

    def __init__(
        self, *, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4
    ) -> None:
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )
        # Verified against when the email is unknown so both failure paths cost the same
        self._dummy_hash = self._hasher.hash("authcore-dummy-password")

    def hash_sync(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify_sync(self, password_hash: str, password: str) -> bool:
        try:
            return self._hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError):
            logger.warning("password_hash_unusable")
            return False

    async def hash(self, password: str) -> str:
        return await asyncio.to_thread(self.hash_sync, password)

    async def verify(self, password_hash: str, password: str) -> bool:
        return await asyncio.to_thread(self.verify_sync, password_hash, password)

    async def burn(self, password: str) -> None:
        """Spend one verification's worth of work without a real hash."""
        await self.verify(self._dummy_hash, password)

    def needs_rehash(self, password_hash: str) -> bool:
        try:
            return self._hasher.check_needs_rehash(password_hash)
        except InvalidHashError:
            return True
