from __future__ import annotations

from enum import Enum
from typing import Callable

from authcore.logging import get_logger, redact_email
from authcore.service.codes import codes_match, generate_numeric_code
from authcore.service.errors import CodeExpiredOrMissing, CodeMismatch
from authcore.storage.common import EphemeralStore, normalize_email

logger = get_logger(__name__)


class CodePurpose(str, Enum):
    EMAIL_VERIFY = "verify"
    PASSWORD_RESET = "reset"

    def key(self, email: str) -> str:
        return f"{self.value}:{normalize_email(email)}"


class VerificationCodeService:
    """Single-use numeric codes keyed by purpose and email.

    Issuing overwrites any outstanding code for the same purpose; the two
    purposes never share a key.
    """

    def __init__(
        self,
        cache: EphemeralStore,
        *,
        ttl_seconds: int = 15 * 60,
        length: int = 6,
        code_generator: Callable[[int], str] = generate_numeric_code,
    ) -> None:
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.length = length
        self._generate = code_generator

    async def issue(self, purpose: CodePurpose, email: str) -> str:
        purpose = CodePurpose(purpose)
        code = self._generate(self.length)
        await self.cache.set(purpose.key(email), code, ttl=self.ttl_seconds)
        logger.info(
            "verification_code_issued", purpose=purpose.value, to=redact_email(email)
        )
        return code

    async def verify(self, purpose: CodePurpose, email: str, code: str) -> None:
        purpose = CodePurpose(purpose)
        key = purpose.key(email)
        stored = await self.cache.get(key)
        if stored is None:
            raise CodeExpiredOrMissing()
        if not codes_match(stored, code):
            logger.info(
                "verification_code_mismatch", purpose=purpose.value, to=redact_email(email)
            )
            raise CodeMismatch()
        await self.cache.delete(key)
