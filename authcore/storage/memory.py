from __future__ import annotations

import math
import threading
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Union

from authcore.logging import get_logger
from authcore.storage.common import (
    build_secret_cipher,
    decrypt_secret,
    encrypt_secret,
    normalize_email,
)
from authcore.storage.errors import ConstraintViolation
from authcore.storage.models import Identity, IdentityStatus, Role


class MemoryIdentityStore:
    """In-process identity store used in tests and single-node development."""

    def __init__(self, *, mfa_encryption_key: str) -> None:
        self.logger = get_logger(__name__)
        self.identities: Dict[str, Identity] = {}
        self._email_index: Dict[str, str] = {}
        # RLock so helpers can nest acquisitions within the same thread
        self._data_lock = threading.RLock()
        self._cipher = build_secret_cipher(mfa_encryption_key)

    def _export(self, stored: Identity) -> Identity:
        return replace(
            stored, two_factor_secret=decrypt_secret(self._cipher, stored.two_factor_secret)
        )

    def _require(self, identity_id: str) -> Identity:
        stored = self.identities.get(identity_id)
        if not stored:
            raise ConstraintViolation("identity not found", {"identity_id": identity_id})
        return stored

    def _touch(self, stored: Identity, **changes) -> None:
        self.identities[stored.id] = replace(
            stored, updated_at=datetime.now(timezone.utc), **changes
        )

    def find_by_email(self, email: str) -> Optional[Identity]:
        with self._data_lock:
            identity_id = self._email_index.get(normalize_email(email))
            if not identity_id:
                return None
            return self._export(self.identities[identity_id])

    def find_by_id(self, identity_id: str) -> Optional[Identity]:
        with self._data_lock:
            stored = self.identities.get(identity_id)
            return self._export(stored) if stored else None

    def create(
        self,
        email: str,
        password_hash: str,
        *,
        name: Optional[str] = None,
        role: Role = Role.STUDENT,
    ) -> Identity:
        normalized = normalize_email(email)
        with self._data_lock:
            if normalized in self._email_index:
                raise ConstraintViolation("email already exists", {"field": "email"})
            identity = Identity.new(normalized, password_hash, name=name, role=role)
            self.identities[identity.id] = identity
            self._email_index[normalized] = identity.id
            return self._export(identity)

    def update_credential(self, identity_id: str, password_hash: str) -> None:
        with self._data_lock:
            self._touch(self._require(identity_id), password_hash=password_hash)

    def update_two_factor(
        self, identity_id: str, enabled: bool, secret: Optional[str]
    ) -> None:
        if enabled and not secret:
            raise ConstraintViolation("enabled two-factor requires a secret")
        with self._data_lock:
            self._touch(
                self._require(identity_id),
                two_factor_enabled=enabled,
                two_factor_secret=encrypt_secret(self._cipher, secret) if enabled else None,
            )

    def update_status(self, identity_id: str, status: IdentityStatus) -> None:
        with self._data_lock:
            self._touch(self._require(identity_id), status=IdentityStatus(status))

    def update_role(self, identity_id: str, role: Role) -> None:
        with self._data_lock:
            self._touch(self._require(identity_id), role=Role(role))

    def mark_email_verified(self, identity_id: str) -> None:
        with self._data_lock:
            self._touch(self._require(identity_id), email_verified=True)


_Value = Union[str, set]


class MemoryCache:
    """Ephemeral store with Redis-like TTL semantics kept in process memory.

    Used when Redis is unavailable under TEST_MODE or ALLOW_REDIS_FALLBACK_DEV.
    Expiry is evaluated lazily against ``clock`` on every access.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._values: Dict[str, _Value] = {}
        self._expires_at: Dict[str, float] = {}
        self._lock = threading.Lock()

    def _purge_if_expired(self, key: str) -> None:
        deadline = self._expires_at.get(key)
        if deadline is not None and deadline <= self._clock():
            self._values.pop(key, None)
            self._expires_at.pop(key, None)

    def _live(self, key: str) -> Optional[_Value]:
        self._purge_if_expired(key)
        return self._values.get(key)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._live(key)
            if isinstance(value, set):
                raise TypeError(f"{key} holds a set")
            return value

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        with self._lock:
            self._values[key] = str(value)
            if ttl is not None:
                self._expires_at[key] = self._clock() + max(1, int(ttl))
            else:
                self._expires_at.pop(key, None)

    async def delete(self, key: str) -> int:
        with self._lock:
            existed = self._live(key) is not None
            self._values.pop(key, None)
            self._expires_at.pop(key, None)
            return int(existed)

    async def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    async def sadd(self, key: str, member: str) -> int:
        with self._lock:
            current = self._live(key)
            if current is None:
                current = set()
                self._values[key] = current
            if not isinstance(current, set):
                raise TypeError(f"{key} does not hold a set")
            if member in current:
                return 0
            current.add(member)
            return 1

    async def srem(self, key: str, member: str) -> int:
        with self._lock:
            current = self._live(key)
            if not isinstance(current, set) or member not in current:
                return 0
            current.discard(member)
            if not current:
                self._values.pop(key, None)
                self._expires_at.pop(key, None)
            return 1

    async def smembers(self, key: str) -> set[str]:
        with self._lock:
            current = self._live(key)
            return set(current) if isinstance(current, set) else set()

    async def expire(self, key: str, ttl: int) -> bool:
        with self._lock:
            if self._live(key) is None:
                return False
            self._expires_at[key] = self._clock() + max(1, int(ttl))
            return True

    async def ttl(self, key: str) -> int:
        """Seconds left, -1 for keys without expiry, -2 for missing keys."""
        with self._lock:
            if self._live(key) is None:
                return -2
            deadline = self._expires_at.get(key)
            if deadline is None:
                return -1
            return max(0, math.ceil(deadline - self._clock()))
