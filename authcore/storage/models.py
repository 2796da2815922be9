from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IdentityStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"
    DELETED = "DELETED"


class Role(str, Enum):
    STUDENT = "STUDENT"
    TEACHER = "TEACHER"
    ADMIN = "ADMIN"


@dataclass
class Identity:
    id: str
    email: str
    password_hash: str
    name: Optional[str] = None
    role: Role = Role.STUDENT
    status: IdentityStatus = IdentityStatus.ACTIVE
    email_verified: bool = False
    two_factor_enabled: bool = False
    two_factor_secret: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def new(
        cls,
        email: str,
        password_hash: str,
        *,
        name: Optional[str] = None,
        role: Role = Role.STUDENT,
    ) -> "Identity":
        return cls(
            id=str(uuid.uuid4()),
            email=email,
            password_hash=password_hash,
            name=name,
            role=role,
        )

    @property
    def is_active(self) -> bool:
        return self.status == IdentityStatus.ACTIVE

    def public_dict(self) -> dict:
        """Fields safe to hand back to clients (no hash, no secret)."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "status": self.status.value,
            "email_verified": self.email_verified,
            "two_factor_enabled": self.two_factor_enabled,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
