from __future__ import annotations

import os
import secrets
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from authcore.logging import get_logger

logger = get_logger(__name__)


class TotpDigest(str, Enum):
    """HMAC digests accepted by authenticator apps."""

    SHA1 = "sha1"
    SHA256 = "sha256"
    SHA512 = "sha512"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the authentication core."""

    database_url: str = env_field(
        "postgresql://localhost:5432/authcore", "DATABASE_URL"
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allow generated secrets and in-memory fallbacks.",
    )
    app_name: str = env_field(
        "StudentHub", "APP_NAME", description="Issuer shown in authenticator apps"
    )
    log_level: str = env_field("INFO", "LOG_LEVEL")
    log_format: str = env_field("json", "LOG_FORMAT", description="json or console")

    # Token signing
    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    jwt_refresh_secret: str | None = env_field(None, "JWT_REFRESH_SECRET")
    access_token_ttl_minutes: int = env_field(
        15, "ACCESS_TOKEN_TTL_MINUTES", gt=0
    )
    refresh_token_ttl_minutes: int = env_field(
        7 * 24 * 60, "REFRESH_TOKEN_TTL_MINUTES", gt=0
    )
    token_leeway_seconds: int = env_field(
        0,
        "TOKEN_LEEWAY_SECONDS",
        ge=0,
        description="Clock skew tolerated when checking token expiry",
    )

    # One-time codes
    verification_code_ttl_minutes: int = env_field(
        15, "VERIFICATION_CODE_TTL_MINUTES", gt=0
    )
    verification_code_length: int = env_field(
        6, "VERIFICATION_CODE_LENGTH", ge=4, le=10
    )

    # Two-factor
    two_factor_setup_ttl_minutes: int = env_field(
        10, "TWO_FACTOR_SETUP_TTL_MINUTES", gt=0
    )
    two_factor_login_ttl_minutes: int = env_field(
        5, "TWO_FACTOR_LOGIN_TTL_MINUTES", gt=0
    )
    totp_window: int = env_field(
        2,
        "TOTP_WINDOW",
        ge=0,
        le=10,
        description="Time steps accepted on either side of the current one",
    )
    totp_digest: TotpDigest = env_field(TotpDigest.SHA1, "TOTP_DIGEST")
    mfa_encryption_key: str | None = env_field(
        None,
        "MFA_ENCRYPTION_KEY",
        description="Key material for encrypting two-factor secrets at rest",
    )

    # Password hashing work factor
    argon2_time_cost: int = env_field(3, "ARGON2_TIME_COST", ge=1)
    argon2_memory_cost: int = env_field(65536, "ARGON2_MEMORY_COST", ge=8)
    argon2_parallelism: int = env_field(4, "ARGON2_PARALLELISM", ge=1)

    # Outbound email
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("StudentHub", "EMAIL_FROM_NAME")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @property
    def access_token_ttl_seconds(self) -> int:
        return self.access_token_ttl_minutes * 60

    @property
    def refresh_token_ttl_seconds(self) -> int:
        return self.refresh_token_ttl_minutes * 60

    @field_validator("totp_digest")
    @classmethod
    def _validate_digest(cls, value: TotpDigest) -> TotpDigest:
        return TotpDigest(value)

    @model_validator(mode="after")
    def _ensure_signing_keys(self) -> "Settings":
        # Access and refresh tokens must never share a signing key
        for name in ("jwt_secret", "jwt_refresh_secret", "mfa_encryption_key"):
            if getattr(self, name):
                continue
            if not self.test_mode:
                raise ValueError(f"{name.upper()} must be set outside TEST_MODE")
            logger.warning("signing_key_generated", setting=name)
            setattr(self, name, secrets.token_urlsafe(48))
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must differ")
        return self
