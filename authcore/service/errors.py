from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer failures surfaced to the transport layer.

    Each subclass carries the HTTP status the caller should answer with and a
    stable ``error_code`` so clients can branch without parsing messages.
    """

    status_code: int = 400
    error_code: str = "validation_error"
    default_message: str = "Request could not be processed"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        message = message or self.default_message
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}

    def to_dict(self) -> dict:
        body = {"error": self.error_code, "message": self.message}
        if self.detail:
            body["detail"] = self.detail
        return body


class InvalidCredentials(ServiceError):
    status_code = 401
    error_code = "invalid_credentials"
    default_message = "Invalid email or password"


class AccountNotActive(ServiceError):
    status_code = 403
    error_code = "account_not_active"
    default_message = "Account is not active"


class EmailNotVerified(ServiceError):
    status_code = 403
    error_code = "email_not_verified"
    default_message = "Email is not verified. Please verify your email first."


class EmailAlreadyExists(ServiceError):
    status_code = 409
    error_code = "email_already_exists"
    default_message = "User with this email already exists"


class TwoFactorRequired(ServiceError):
    status_code = 401
    error_code = "two_factor_required"
    default_message = "Two-factor authentication is required"


class InvalidTwoFactorCode(ServiceError):
    status_code = 400
    error_code = "invalid_two_factor_code"
    default_message = "Invalid two-factor authentication code"


class TokenExpired(ServiceError):
    status_code = 401
    error_code = "token_expired"
    default_message = "Token has expired"


class TokenBlacklisted(ServiceError):
    status_code = 401
    error_code = "token_revoked"
    default_message = "Token has been revoked"


class InvalidToken(ServiceError):
    status_code = 401
    error_code = "invalid_token"
    default_message = "Invalid token"


class PasswordTooWeak(ServiceError):
    status_code = 400
    error_code = "password_too_weak"
    default_message = "Password is too weak"


class SamePassword(ServiceError):
    status_code = 400
    error_code = "same_password"
    default_message = "New password must be different from the current password"


class CodeExpiredOrMissing(ServiceError):
    status_code = 400
    error_code = "code_expired"
    default_message = "Code has expired or does not exist"


class CodeMismatch(ServiceError):
    status_code = 400
    error_code = "code_mismatch"
    default_message = "Invalid code"


class AlreadyEnabled(ServiceError):
    status_code = 409
    error_code = "two_factor_already_enabled"
    default_message = "Two-factor authentication is already enabled"


class NotEnabled(ServiceError):
    status_code = 400
    error_code = "two_factor_not_enabled"
    default_message = "Two-factor authentication is not enabled"


class SetupExpired(ServiceError):
    status_code = 400
    error_code = "two_factor_setup_expired"
    default_message = "Two-factor setup expired. Please generate a new QR code."


class StoreUnavailable(ServiceError):
    """A backing store could not be reached; the request must be retried."""

    status_code = 503
    error_code = "server_error"
    default_message = "Service temporarily unavailable"


__all__ = [
    "ServiceError",
    "InvalidCredentials",
    "AccountNotActive",
    "EmailNotVerified",
    "EmailAlreadyExists",
    "TwoFactorRequired",
    "InvalidTwoFactorCode",
    "TokenExpired",
    "TokenBlacklisted",
    "InvalidToken",
    "PasswordTooWeak",
    "SamePassword",
    "CodeExpiredOrMissing",
    "CodeMismatch",
    "AlreadyEnabled",
    "NotEnabled",
    "SetupExpired",
    "StoreUnavailable",
]
