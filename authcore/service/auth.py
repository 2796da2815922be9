from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from typing import Optional, Union

from authcore.logging import get_logger, redact_email
from authcore.service.credentials import CredentialVerifier
from authcore.service.email import EmailService
from authcore.service.errors import (
    AccountNotActive,
    EmailAlreadyExists,
    EmailNotVerified,
    InvalidCredentials,
    InvalidTwoFactorCode,
    SamePassword,
    ServiceError,
    TokenBlacklisted,
)
from authcore.service.passwords import SecretHasher, validate_password_strength
from authcore.service.tokens import AccessClaims, TokenPair, TokenService
from authcore.service.two_factor import EnrollmentTicket, TwoFactorService
from authcore.service.verification import CodePurpose, VerificationCodeService
from authcore.storage.common import EphemeralStore, IdentityStore, normalize_email
from authcore.storage.errors import ConstraintViolation
from authcore.storage.models import Identity, Role

logger = get_logger(__name__)


def challenge_key(user_id: str) -> str:
    return f"2fa:temp:{user_id}"


@dataclass(frozen=True)
class Authenticated:
    user: Identity
    tokens: TokenPair

    def as_dict(self) -> dict:
        return {"user": self.user.public_dict(), **self.tokens.as_dict()}


@dataclass(frozen=True)
class TwoFactorRequired:
    user_id: str
    temporary_token: str
    requires_two_factor: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Rejected:
    error: ServiceError

    def raise_error(self) -> None:
        raise self.error


LoginOutcome = Union[Authenticated, TwoFactorRequired, Rejected]


@dataclass(frozen=True)
class AuthContext:
    """The caller behind a verified access token."""

    user: Identity
    claims: AccessClaims

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def role(self) -> Role:
        return self.user.role


class AuthService:
    """Registration, login, token lifecycle, password and 2FA flows.

    Every collaborator is passed in; see ``authcore.service.runtime`` for the
    standard wiring.
    """

    def __init__(
        self,
        store: IdentityStore,
        cache: EphemeralStore,
        *,
        hasher: SecretHasher,
        tokens: TokenService,
        codes: VerificationCodeService,
        two_factor: TwoFactorService,
        email: EmailService,
        challenge_ttl_seconds: int = 5 * 60,
    ) -> None:
        self.store = store
        self.cache = cache
        self.hasher = hasher
        self.tokens = tokens
        self.codes = codes
        self.two_factor = two_factor
        self.email = email
        self.credentials = CredentialVerifier(store, hasher)
        self.challenge_ttl_seconds = challenge_ttl_seconds

    async def _send_code(self, email: str, purpose: CodePurpose) -> None:
        code = await self.codes.issue(purpose, email)
        await self.email.send_code(email, purpose, code)

    async def _issue_tokens(self, user: Identity) -> TokenPair:
        return await self.tokens.issue_pair(user.id, user.email, user.role.value)

    def _require_user(self, user_id: str) -> Identity:
        user = self.store.find_by_id(user_id)
        if not user:
            raise InvalidCredentials("User not found")
        return user

    # -- registration -------------------------------------------------------

    async def register(
        self,
        email: str,
        password: str,
        name: Optional[str] = None,
        role: Optional[Role] = None,
    ) -> dict:
        validate_password_strength(password)
        email = normalize_email(email)
        if self.store.find_by_email(email):
            raise EmailAlreadyExists()
        pwd_hash = await self.hasher.hash(password)
        try:
            user = self.store.create(
                email, pwd_hash, name=name, role=Role(role) if role else Role.STUDENT
            )
        except ConstraintViolation:
            # Lost a race with a concurrent registration for the same email
            raise EmailAlreadyExists()
        await self._send_code(user.email, CodePurpose.EMAIL_VERIFY)
        logger.info("user_registered", user_id=user.id, role=user.role.value)
        return {
            "message": "Registration successful. Please check your email for verification code.",
            "email": user.email,
        }

    async def verify_email(self, email: str, code: str) -> dict:
        await self.codes.verify(CodePurpose.EMAIL_VERIFY, email, code)
        user = self.store.find_by_email(email)
        if not user:
            raise InvalidCredentials("User not found")
        self.store.mark_email_verified(user.id)
        logger.info("email_verified", user_id=user.id)
        return {"message": "Email verified successfully"}

    async def resend_verification(self, email: str) -> dict:
        user = self.store.find_by_email(email)
        if not user:
            return {"message": "If email exists, verification code has been sent"}
        if user.email_verified:
            return {"message": "Email is already verified"}
        await self._send_code(user.email, CodePurpose.EMAIL_VERIFY)
        logger.info("verification_resent", user_id=user.id)
        return {"message": "Verification code has been sent to your email"}

    # -- login --------------------------------------------------------------

    async def login(
        self, email: str, password: str, code: Optional[str] = None
    ) -> LoginOutcome:
        try:
            user = await self.credentials.verify(email, password)
        except (InvalidCredentials, AccountNotActive) as exc:
            logger.warning("login_failed", email=redact_email(email), reason=exc.error_code)
            return Rejected(exc)
        if not user.email_verified:
            return Rejected(EmailNotVerified())

        if user.two_factor_enabled:
            if not code:
                temporary_token = self.tokens.issue_challenge_token(
                    user.id, self.challenge_ttl_seconds
                )
                await self.cache.set(
                    challenge_key(user.id), temporary_token, ttl=self.challenge_ttl_seconds
                )
                logger.info("login_two_factor_challenge", user_id=user.id)
                return TwoFactorRequired(user_id=user.id, temporary_token=temporary_token)
            if not user.two_factor_secret or not await self.two_factor.verify(
                user.two_factor_secret, code
            ):
                logger.warning("login_two_factor_failed", user_id=user.id)
                return Rejected(InvalidTwoFactorCode())
            await self.cache.delete(challenge_key(user.id))

        tokens = await self._issue_tokens(user)
        logger.info("login_succeeded", user_id=user.id)
        return Authenticated(user=user, tokens=tokens)

    async def verify_2fa_login(
        self, user_id: str, code: str, temporary_token: str
    ) -> Authenticated:
        staged = await self.cache.get(challenge_key(user_id))
        if not staged or not hmac.compare_digest(
            staged.encode("utf-8"), (temporary_token or "").encode("utf-8")
        ):
            raise InvalidCredentials()
        challenge = self.tokens.decode_challenge_token(temporary_token)
        if challenge["sub"] != user_id:
            raise InvalidCredentials()
        if await self.tokens.password_changed_after(user_id, challenge["iat"]):
            await self.cache.delete(challenge_key(user_id))
            raise TokenBlacklisted("Password changed during sign-in")

        user = self.store.find_by_id(user_id)
        if not user or not user.two_factor_enabled or not user.two_factor_secret:
            raise InvalidTwoFactorCode()
        if not user.is_active:
            raise AccountNotActive()
        if not await self.two_factor.verify(user.two_factor_secret, code):
            logger.warning("login_two_factor_failed", user_id=user.id)
            raise InvalidTwoFactorCode()

        await self.cache.delete(challenge_key(user_id))
        tokens = await self._issue_tokens(user)
        logger.info("login_succeeded", user_id=user.id, two_factor=True)
        return Authenticated(user=user, tokens=tokens)

    # -- sessions -----------------------------------------------------------

    async def refresh(self, refresh_token: str) -> TokenPair:
        claims = await self.tokens.consume_refresh_token(refresh_token)
        user = self.store.find_by_id(claims.sub)
        if not user or not user.is_active:
            raise InvalidCredentials()
        logger.info("session_rotated", user_id=user.id, session_id=claims.sid)
        return await self._issue_tokens(user)

    async def logout(
        self, refresh_token: str, access_token: Optional[str] = None
    ) -> dict:
        await self.tokens.revoke_refresh_token(refresh_token)
        if access_token:
            await self.tokens.revoke_access_token(access_token)
        return {"message": "Logged out successfully"}

    async def logout_all(self, user_id: str) -> dict:
        count = await self.tokens.revoke_all_refresh_tokens(user_id)
        logger.info("logout_all", user_id=user_id, sessions=count)
        return {"message": "Logged out from all devices successfully"}

    async def authenticate(self, access_token: str) -> AuthContext:
        claims = await self.tokens.verify_access_token(access_token)
        if await self.tokens.password_changed_after(claims.sub, claims.iat):
            raise TokenBlacklisted("Token was issued before the last password change")
        user = self.store.find_by_id(claims.sub)
        if not user:
            raise InvalidCredentials("User not found")
        if not user.is_active:
            raise AccountNotActive()
        return AuthContext(user=user, claims=claims)

    async def get_current_user(self, user_id: str) -> Identity:
        return self._require_user(user_id)

    # -- passwords ----------------------------------------------------------

    async def _replace_password(self, user: Identity, new_password: str) -> None:
        if await self.hasher.verify(user.password_hash, new_password):
            raise SamePassword()
        self.store.update_credential(user.id, await self.hasher.hash(new_password))
        await self.tokens.revoke_all_refresh_tokens(user.id)
        await self.tokens.mark_password_changed(user.id)

    async def change_password(
        self, user_id: str, current_password: str, new_password: str
    ) -> dict:
        user = self._require_user(user_id)
        if not await self.hasher.verify(user.password_hash, current_password):
            raise InvalidCredentials("Current password is incorrect")
        validate_password_strength(new_password)
        await self._replace_password(user, new_password)
        logger.info("password_changed", user_id=user.id)
        return {"message": "Password changed successfully"}

    async def forgot_password(self, email: str) -> dict:
        user = self.store.find_by_email(email)
        if user:
            await self._send_code(user.email, CodePurpose.PASSWORD_RESET)
            logger.info("password_reset_requested", user_id=user.id)
        return {"message": "If email exists, password reset code has been sent"}

    async def reset_password(self, email: str, code: str, new_password: str) -> dict:
        validate_password_strength(new_password)
        await self.codes.verify(CodePurpose.PASSWORD_RESET, email, code)
        user = self.store.find_by_email(email)
        if not user:
            raise InvalidCredentials()
        await self._replace_password(user, new_password)
        logger.info("password_reset_completed", user_id=user.id)
        return {"message": "Password reset successfully"}

    # -- two-factor ---------------------------------------------------------

    async def generate_2fa(self, user_id: str) -> EnrollmentTicket:
        user = self._require_user(user_id)
        return await self.two_factor.begin_enrollment(user.id, user.email)

    async def enable_2fa(self, user_id: str, code: str) -> dict:
        await self.two_factor.confirm_enrollment(user_id, code)
        return {"message": "2FA enabled successfully"}

    async def disable_2fa(self, user_id: str, code: str) -> dict:
        await self.two_factor.disable(user_id, code)
        return {"message": "2FA disabled successfully"}
