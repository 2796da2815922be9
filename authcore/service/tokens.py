from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional

from authcore.config import Settings
from authcore.logging import get_logger
from authcore.service.errors import InvalidToken, TokenBlacklisted, TokenExpired
from authcore.storage.common import EphemeralStore

logger = get_logger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
# Signed with the access key but never accepted as a bearer token
CHALLENGE_TOKEN_TYPE = "2fa"


def session_record_key(user_id: str, session_id: str) -> str:
    return f"refresh:{user_id}:{session_id}"


def session_index_key(user_id: str) -> str:
    return f"session:{user_id}"


def blacklist_key(token_id: str) -> str:
    return f"blacklist:{token_id}"


def password_changed_key(user_id: str) -> str:
    return f"password_changed:{user_id}"


@dataclass(frozen=True)
class AccessClaims:
    sub: str
    email: str
    role: str
    iat: float
    exp: int
    jti: str


@dataclass(frozen=True)
class RefreshClaims:
    sub: str
    sid: str
    iat: float
    exp: int


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class TokenService:
    """Mints and checks signed access/refresh tokens.

    Refresh tokens are bound to a session id whose record lives in the
    ephemeral store; the record's existence is what makes the token usable.
    Access tokens are self-contained and only revocable through the
    password-changed marker or an explicit denylist entry for their ``jti``.
    """

    def __init__(
        self,
        cache: EphemeralStore,
        *,
        access_secret: str,
        refresh_secret: str,
        access_ttl_seconds: int = 15 * 60,
        refresh_ttl_seconds: int = 7 * 24 * 60 * 60,
        leeway_seconds: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("access and refresh tokens need separate signing keys")
        self.cache = cache
        self._access_secret = access_secret.encode()
        self._refresh_secret = refresh_secret.encode()
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self.leeway_seconds = leeway_seconds
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        cache: EphemeralStore,
        settings: Settings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> "TokenService":
        return cls(
            cache,
            access_secret=settings.jwt_secret,
            refresh_secret=settings.jwt_refresh_secret,
            access_ttl_seconds=settings.access_token_ttl_seconds,
            refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
            leeway_seconds=settings.token_leeway_seconds,
            clock=clock,
        )

    # -- encoding -----------------------------------------------------------

    def _sign(self, signing_input: str, secret: bytes) -> str:
        return _encode_segment(
            hmac.new(secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def _encode(self, payload: dict[str, Any], secret: bytes) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = _encode_segment(json.dumps(header, separators=(",", ":")).encode())
        payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input, secret)}"

    def _decode(
        self,
        token: str,
        secret: bytes,
        expected_type: str,
        *,
        verify_exp: bool = True,
    ) -> dict[str, Any]:
        # Tokens are base64url text; compare_digest also refuses non-ASCII str
        if not isinstance(token, str) or not token.isascii():
            raise InvalidToken()
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise InvalidToken()

        # Reject anything but HS256 to rule out algorithm confusion
        try:
            header = json.loads(_decode_segment(header_b64))
        except (ValueError, TypeError):
            raise InvalidToken()
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("token_invalid_algorithm")
            raise InvalidToken()

        expected_sig = self._sign(f"{header_b64}.{payload_b64}", secret)
        if not hmac.compare_digest(expected_sig, sig_b64):
            raise InvalidToken()

        try:
            payload = json.loads(_decode_segment(payload_b64))
        except (ValueError, TypeError):
            raise InvalidToken()
        if not isinstance(payload, dict) or payload.get("typ") != expected_type:
            raise InvalidToken()
        if not payload.get("sub"):
            raise InvalidToken()
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or not isinstance(
            payload.get("iat"), (int, float)
        ):
            raise InvalidToken()
        if verify_exp and exp <= self._clock() - self.leeway_seconds:
            raise TokenExpired()
        return payload

    def _remaining_seconds(self, exp: float) -> int:
        return int(exp - self._clock())

    # -- issuing ------------------------------------------------------------

    def issue_access_token(self, user_id: str, email: str, role: str) -> str:
        now = self._clock()
        payload = {
            "sub": user_id,
            "email": email,
            "role": role,
            "iat": round(now, 3),
            "exp": int(now + self.access_ttl_seconds),
            "jti": str(uuid.uuid4()),
            "typ": ACCESS_TOKEN_TYPE,
        }
        return self._encode(payload, self._access_secret)

    def issue_challenge_token(self, user_id: str, ttl_seconds: int) -> str:
        """Short-lived token handed out between password and TOTP checks."""
        now = self._clock()
        payload = {
            "sub": user_id,
            "iat": round(now, 3),
            "exp": int(now + ttl_seconds),
            "jti": str(uuid.uuid4()),
            "typ": CHALLENGE_TOKEN_TYPE,
        }
        return self._encode(payload, self._access_secret)

    async def issue_refresh_token(self, user_id: str) -> str:
        now = self._clock()
        session_id = str(uuid.uuid4())
        payload = {
            "sub": user_id,
            "sid": session_id,
            "iat": round(now, 3),
            "exp": int(now + self.refresh_ttl_seconds),
            "typ": REFRESH_TOKEN_TYPE,
        }
        token = self._encode(payload, self._refresh_secret)
        await self.cache.set(
            session_record_key(user_id, session_id), "1", ttl=self.refresh_ttl_seconds
        )
        index = session_index_key(user_id)
        await self.cache.sadd(index, session_id)
        await self.cache.expire(index, self.refresh_ttl_seconds)
        logger.debug("refresh_token_issued", user_id=user_id, session_id=session_id)
        return token

    async def issue_pair(self, user_id: str, email: str, role: str) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(user_id, email, role),
            refresh_token=await self.issue_refresh_token(user_id),
            expires_in=self.access_ttl_seconds,
        )

    # -- verification -------------------------------------------------------

    def decode_access_token(self, token: str) -> AccessClaims:
        """Signature and expiry only; no store lookups."""
        payload = self._decode(token, self._access_secret, ACCESS_TOKEN_TYPE)
        try:
            return AccessClaims(
                sub=str(payload["sub"]),
                email=str(payload["email"]),
                role=str(payload["role"]),
                iat=float(payload["iat"]),
                exp=int(payload["exp"]),
                jti=str(payload["jti"]),
            )
        except KeyError:
            raise InvalidToken()

    def decode_challenge_token(self, token: str) -> dict[str, Any]:
        return self._decode(token, self._access_secret, CHALLENGE_TOKEN_TYPE)

    def decode_refresh_token(self, token: str, *, verify_exp: bool = True) -> RefreshClaims:
        payload = self._decode(
            token, self._refresh_secret, REFRESH_TOKEN_TYPE, verify_exp=verify_exp
        )
        if not payload.get("sid"):
            raise InvalidToken()
        return RefreshClaims(
            sub=str(payload["sub"]),
            sid=str(payload["sid"]),
            iat=float(payload["iat"]),
            exp=int(payload["exp"]),
        )

    async def verify_access_token(self, token: str) -> AccessClaims:
        claims = self.decode_access_token(token)
        if await self.cache.exists(blacklist_key(claims.jti)):
            raise TokenBlacklisted()
        return claims

    async def verify_refresh_token(self, token: str) -> RefreshClaims:
        claims = self.decode_refresh_token(token)
        if await self.cache.exists(blacklist_key(claims.sid)):
            raise TokenBlacklisted()
        # A deleted session record is as final as an explicit blacklist entry
        if not await self.cache.exists(session_record_key(claims.sub, claims.sid)):
            raise TokenBlacklisted()
        return claims

    # -- revocation ---------------------------------------------------------

    async def _blacklist(self, token_id: str, ttl: int) -> None:
        await self.cache.set(blacklist_key(token_id), "1", ttl=max(1, ttl))

    async def _retire_session(self, claims: RefreshClaims) -> None:
        await self.cache.srem(session_index_key(claims.sub), claims.sid)
        await self._blacklist(claims.sid, self._remaining_seconds(claims.exp))

    async def consume_refresh_token(self, token: str) -> RefreshClaims:
        """Verify a refresh token and revoke it, for rotation.

        Deleting the session record is the claim: when two callers present
        the same token concurrently only the one whose delete removed the
        record gets the claims back, the other gets ``TokenBlacklisted``.
        """
        claims = await self.verify_refresh_token(token)
        if not await self.cache.delete(session_record_key(claims.sub, claims.sid)):
            logger.warning("refresh_token_reuse", user_id=claims.sub, session_id=claims.sid)
            raise TokenBlacklisted()
        await self._retire_session(claims)
        logger.info("refresh_token_consumed", user_id=claims.sub, session_id=claims.sid)
        return claims

    async def revoke_refresh_token(self, token: str) -> bool:
        """Best-effort revocation; returns False for tokens that do not parse."""
        try:
            claims = self.decode_refresh_token(token, verify_exp=False)
        except InvalidToken:
            logger.info("refresh_token_revoke_skipped", reason="unparseable")
            return False
        await self.cache.delete(session_record_key(claims.sub, claims.sid))
        await self._retire_session(claims)
        logger.info("refresh_token_revoked", user_id=claims.sub, session_id=claims.sid)
        return True

    async def revoke_all_refresh_tokens(self, user_id: str) -> int:
        index = session_index_key(user_id)
        session_ids = await self.cache.smembers(index)
        for session_id in session_ids:
            record = session_record_key(user_id, session_id)
            remaining = await self.cache.ttl(record)
            await self.cache.delete(record)
            ttl = remaining if remaining > 0 else self.refresh_ttl_seconds
            await self._blacklist(session_id, ttl)
        await self.cache.delete(index)
        logger.info("refresh_tokens_revoked_all", user_id=user_id, count=len(session_ids))
        return len(session_ids)

    async def revoke_access_token(self, token: str) -> bool:
        """Denylist one access token until it would have expired anyway."""
        try:
            claims = self.decode_access_token(token)
        except (InvalidToken, TokenExpired):
            return False
        await self._blacklist(claims.jti, self._remaining_seconds(claims.exp))
        logger.info("access_token_revoked", user_id=claims.sub)
        return True

    async def mark_password_changed(self, user_id: str, at: Optional[float] = None) -> float:
        changed_at = round(self._clock() if at is None else at, 3)
        await self.cache.set(
            password_changed_key(user_id), repr(changed_at), ttl=self.refresh_ttl_seconds
        )
        return changed_at

    async def password_changed_after(self, user_id: str, issued_at: float) -> bool:
        raw = await self.cache.get(password_changed_key(user_id))
        if raw is None:
            return False
        try:
            changed_at = float(raw)
        except ValueError:
            # Unreadable marker: fail closed
            logger.warning("password_changed_marker_invalid", user_id=user_id)
            return True
        return changed_at > issued_at
