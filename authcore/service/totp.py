"""RFC 6238 time-based one-time passwords.

Codes are HMAC-SHA1 over a 30 second counter by default, which is what
Google Authenticator, Authy and friends expect from an ``otpauth://`` URI.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import io
import secrets
import time
from typing import Callable, Optional
from urllib.parse import quote, urlencode

import qrcode

from authcore.logging import get_logger

logger = get_logger(__name__)

_DIGESTS = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
}


def random_base32_secret(num_bytes: int = 20) -> str:
    """160-bit secret, base32 without padding (RFC 4226 recommendation)."""
    return base64.b32encode(secrets.token_bytes(num_bytes)).decode("ascii").rstrip("=")


def _decode_secret(secret: str) -> Optional[bytes]:
    cleaned = secret.replace(" ", "").upper()
    padded = cleaned + "=" * ((8 - len(cleaned) % 8) % 8)
    try:
        return base64.b32decode(padded, casefold=True)
    except (binascii.Error, ValueError):
        return None


class TOTPEngine:
    def __init__(
        self,
        *,
        digits: int = 6,
        period: int = 30,
        digest: str = "sha1",
        window: int = 2,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if digest not in _DIGESTS:
            raise ValueError(f"unsupported TOTP digest: {digest}")
        self.digits = digits
        self.period = period
        self.digest = digest
        self.window = window
        self._clock = clock

    def generate(self, secret: str, timestamp: Optional[float] = None) -> str:
        key = _decode_secret(secret)
        if key is None:
            raise ValueError("TOTP secret is not valid base32")
        return self._code_for_counter(key, self._counter(timestamp))

    def verify(self, secret: str, code: str, *, window: Optional[int] = None) -> bool:
        """Check ``code`` against the steps within ``window`` of now."""
        if not code or len(code) != self.digits or not (code.isascii() and code.isdigit()):
            return False
        key = _decode_secret(secret)
        if key is None:
            logger.warning("totp_secret_invalid")
            return False
        allowed = self.window if window is None else window
        counter = self._counter(None)
        matched = False
        # Every step is compared so timing does not reveal which one matched
        for offset in range(-allowed, allowed + 1):
            if counter + offset < 0:
                continue
            candidate = self._code_for_counter(key, counter + offset)
            if hmac.compare_digest(candidate, code):
                matched = True
        return matched

    def provisioning_uri(self, secret: str, account: str, issuer: str) -> str:
        label = quote(f"{issuer}:{account}", safe="@:")
        params = urlencode(
            {
                "secret": secret,
                "issuer": issuer,
                "algorithm": self.digest.upper(),
                "digits": self.digits,
                "period": self.period,
            },
            quote_via=quote,
        )
        return f"otpauth://totp/{label}?{params}"

    @staticmethod
    def qr_data_url(uri: str) -> str:
        """Render ``uri`` as a PNG QR code embedded in a data URL."""
        image = qrcode.make(uri)
        buf = io.BytesIO()
        image.save(buf, format="PNG")
        encoded = base64.b64encode(buf.getvalue()).decode("ascii")
        return f"data:image/png;base64,{encoded}"

    def _counter(self, timestamp: Optional[float]) -> int:
        moment = self._clock() if timestamp is None else timestamp
        return int(moment // self.period)

    def _code_for_counter(self, key: bytes, counter: int) -> str:
        digest = hmac.new(key, counter.to_bytes(8, "big"), _DIGESTS[self.digest]).digest()
        offset = digest[-1] & 0x0F
        code_int = (int.from_bytes(digest[offset : offset + 4], "big") & 0x7FFFFFFF) % (
            10**self.digits
        )
        return str(code_int).zfill(self.digits)
