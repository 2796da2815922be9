from __future__ import annotations

import hmac
import secrets


def generate_numeric_code(length: int = 6) -> str:
    """Uniformly random decimal code, zero-padded to ``length`` digits."""
    if length < 1:
        raise ValueError("code length must be positive")
    return str(secrets.randbelow(10**length)).zfill(length)


def codes_match(expected: str, submitted: str) -> bool:
    # SECURITY: constant-time with respect to the stored code's content
    return hmac.compare_digest(
        (expected or "").encode("utf-8"), (submitted or "").encode("utf-8")
    )
