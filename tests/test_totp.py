import base64
from urllib.parse import parse_qs, urlparse

import pytest

from authcore.service.totp import TOTPEngine, random_base32_secret

from conftest import FakeClock

# RFC 6238 appendix B seeds
SHA1_SECRET = base64.b32encode(b"12345678901234567890").decode()
SHA256_SECRET = base64.b32encode(b"12345678901234567890123456789012").decode()
SHA512_SECRET = base64.b32encode(
    b"1234567890123456789012345678901234567890123456789012345678901234"
).decode()


@pytest.mark.parametrize(
    "digest,secret,timestamp,expected",
    [
        ("sha1", SHA1_SECRET, 59, "94287082"),
        ("sha1", SHA1_SECRET, 1111111109, "07081804"),
        ("sha1", SHA1_SECRET, 1234567890, "89005924"),
        ("sha256", SHA256_SECRET, 59, "46119246"),
        ("sha512", SHA512_SECRET, 59, "90693936"),
    ],
)
def test_rfc6238_vectors(digest, secret, timestamp, expected):
    engine = TOTPEngine(digits=8, digest=digest)
    assert engine.generate(secret, timestamp) == expected


def test_six_digit_codes_truncate_the_same_value():
    engine = TOTPEngine()
    assert engine.generate(SHA1_SECRET, 59) == "287082"


def test_random_secret_is_base32():
    secret = random_base32_secret()
    assert len(secret) == 32
    assert base64.b32decode(secret)
    assert secret != random_base32_secret()


def test_unknown_digest_rejected():
    with pytest.raises(ValueError):
        TOTPEngine(digest="md5")


class TestVerifyWindow:
    def setup_method(self):
        self.clock = FakeClock()
        self.engine = TOTPEngine(window=2, clock=self.clock)
        self.secret = random_base32_secret()

    def test_current_code(self):
        code = self.engine.generate(self.secret)
        assert self.engine.verify(self.secret, code)

    @pytest.mark.parametrize("drift", [-60, -30, 30, 60])
    def test_accepts_codes_within_window(self, drift):
        code = self.engine.generate(self.secret)
        self.clock.advance(drift)
        assert self.engine.verify(self.secret, code)

    @pytest.mark.parametrize("drift", [-90, 90, 300])
    def test_rejects_codes_outside_window(self, drift):
        code = self.engine.generate(self.secret)
        self.clock.advance(drift)
        assert not self.engine.verify(self.secret, code)

    def test_zero_window_needs_exact_step(self):
        code = self.engine.generate(self.secret)
        self.clock.advance(30)
        assert not self.engine.verify(self.secret, code, window=0)

    @pytest.mark.parametrize(
        "code", ["", "12345", "1234567", "12a456", " 12345", "\u0661\u0662\u0663\u0664\u0665\u0666"]
    )
    def test_rejects_malformed_codes(self, code):
        assert not self.engine.verify(self.secret, code)

    def test_invalid_secret(self):
        assert not self.engine.verify("not base32!", "123456")
        with pytest.raises(ValueError):
            self.engine.generate("not base32!")


def test_provisioning_uri():
    engine = TOTPEngine()
    uri = engine.provisioning_uri("JBSWY3DPEHPK3PXP", "alice@example.com", "StudentHub")
    parsed = urlparse(uri)

    assert parsed.scheme == "otpauth"
    assert parsed.netloc == "totp"
    assert parsed.path == "/StudentHub:alice@example.com"
    params = parse_qs(parsed.query)
    assert params == {
        "secret": ["JBSWY3DPEHPK3PXP"],
        "issuer": ["StudentHub"],
        "algorithm": ["SHA1"],
        "digits": ["6"],
        "period": ["30"],
    }


def test_qr_data_url_is_png():
    url = TOTPEngine.qr_data_url("otpauth://totp/StudentHub:a@example.com?secret=JBSWY3DPEHPK3PXP")
    prefix = "data:image/png;base64,"
    assert url.startswith(prefix)
    assert base64.b64decode(url[len(prefix):]).startswith(b"\x89PNG")
