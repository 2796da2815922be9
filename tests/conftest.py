import asyncio
import inspect
import os
import sys
from pathlib import Path

os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from authcore.service.auth import AuthService  # noqa: E402
from authcore.service.email import EmailService  # noqa: E402
from authcore.service.passwords import SecretHasher  # noqa: E402
from authcore.service.tokens import TokenService  # noqa: E402
from authcore.service.totp import TOTPEngine  # noqa: E402
from authcore.service.two_factor import TwoFactorService  # noqa: E402
from authcore.service.verification import VerificationCodeService  # noqa: E402
from authcore.storage.memory import MemoryCache, MemoryIdentityStore  # noqa: E402

# Divisible by 30 so TOTP steps line up with whole clock advances
EPOCH = 1_699_999_980.0


class FakeClock:
    def __init__(self, start: float = EPOCH):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingEmailService(EmailService):
    """Captures outgoing codes instead of talking to SMTP."""

    def __init__(self):
        super().__init__()
        self.sent = []

    def send_code_sync(self, to_email, purpose, code):
        self.sent.append((to_email, purpose, code))
        return True

    def last_code(self, email, purpose):
        for to_email, sent_purpose, code in reversed(self.sent):
            if to_email == email and sent_purpose == purpose:
                return code
        raise AssertionError(f"no {purpose} code sent to {email}")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def store():
    return MemoryIdentityStore(mfa_encryption_key="test-mfa-encryption-key")


@pytest.fixture(scope="session")
def hasher():
    return SecretHasher(time_cost=1, memory_cost=1024, parallelism=1)


@pytest.fixture
def tokens(cache, clock):
    return TokenService(
        cache,
        access_secret="access-secret-for-tests-only",
        refresh_secret="refresh-secret-for-tests-only",
        clock=clock,
    )


@pytest.fixture
def codes(cache):
    return VerificationCodeService(cache)


@pytest.fixture
def totp(clock):
    return TOTPEngine(clock=clock)


@pytest.fixture
def two_factor(store, cache, totp):
    return TwoFactorService(store, cache, totp, issuer="StudentHub")


@pytest.fixture
def outbox():
    return RecordingEmailService()


@pytest.fixture
def auth(store, cache, hasher, tokens, codes, two_factor, outbox):
    return AuthService(
        store,
        cache,
        hasher=hasher,
        tokens=tokens,
        codes=codes,
        two_factor=two_factor,
        email=outbox,
    )


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
