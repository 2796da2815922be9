"""Two-factor enrollment state machine."""

from urllib.parse import parse_qs, urlparse

import pytest

from authcore.service.errors import (
    AlreadyEnabled,
    InvalidTwoFactorCode,
    NotEnabled,
    SetupExpired,
)
from authcore.service.two_factor import setup_stage_key


@pytest.fixture
def user(store):
    return store.create("totp@example.com", "hash", name="Totp User")


def _wrong(code):
    return "000000" if code != "000000" else "111111"


async def test_begin_enrollment_stages_secret(two_factor, cache, user):
    ticket = await two_factor.begin_enrollment(user.id, user.email)

    assert await cache.get(setup_stage_key(user.id)) == ticket.secret
    assert await cache.ttl(setup_stage_key(user.id)) == 10 * 60
    params = parse_qs(urlparse(ticket.otpauth_uri).query)
    assert params["secret"] == [ticket.secret]
    assert params["issuer"] == ["StudentHub"]
    assert ticket.qr_code.startswith("data:image/png;base64,")


async def test_confirm_enables_and_encrypts(two_factor, totp, store, cache, user):
    ticket = await two_factor.begin_enrollment(user.id, user.email)
    await two_factor.confirm_enrollment(user.id, totp.generate(ticket.secret))

    refreshed = store.find_by_id(user.id)
    assert refreshed.two_factor_enabled is True
    assert refreshed.two_factor_secret == ticket.secret
    # At rest the secret is only held encrypted
    assert store.identities[user.id].two_factor_secret != ticket.secret
    assert not await cache.exists(setup_stage_key(user.id))


async def test_confirm_with_wrong_code_keeps_stage(two_factor, totp, store, cache, user):
    ticket = await two_factor.begin_enrollment(user.id, user.email)
    with pytest.raises(InvalidTwoFactorCode):
        await two_factor.confirm_enrollment(user.id, _wrong(totp.generate(ticket.secret)))

    assert store.find_by_id(user.id).two_factor_enabled is False
    assert await cache.exists(setup_stage_key(user.id))


async def test_stage_expires(two_factor, totp, clock, user):
    ticket = await two_factor.begin_enrollment(user.id, user.email)
    clock.advance(10 * 60)
    with pytest.raises(SetupExpired):
        await two_factor.confirm_enrollment(user.id, totp.generate(ticket.secret))


async def test_confirm_without_begin(two_factor, user):
    with pytest.raises(SetupExpired):
        await two_factor.confirm_enrollment(user.id, "123456")


async def test_begin_when_already_enabled(two_factor, store, user):
    store.update_two_factor(user.id, True, "JBSWY3DPEHPK3PXP")
    with pytest.raises(AlreadyEnabled):
        await two_factor.begin_enrollment(user.id, user.email)


async def test_disable(two_factor, totp, store, user):
    store.update_two_factor(user.id, True, "JBSWY3DPEHPK3PXP")
    code = totp.generate("JBSWY3DPEHPK3PXP")

    with pytest.raises(InvalidTwoFactorCode):
        await two_factor.disable(user.id, _wrong(code))
    await two_factor.disable(user.id, code)

    refreshed = store.find_by_id(user.id)
    assert refreshed.two_factor_enabled is False
    assert refreshed.two_factor_secret is None


async def test_disable_when_not_enabled(two_factor, user):
    with pytest.raises(NotEnabled):
        await two_factor.disable(user.id, "123456")


async def test_verify_runs_off_loop(two_factor, totp):
    assert await two_factor.verify("JBSWY3DPEHPK3PXP", totp.generate("JBSWY3DPEHPK3PXP"))
    assert not await two_factor.verify("JBSWY3DPEHPK3PXP", "abcdef")
