import pytest

from authcore.service.errors import CodeExpiredOrMissing, CodeMismatch
from authcore.service.verification import CodePurpose, VerificationCodeService


async def test_issue_and_consume(codes, cache):
    code = await codes.issue(CodePurpose.EMAIL_VERIFY, "Alice@Example.com")

    assert len(code) == 6 and code.isdigit()
    assert await cache.get("verify:alice@example.com") == code
    assert await cache.ttl("verify:alice@example.com") == 15 * 60

    await codes.verify(CodePurpose.EMAIL_VERIFY, "alice@example.com", code)
    with pytest.raises(CodeExpiredOrMissing):
        await codes.verify(CodePurpose.EMAIL_VERIFY, "alice@example.com", code)


async def test_mismatch_keeps_code(codes):
    code = await codes.issue(CodePurpose.PASSWORD_RESET, "bob@example.com")
    wrong = "000000" if code != "000000" else "111111"

    with pytest.raises(CodeMismatch):
        await codes.verify(CodePurpose.PASSWORD_RESET, "bob@example.com", wrong)
    await codes.verify(CodePurpose.PASSWORD_RESET, "bob@example.com", code)


async def test_expires_with_ttl(codes, clock):
    code = await codes.issue(CodePurpose.EMAIL_VERIFY, "carol@example.com")
    clock.advance(15 * 60)
    with pytest.raises(CodeExpiredOrMissing):
        await codes.verify(CodePurpose.EMAIL_VERIFY, "carol@example.com", code)


async def test_resend_overwrites_same_purpose_only(cache):
    sequence = iter(["111111", "222222", "333333"])
    codes = VerificationCodeService(cache, code_generator=lambda length: next(sequence))

    await codes.issue(CodePurpose.EMAIL_VERIFY, "dan@example.com")
    await codes.issue(CodePurpose.PASSWORD_RESET, "dan@example.com")
    await codes.issue(CodePurpose.EMAIL_VERIFY, "dan@example.com")

    with pytest.raises(CodeMismatch):
        await codes.verify(CodePurpose.EMAIL_VERIFY, "dan@example.com", "111111")
    await codes.verify(CodePurpose.EMAIL_VERIFY, "dan@example.com", "333333")
    await codes.verify(CodePurpose.PASSWORD_RESET, "dan@example.com", "222222")


async def test_purposes_do_not_cross(codes):
    code = await codes.issue(CodePurpose.PASSWORD_RESET, "erin@example.com")
    with pytest.raises(CodeExpiredOrMissing):
        await codes.verify(CodePurpose.EMAIL_VERIFY, "erin@example.com", code)


async def test_custom_length(cache):
    codes = VerificationCodeService(cache, length=8)
    code = await codes.issue(CodePurpose.EMAIL_VERIFY, "fay@example.com")
    assert len(code) == 8
