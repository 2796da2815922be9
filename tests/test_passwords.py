"""Password policy and argon2id hashing."""

import pytest

from authcore.service.codes import codes_match, generate_numeric_code
from authcore.service.errors import PasswordTooWeak
from authcore.service.passwords import SecretHasher, validate_password_strength


class TestPasswordPolicy:
    @pytest.mark.parametrize(
        "password,reason",
        [
            ("Ab1", "at least 8 characters"),
            ("abcdefgh", "at least one number"),
            ("1234567890", "at least one letter"),
            ("Password123", "too common"),
        ],
    )
    def test_rejects_weak_passwords(self, password, reason):
        with pytest.raises(PasswordTooWeak) as excinfo:
            validate_password_strength(password)
        assert reason in excinfo.value.message
        assert excinfo.value.status_code == 400

    def test_accepts_reasonable_password(self):
        validate_password_strength("correct-horse-42")


class TestSecretHasher:
    def test_hash_is_salted_argon2id(self, hasher):
        first = hasher.hash_sync("Sup3r-secret")
        second = hasher.hash_sync("Sup3r-secret")

        assert first.startswith("$argon2id$")
        assert first != second
        assert "Sup3r-secret" not in first

    async def test_verify(self, hasher):
        pwd_hash = await hasher.hash("Sup3r-secret")
        assert await hasher.verify(pwd_hash, "Sup3r-secret")
        assert not await hasher.verify(pwd_hash, "wrong-password1")

    def test_unusable_hash_does_not_raise(self, hasher):
        assert hasher.verify_sync("not-a-hash", "whatever1") is False

    async def test_burn_returns_nothing(self, hasher):
        assert await hasher.burn("anything1") is None

    def test_needs_rehash_when_cost_changes(self, hasher):
        pwd_hash = hasher.hash_sync("Sup3r-secret")
        stronger = SecretHasher(time_cost=2, memory_cost=1024, parallelism=1)

        assert not hasher.needs_rehash(pwd_hash)
        assert stronger.needs_rehash(pwd_hash)
        assert hasher.needs_rehash("garbage")


class TestCodes:
    def test_numeric_code_shape(self):
        for _ in range(50):
            code = generate_numeric_code(6)
            assert len(code) == 6
            assert code.isdigit()

    def test_rejects_non_positive_length(self):
        with pytest.raises(ValueError):
            generate_numeric_code(0)

    def test_codes_match(self):
        assert codes_match("012345", "012345")
        assert not codes_match("012345", "012346")
        assert not codes_match("012345", "")
        assert not codes_match("012345", None)
