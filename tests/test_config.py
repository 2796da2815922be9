import pytest
from pydantic import ValidationError

from authcore.config import Settings, TotpDigest


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in (
        "TEST_MODE",
        "JWT_SECRET",
        "JWT_REFRESH_SECRET",
        "MFA_ENCRYPTION_KEY",
        "ACCESS_TOKEN_TTL_MINUTES",
        "TOTP_DIGEST",
        "TOTP_WINDOW",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults():
    settings = Settings(test_mode=True)
    assert settings.access_token_ttl_seconds == 15 * 60
    assert settings.refresh_token_ttl_seconds == 7 * 24 * 60 * 60
    assert settings.token_leeway_seconds == 0
    assert settings.verification_code_ttl_minutes == 15
    assert settings.two_factor_setup_ttl_minutes == 10
    assert settings.two_factor_login_ttl_minutes == 5
    assert settings.totp_window == 2
    assert settings.totp_digest is TotpDigest.SHA1


def test_test_mode_generates_distinct_secrets():
    settings = Settings(test_mode=True)
    assert settings.jwt_secret and settings.jwt_refresh_secret
    assert settings.jwt_secret != settings.jwt_refresh_secret
    assert settings.mfa_encryption_key


def test_secrets_required_outside_test_mode():
    with pytest.raises(ValidationError):
        Settings(test_mode=False, jwt_refresh_secret="r", mfa_encryption_key="m")


def test_signing_keys_must_differ():
    with pytest.raises(ValidationError):
        Settings(jwt_secret="same", jwt_refresh_secret="same", mfa_encryption_key="m")


def test_from_env(clean_env):
    clean_env.setenv("JWT_SECRET", "access")
    clean_env.setenv("JWT_REFRESH_SECRET", "refresh")
    clean_env.setenv("MFA_ENCRYPTION_KEY", "mfa")
    clean_env.setenv("ACCESS_TOKEN_TTL_MINUTES", "5")
    clean_env.setenv("TOTP_DIGEST", "sha256")
    clean_env.setenv("TEST_MODE", "false")

    settings = Settings.from_env()
    assert settings.jwt_secret == "access"
    assert settings.access_token_ttl_seconds == 300
    assert settings.totp_digest is TotpDigest.SHA256
    assert settings.test_mode is False


def test_from_env_reads_dotenv(clean_env, tmp_path):
    (tmp_path / ".env").write_text(
        "JWT_SECRET=from-file\nJWT_REFRESH_SECRET=refresh-file\nMFA_ENCRYPTION_KEY=mfa\nTOTP_WINDOW=1\n"
    )
    settings = Settings.from_env()
    assert settings.jwt_secret == "from-file"
    assert settings.totp_window == 1


def test_env_overrides_dotenv(clean_env, tmp_path):
    (tmp_path / ".env").write_text(
        "JWT_SECRET=from-file\nJWT_REFRESH_SECRET=refresh-file\nMFA_ENCRYPTION_KEY=mfa\n"
    )
    clean_env.setenv("JWT_SECRET", "from-env")
    assert Settings.from_env().jwt_secret == "from-env"


def test_rejects_out_of_range_window():
    with pytest.raises(ValidationError):
        Settings(test_mode=True, totp_window=50)
