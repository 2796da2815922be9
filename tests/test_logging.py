from authcore.logging import (
    _redact_pii,
    get_correlation_id,
    redact_email,
    set_correlation_id,
)


def test_redact_email():
    assert redact_email("alice@example.com") == "ali***@example.com"
    assert redact_email("al@example.com") == "a***@example.com"
    assert redact_email("not-an-email") == "***"
    assert redact_email(None) == "***"


def test_redacts_sensitive_keys():
    event = _redact_pii(
        None,
        "info",
        {
            "event": "login_failed",
            "password": "hunter2-secret",
            "refresh_token": "eyJhbGciOi.payload.sig",
            "code": "123456",
            "email": "alice@example.com",
            "user_id": "user-1",
            "error_code": "invalid_credentials",
        },
    )

    assert event["event"] == "login_failed"
    assert event["password"] == "hu***et"
    assert "payload" not in event["refresh_token"]
    assert event["code"] == "12***56"
    assert event["email"] == "al***om"
    assert event["user_id"] == "user-1"
    assert event["error_code"] == "invalid_credentials"


def test_already_redacted_values_pass_through():
    event = _redact_pii(None, "info", {"email": redact_email("bob@example.com"), "otp": "12"})
    assert event["email"] == "bob***@example.com"
    assert event["otp"] == "***"


def test_correlation_id():
    cid = set_correlation_id("req-1")
    assert cid == "req-1"
    assert get_correlation_id() == "req-1"
    assert set_correlation_id() != "req-1"
