import base64

import pytest

from api.security import (
    StaticTokenProvider,
    bearer_token,
    create_access_token,
    get_tls_config,
    sanitize_session_data,
    validate_api_key_format,
    validate_environment_security,
    verify_access_token,
)
from drafting.error_handling import UnauthenticatedError

SECRET = "a-very-long-test-secret"


def test_token_round_trip():
    token = create_access_token("user-1", SECRET, issued_at=1_000)

    assert verify_access_token(token, SECRET, now=1_060) == "user-1"


def test_token_rejects_wrong_secret_and_expiry():
    token = create_access_token("user-1", SECRET, issued_at=1_000)

    assert verify_access_token(token, "another-secret-value", now=1_060) is None
    assert verify_access_token(token, SECRET, now=1_000 + 86_401) is None


def test_token_rejects_tampering():
    token = create_access_token("user-1", SECRET, issued_at=1_000)
    _, timestamp, signature = base64.urlsafe_b64decode(token).decode().rsplit(":", 2)
    forged = base64.urlsafe_b64encode(f"admin:{timestamp}:{signature}".encode()).decode()

    assert verify_access_token(forged, SECRET, now=1_060) is None
    assert verify_access_token("garbage", SECRET) is None


@pytest.mark.parametrize("header,expected", [
    (None, None),
    ("", None),
    ("Basic abc", None),
    ("Bearer ", None),
    ("Bearer abc123", "abc123"),
    ("bearer  abc123 ", "abc123"),
])
def test_bearer_token(header, expected):
    assert bearer_token(header) == expected


async def test_static_token_provider():
    assert await StaticTokenProvider("tok").current_token() == "tok"
    with pytest.raises(UnauthenticatedError):
        await StaticTokenProvider(None).current_token()


def test_api_key_format():
    assert validate_api_key_format("AIza" + "x" * 35)
    assert not validate_api_key_format("your_api_key_here")
    assert not validate_api_key_format("short")
    assert not validate_api_key_format("")


def test_environment_security(monkeypatch):
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    monkeypatch.setenv("AUTH_TOKEN_SECRET", "short")
    monkeypatch.setenv("CORS_ORIGINS", "*")
    monkeypatch.setenv("LOG_LEVEL", "info")

    result = validate_environment_security()

    assert not result["valid"]
    assert result["errors"] == ["AUTH_TOKEN_SECRET must be at least 16 characters"]
    assert any("GOOGLE_API_KEY" in w for w in result["warnings"])
    assert any("wildcard" in w for w in result["warnings"])


def test_environment_security_passes_with_secret(monkeypatch):
    monkeypatch.setenv("GOOGLE_API_KEY", "AIza" + "x" * 35)
    monkeypatch.setenv("AUTH_TOKEN_SECRET", SECRET)
    monkeypatch.setenv("CORS_ORIGINS", "http://localhost:3000")

    assert validate_environment_security()["valid"]


def test_sanitize_session_data_redacts_contacts():
    data = {
        "step1_data": {"user_prompt": "secret plans"},
        "step3_data": {
            "mandatory_fields": {
                "party1": {"external_id": "user-1", "name": "Alice", "email": "a@example.com", "phone": None},
            },
        },
    }

    sanitized = sanitize_session_data(data)

    party = sanitized["step3_data"]["mandatory_fields"]["party1"]
    assert party["email"] == "[REDACTED]"
    assert party["phone"] is None
    assert party["name"] == "Alice"
    assert sanitized["step1_data"]["user_prompt"] == "[REDACTED: 12 characters]"
    assert data["step3_data"]["mandatory_fields"]["party1"]["email"] == "a@example.com"


def test_tls_config(monkeypatch, tmp_path):
    cert = tmp_path / "cert.pem"
    key = tmp_path / "key.pem"
    cert.write_text("cert")
    key.write_text("key")

    monkeypatch.setenv("TLS_ENABLED", "false")
    assert get_tls_config() is None

    monkeypatch.setenv("TLS_ENABLED", "true")
    monkeypatch.setenv("TLS_CERT_PATH", str(cert))
    monkeypatch.setenv("TLS_KEY_PATH", str(tmp_path / "missing.pem"))
    assert get_tls_config() is None

    monkeypatch.setenv("TLS_KEY_PATH", str(key))
    assert get_tls_config() == {"certfile": str(cert), "keyfile": str(key)}
