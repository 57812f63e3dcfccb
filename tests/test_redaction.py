from uniproxy.redaction import (
    preview_secret,
    redact_headers,
    sanitize_error_message,
    sanitize_for_log,
)


def test_sanitize_for_log_redacts_nested_secrets():
    payload = {
        "model": "deepseek-chat",
        "auth": {"access_token": "tok", "Authorization": "Bearer x"},
        "items": [{"api_key": "k", "name": "n"}],
    }

    assert sanitize_for_log(payload) == {
        "model": "deepseek-chat",
        "auth": {"access_token": "[REDACTED]", "Authorization": "[REDACTED]"},
        "items": [{"api_key": "[REDACTED]", "name": "n"}],
    }


def test_redact_headers_is_case_insensitive():
    headers = {"authorization": "Bearer a", "X-API-Key": "b", "Cookie": "c", "Accept": "json"}
    assert redact_headers(headers) == {
        "authorization": "[REDACTED]",
        "X-API-Key": "[REDACTED]",
        "Cookie": "[REDACTED]",
        "Accept": "json",
    }


def test_sanitize_error_message_strips_credentials():
    message = sanitize_error_message(
        "401 for Basic Y2xpZW50OnNlY3JldA== and Bearer abc.def using client:secret",
        ["client:secret"],
    )
    assert "Y2xpZW50OnNlY3JldA" not in message
    assert "abc.def" not in message
    assert "client:secret" not in message
    assert "Basic [REDACTED]" in message


def test_preview_secret_bounds():
    assert preview_secret(None) is None
    assert preview_secret("eyJhbGciOiJIUzI1NiJ9.payload") == "eyJhbGci..."
    assert preview_secret("short-token") == "sh..."
