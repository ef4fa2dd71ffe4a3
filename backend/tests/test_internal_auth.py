"""
Tests for signed identity header verification.

Run with:
  cd backend && python -m pytest tests/test_internal_auth.py
"""
import os
import sys
import time

import pytest
from fastapi import HTTPException

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from finboard.db_helpers import (  # noqa: E402
    DEFAULT_INTERNAL_AUTH_MAX_AGE_SECONDS,
    AuthSettings,
    authenticate_internal_request_from_headers,
)
from tests.internal_auth import build_internal_auth_headers  # noqa: E402

SECRET = "unit-test-secret"
PATH = "/api/subscriptions/detect"


def _verify(headers, method="GET", path=PATH, now=None):
    return authenticate_internal_request_from_headers(method, path, headers, now=now)


def test_valid_signature_returns_user(monkeypatch) -> None:
    monkeypatch.setenv("INTERNAL_AUTH_SECRET", SECRET)
    headers = build_internal_auth_headers("GET", PATH, "user-1")
    assert _verify(headers) == "user-1"
    print("✓ valid signature")


def test_signature_is_bound_to_method_and_path(monkeypatch) -> None:
    monkeypatch.setenv("INTERNAL_AUTH_SECRET", SECRET)
    headers = build_internal_auth_headers("GET", PATH, "user-1")

    with pytest.raises(HTTPException) as exc_info:
        _verify(headers, method="POST")
    assert exc_info.value.status_code == 401

    with pytest.raises(HTTPException) as exc_info:
        _verify(headers, path=PATH + "?limit=5")
    assert exc_info.value.status_code == 401
    print("✓ signature binding")


def test_old_signatures_expire(monkeypatch) -> None:
    monkeypatch.setenv("INTERNAL_AUTH_SECRET", SECRET)
    signed_at = int(time.time())
    headers = build_internal_auth_headers("GET", PATH, "user-1", signed_at=signed_at)

    assert _verify(headers, now=signed_at + DEFAULT_INTERNAL_AUTH_MAX_AGE_SECONDS) == "user-1"
    with pytest.raises(HTTPException) as exc_info:
        _verify(headers, now=signed_at + DEFAULT_INTERNAL_AUTH_MAX_AGE_SECONDS + 1)
    assert exc_info.value.status_code == 401
    assert "Expired" in exc_info.value.detail

    monkeypatch.setenv("INTERNAL_AUTH_MAX_AGE_SECONDS", "600")
    assert _verify(headers, now=signed_at + 300) == "user-1"
    print("✓ expiry")


def test_missing_secret_is_a_server_error(monkeypatch) -> None:
    monkeypatch.setenv("INTERNAL_AUTH_SECRET", SECRET)
    headers = build_internal_auth_headers("GET", PATH, "user-1")
    monkeypatch.delenv("INTERNAL_AUTH_SECRET")

    with pytest.raises(HTTPException) as exc_info:
        _verify(headers)
    assert exc_info.value.status_code == 500
    print("✓ missing secret")


def test_missing_or_malformed_headers_are_rejected(monkeypatch) -> None:
    monkeypatch.setenv("INTERNAL_AUTH_SECRET", SECRET)
    headers = build_internal_auth_headers("GET", PATH, "user-1")

    for name in list(headers):
        partial = {k: v for k, v in headers.items() if k != name}
        with pytest.raises(HTTPException) as exc_info:
            _verify(partial)
        assert exc_info.value.status_code == 401

    bad_timestamp = dict(headers)
    bad_timestamp["x-finboard-timestamp"] = "yesterday"
    with pytest.raises(HTTPException) as exc_info:
        _verify(bad_timestamp)
    assert "timestamp" in exc_info.value.detail
    print("✓ malformed headers")


@pytest.mark.parametrize("raw", ["0", "-5", "soon"])
def test_invalid_max_age_falls_back_to_default(monkeypatch, raw) -> None:
    monkeypatch.setenv("INTERNAL_AUTH_MAX_AGE_SECONDS", raw)
    assert AuthSettings().internal_auth_max_age_seconds == DEFAULT_INTERNAL_AUTH_MAX_AGE_SECONDS


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-q"]))
