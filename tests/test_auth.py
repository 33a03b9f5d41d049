"""Tests for capability token helpers."""

import pytest
from fastapi import HTTPException

from enclave_registry.auth import (
    generate_capability_token,
    get_token_prefix,
    hash_capability_token,
    require_admin_token,
    require_capability_token,
    verify_capability_token,
)


def test_token_format():
    token = generate_capability_token()
    assert token.startswith("cap_")
    assert len(token) > 40
    assert generate_capability_token() != token


def test_hash_and_verify():
    token = generate_capability_token()
    hashed = hash_capability_token(token)
    assert hashed != token
    assert verify_capability_token(token, hashed) is True
    assert verify_capability_token(generate_capability_token(), hashed) is False


def test_hash_uses_configured_rounds():
    hashed = hash_capability_token(generate_capability_token())
    # conftest lowers the work factor to 4
    assert hashed.startswith("$2b$04$")


def test_verify_garbage_hash():
    assert verify_capability_token("cap_x", "not-a-bcrypt-hash") is False


def test_prefix():
    assert get_token_prefix("cap_abcdefghijkl") == "cap_abcdefgh"
    assert get_token_prefix("short") == "short"


@pytest.mark.asyncio
async def test_require_capability_token():
    assert await require_capability_token("Bearer cap_abc") == "cap_abc"


@pytest.mark.asyncio
@pytest.mark.parametrize("header", [None, "", "cap_abc", "Basic cap_abc", "Bearer a b"])
async def test_require_capability_token_rejects(header):
    with pytest.raises(HTTPException) as exc_info:
        await require_capability_token(header)
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_require_admin_token(monkeypatch):
    from enclave_registry.settings import invalidate_cache

    monkeypatch.setenv("ADMIN_API_TOKEN", "operator-secret-token")
    invalidate_cache()
    assert await require_admin_token("Bearer operator-secret-token") is None
    with pytest.raises(HTTPException) as exc_info:
        await require_admin_token("Bearer operator-secret-tokeN")
    assert exc_info.value.status_code == 403


@pytest.mark.asyncio
async def test_require_admin_token_disabled_when_unset():
    with pytest.raises(HTTPException) as exc_info:
        await require_admin_token("Bearer anything")
    assert exc_info.value.status_code == 403
    assert "disabled" in exc_info.value.detail
