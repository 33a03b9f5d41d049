"""Tests for DB-backed settings system."""

import os

import pytest

# ── Resolution order ─────────────────────────────────────────────────────────


def test_default_value():
    """Setting returns default when no DB or env value."""
    from enclave_registry.settings import get_setting, get_setting_source

    old = os.environ.pop("LIFECYCLE_PRUNE_INTERVAL_SECONDS", None)
    try:
        assert get_setting("lifecycle.prune_interval_seconds") == "0"
        assert get_setting_source("lifecycle.prune_interval_seconds") == "default"
    finally:
        if old is not None:
            os.environ["LIFECYCLE_PRUNE_INTERVAL_SECONDS"] = old


def test_env_overrides_default():
    """Env var overrides default (conftest sets CAPABILITY_HASH_ROUNDS)."""
    from enclave_registry.settings import get_setting_int, get_setting_source

    assert get_setting_int("auth.capability_hash_rounds") == 4
    assert get_setting_source("auth.capability_hash_rounds") == "env"


def test_db_overrides_env(monkeypatch):
    """DB value overrides env var."""
    from enclave_registry.settings import (
        get_setting,
        get_setting_source,
        invalidate_cache,
        set_setting,
    )

    monkeypatch.setenv("ENCLAVE_REQUEST_TIMEOUT_SECONDS", "30")
    invalidate_cache()
    set_setting("enclave.request_timeout_seconds", "5")
    assert get_setting("enclave.request_timeout_seconds") == "5"
    assert get_setting_source("enclave.request_timeout_seconds") == "db"


def test_delete_reverts_to_env(monkeypatch):
    """Deleting a DB setting reverts to env var."""
    from enclave_registry.settings import (
        delete_setting,
        get_setting,
        get_setting_source,
        invalidate_cache,
        set_setting,
    )

    monkeypatch.setenv("ENCLAVE_REQUEST_TIMEOUT_SECONDS", "30")
    invalidate_cache()
    set_setting("enclave.request_timeout_seconds", "5")
    assert delete_setting("enclave.request_timeout_seconds") is True
    assert get_setting("enclave.request_timeout_seconds") == "30"
    assert get_setting_source("enclave.request_timeout_seconds") == "env"
    assert delete_setting("enclave.request_timeout_seconds") is False


# ── Type helpers ─────────────────────────────────────────────────────────────


def test_get_setting_int_fallback():
    """get_setting_int uses fallback on bad value."""
    from enclave_registry.settings import get_setting_int, set_setting

    set_setting("lifecycle.prune_interval_seconds", "not-a-number")
    assert get_setting_int("lifecycle.prune_interval_seconds", fallback=42) == 42
    with pytest.raises(ValueError):
        get_setting_int("lifecycle.prune_interval_seconds")


@pytest.mark.parametrize(
    "raw,expected",
    [("true", True), ("1", True), ("Yes", True), ("false", False), ("0", False), ("off", False)],
)
def test_get_setting_bool(raw, expected):
    from enclave_registry.settings import get_setting_bool, set_setting

    set_setting("attestation.accept_raw_documents", raw)
    assert get_setting_bool("attestation.accept_raw_documents") is expected


def test_raw_documents_accepted_by_default():
    from enclave_registry.settings import get_setting_bool

    assert get_setting_bool("attestation.accept_raw_documents") is True


# ── List & masking ───────────────────────────────────────────────────────────


def test_list_with_group_filter():
    """list_settings filters by group."""
    from enclave_registry.settings import list_settings

    lifecycle_settings = list_settings(group="lifecycle")
    assert [s["key"] for s in lifecycle_settings] == ["lifecycle.prune_interval_seconds"]


def test_list_all():
    from enclave_registry.settings import SETTING_DEFS, list_settings

    assert len(list_settings()) == len(SETTING_DEFS)


def test_mask_secret():
    from enclave_registry.settings import _mask_secret

    assert _mask_secret("abcdefghijklmnop") == "abcd****mnop"
    assert _mask_secret("short") == "****"


# ── Unknown key ──────────────────────────────────────────────────────────────


def test_unknown_key_raises():
    """Getting an unknown key raises KeyError."""
    from enclave_registry.settings import get_setting, set_setting

    with pytest.raises(KeyError, match="Unknown setting"):
        get_setting("nonexistent.key")
    with pytest.raises(KeyError):
        set_setting("nonexistent.key", "x")


def test_get_setting_list(monkeypatch):
    from enclave_registry.settings import get_setting_list, invalidate_cache

    assert get_setting_list("server.cors_origins") == []
    monkeypatch.setenv("CORS_ORIGINS", "https://a.example, ,https://b.example")
    invalidate_cache()
    assert get_setting_list("server.cors_origins") == ["https://a.example", "https://b.example"]


def test_secret_masking():
    """Secret values are masked in list_settings."""
    from enclave_registry.settings import list_settings, set_setting

    set_setting("admin.api_token", "abcdefghijklmnop")
    token_setting = next(s for s in list_settings(group="admin") if s["key"] == "admin.api_token")
    assert token_setting["is_secret"] is True
    assert token_setting["value"] == "abcd****mnop"


def test_log_settings_sources_masks_secrets(caplog):
    import logging

    from enclave_registry.settings import log_settings_sources, set_setting

    set_setting("admin.api_token", "abcdefghijklmnop")
    with caplog.at_level(logging.INFO, logger="enclave_registry.settings"):
        log_settings_sources()
    assert "abcd****mnop" in caplog.text
    assert "abcdefghijklmnop" not in caplog.text
