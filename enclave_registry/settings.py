"""DB-backed settings with env-var fallback for the enclave registry.

Resolution order: DB value > env var > default.
All settings are defined in SETTING_DEFS. Values are cached in memory
with a short TTL to avoid repeated DB reads.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from .database import get_db
from .db_models import Setting

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettingDef:
    """Definition of a single setting."""

    key: str
    env_var: str
    default: str
    is_secret: bool
    description: str
    group: str  # e.g. "auth", "lifecycle", "enclave"


# ── Registry ─────────────────────────────────────────────────────────────────

SETTING_DEFS: dict[str, SettingDef] = {}


def _reg(key: str, env_var: str, default: str, is_secret: bool, description: str, group: str):
    SETTING_DEFS[key] = SettingDef(key, env_var, default, is_secret, description, group)


# Auth
_reg(
    "auth.capability_hash_rounds",
    "CAPABILITY_HASH_ROUNDS",
    "12",
    False,
    "bcrypt work factor for stored capability token hashes (4-31)",
    "auth",
)

# Admin
_reg(
    "admin.api_token",
    "ADMIN_API_TOKEN",
    "",
    True,
    "Bearer token for changing settings over the API (empty disables settings administration)",
    "admin",
)

# Attestation
_reg(
    "attestation.accept_raw_documents",
    "ATTESTATION_ACCEPT_RAW_DOCUMENTS",
    "true",
    False,
    "Accept raw hex Nitro attestation documents at registration (parsed locally, chain not verified)",
    "attestation",
)

# Lifecycle
_reg(
    "lifecycle.prune_interval_seconds",
    "LIFECYCLE_PRUNE_INTERVAL_SECONDS",
    "0",
    False,
    "Seconds between background passes retiring stale enclave identities (0 to disable)",
    "lifecycle",
)

# Enclave collaborator
_reg(
    "enclave.request_timeout_seconds",
    "ENCLAVE_REQUEST_TIMEOUT_SECONDS",
    "10",
    False,
    "Timeout in seconds for calls to an enclave's HTTP endpoints",
    "enclave",
)

# Server
_reg(
    "server.cors_origins",
    "CORS_ORIGINS",
    "",
    False,
    "Comma-separated browser origins allowed by CORS (read at startup; empty disables CORS)",
    "server",
)


# ── TTL cache ────────────────────────────────────────────────────────────────

_CACHE_TTL = 5  # seconds
_cache: dict[str, str] = {}
_cache_time: float = 0.0


def _refresh_cache() -> None:
    """Bulk-load all settings from DB into the cache."""
    global _cache, _cache_time
    try:
        with get_db() as session:
            rows = session.exec(select(Setting)).all()
        _cache = {r.key: r.value for r in rows}
    except SQLAlchemyError:
        # DB not ready yet (e.g. before init_db): use empty cache
        _cache = {}
    _cache_time = time.monotonic()


def invalidate_cache() -> None:
    """Force next get_setting() to re-read from DB."""
    global _cache_time
    _cache_time = 0.0


def _ensure_cache() -> None:
    if time.monotonic() - _cache_time > _CACHE_TTL:
        _refresh_cache()


# ── Accessors ────────────────────────────────────────────────────────────────


def get_setting(key: str) -> str:
    """Return the effective value for *key*.

    Resolution: DB (non-empty) > env var (non-empty) > default.
    Raises KeyError for unknown keys.
    """
    defn = SETTING_DEFS.get(key)
    if defn is None:
        raise KeyError(f"Unknown setting: {key}")

    _ensure_cache()
    db_val = _cache.get(key)
    if db_val is not None and db_val != "":
        return db_val

    env_val = os.environ.get(defn.env_var, "")
    if env_val:
        return env_val

    return defn.default


def get_setting_int(key: str, fallback: int | None = None) -> int:
    """get_setting() coerced to int."""
    raw = get_setting(key)
    try:
        return int(raw)
    except (ValueError, TypeError):
        if fallback is not None:
            return fallback
        raise


def get_setting_list(key: str) -> list[str]:
    """get_setting() split on commas, blanks dropped."""
    return [s.strip() for s in get_setting(key).split(",") if s.strip()]


def get_setting_bool(key: str) -> bool:
    """get_setting() interpreted as a boolean flag."""
    return get_setting(key).strip().lower() in ("1", "true", "yes", "on")


def get_setting_source(key: str) -> str:
    """Return where the effective value comes from: 'db', 'env', or 'default'."""
    defn = SETTING_DEFS.get(key)
    if defn is None:
        raise KeyError(f"Unknown setting: {key}")

    _ensure_cache()
    db_val = _cache.get(key)
    if db_val is not None and db_val != "":
        return "db"

    env_val = os.environ.get(defn.env_var, "")
    if env_val:
        return "env"

    return "default"


# ── CRUD ─────────────────────────────────────────────────────────────────────


def set_setting(key: str, value: str) -> None:
    """Write a setting to the DB (upsert)."""
    defn = SETTING_DEFS.get(key)
    if defn is None:
        raise KeyError(f"Unknown setting: {key}")

    with get_db() as session:
        existing = session.get(Setting, key)
        if existing:
            existing.value = value
            existing.is_secret = defn.is_secret
            existing.updated_at = datetime.now(timezone.utc)
            session.add(existing)
        else:
            session.add(
                Setting(
                    key=key,
                    value=value,
                    is_secret=defn.is_secret,
                    updated_at=datetime.now(timezone.utc),
                )
            )
    invalidate_cache()


def delete_setting(key: str) -> bool:
    """Remove a setting from the DB (reverts to env/default). Returns True if existed."""
    defn = SETTING_DEFS.get(key)
    if defn is None:
        raise KeyError(f"Unknown setting: {key}")

    with get_db() as session:
        existing = session.get(Setting, key)
        if existing:
            session.delete(existing)
            invalidate_cache()
            return True
    return False


def _mask_secret(value: str) -> str:
    """Mask a secret value for display."""
    if not value or len(value) <= 8:
        return "****"
    return value[:4] + "****" + value[-4:]


def list_settings(group: str | None = None) -> list[dict]:
    """List all settings with metadata, values (masked if secret), and sources."""
    _ensure_cache()
    result = []
    for defn in SETTING_DEFS.values():
        if group and defn.group != group:
            continue

        source = get_setting_source(defn.key)
        raw_value = get_setting(defn.key)

        if defn.is_secret and raw_value:
            display_value = _mask_secret(raw_value)
        else:
            display_value = raw_value

        result.append(
            {
                "key": defn.key,
                "value": display_value,
                "source": source,
                "is_secret": defn.is_secret,
                "description": defn.description,
                "group": defn.group,
                "env_var": defn.env_var,
                "default": defn.default,
            }
        )
    return result


def clear_settings() -> None:
    """Delete all settings from DB (for tests)."""
    with get_db() as session:
        for s in session.exec(select(Setting)).all():
            session.delete(s)
    invalidate_cache()


def log_settings_sources() -> None:
    """Log the source of each setting on startup."""
    _ensure_cache()
    for defn in SETTING_DEFS.values():
        source = get_setting_source(defn.key)
        value = get_setting(defn.key)
        if defn.is_secret and value:
            value = _mask_secret(value)
        logger.info(f"Setting {defn.key}: source={source}, value={value or '(empty)'}")
