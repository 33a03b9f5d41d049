"""Pytest configuration and fixtures for enclave registry tests."""

import os
import tempfile

import pytest

# Set database path to temporary file before importing package modules
_temp_db = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
_temp_db.close()
os.environ["ENCLAVE_REGISTRY_DB_PATH"] = _temp_db.name
# Cheapest bcrypt work factor keeps capability hashing fast in tests
os.environ["CAPABILITY_HASH_ROUNDS"] = "4"

PCR0 = bytes([0x00]) * 48
PCR1 = bytes([0x11]) * 48
PCR2 = bytes([0x22]) * 48


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Initialize test database once per session."""
    from enclave_registry.database import init_db

    init_db()
    yield

    try:
        os.unlink(_temp_db.name)
    except OSError:
        pass
    for suffix in ["-wal", "-shm"]:
        try:
            os.unlink(_temp_db.name + suffix)
        except OSError:
            pass


@pytest.fixture
def client():
    """FastAPI test client."""
    from fastapi.testclient import TestClient

    from enclave_registry.main import app

    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_all_stores():
    """Clear all stores before and after each test for isolation."""
    from enclave_registry.settings import clear_settings, invalidate_cache
    from enclave_registry.storage import (
        capability_store,
        config_store,
        enclave_store,
        weather_reading_store,
    )

    def _clear():
        weather_reading_store.clear()
        enclave_store.clear()
        capability_store.clear()
        config_store.clear()
        clear_settings()
        invalidate_cache()

    _clear()
    yield
    _clear()


@pytest.fixture
def pcrs():
    return PCR0, PCR1, PCR2


@pytest.fixture
def config_and_capability(pcrs):
    """A fresh config at version 0 with its capability."""
    from enclave_registry.registry import create_config

    return create_config("weather", "weather-v1", *pcrs)


@pytest.fixture
def signer():
    from enclave_registry.signer import EnclaveSigner

    return EnclaveSigner()


@pytest.fixture
def attestation_for(pcrs):
    """Build a well-formed parsed attestation for a given public key."""
    from enclave_registry.attestation import MeasurementEntry, ParsedAttestation

    def _build(public_key: bytes, values=None) -> ParsedAttestation:
        values = values or pcrs
        return ParsedAttestation(
            measurements=[MeasurementEntry(index=i, value=v) for i, v in enumerate(values)],
            public_key=public_key,
        )

    return _build
