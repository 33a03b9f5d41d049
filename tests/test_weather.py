"""Tests for the weather consumer."""

import pytest

from enclave_registry.errors import EnclaveNotFound, InvalidSignatureError
from enclave_registry.intent import IntentScope
from enclave_registry.registry import register_enclave
from enclave_registry.signer import EnclaveSigner
from enclave_registry.weather import list_readings, update_weather

TIMESTAMP = 1744038900000


@pytest.fixture
def enclave(config_and_capability, signer, attestation_for):
    config, _ = config_and_capability
    return register_enclave(config.config_id, attestation_for(signer.public_key))


def _sign(signer, location="San Francisco", temperature=13, timestamp_ms=TIMESTAMP):
    signed = signer.sign_intent(
        {"location": location, "temperature": temperature}, timestamp_ms, IntentScope.WEATHER
    )
    return bytes.fromhex(signed.signature)


def test_accepts_signed_report(enclave, signer):
    reading = update_weather(enclave.enclave_id, "San Francisco", 13, TIMESTAMP, _sign(signer))
    assert reading.location == "San Francisco"
    assert reading.temperature == 13
    assert [r.reading_id for r in list_readings(enclave.enclave_id)] == [reading.reading_id]


def test_rejects_altered_temperature(enclave, signer):
    with pytest.raises(InvalidSignatureError):
        update_weather(enclave.enclave_id, "San Francisco", 14, TIMESTAMP, _sign(signer))
    assert list_readings() == []


def test_rejects_altered_timestamp(enclave, signer):
    with pytest.raises(InvalidSignatureError):
        update_weather(enclave.enclave_id, "San Francisco", 13, TIMESTAMP + 1, _sign(signer))


def test_rejects_foreign_signer(enclave):
    with pytest.raises(InvalidSignatureError):
        update_weather(
            enclave.enclave_id, "San Francisco", 13, TIMESTAMP, _sign(EnclaveSigner())
        )


def test_unknown_enclave(signer):
    with pytest.raises(EnclaveNotFound):
        update_weather("missing", "San Francisco", 13, TIMESTAMP, _sign(signer))
