"""Tests for the enclave-side signer."""

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from enclave_registry.intent import IntentScope, encode_intent
from enclave_registry.signatures import verify_ed25519
from enclave_registry.signer import EnclaveSigner

PAYLOAD = {"location": "San Francisco", "temperature": 13}


def test_public_key_is_raw_32_bytes():
    signer = EnclaveSigner()
    assert isinstance(signer.public_key, bytes)
    assert len(signer.public_key) == 32


def test_ephemeral_keys_differ():
    assert EnclaveSigner().public_key != EnclaveSigner().public_key


def test_given_private_key_is_used():
    key = Ed25519PrivateKey.generate()
    assert EnclaveSigner(key).public_key == EnclaveSigner(key).public_key


def test_sign_intent_covers_canonical_bytes():
    signer = EnclaveSigner()
    signed = signer.sign_intent(PAYLOAD, 1744038900000, IntentScope.WEATHER)

    assert signed.response.intent == 0
    assert signed.response.data == PAYLOAD
    message = encode_intent(0, 1744038900000, PAYLOAD)
    assert verify_ed25519(signer.public_key, message, bytes.fromhex(signed.signature))


def test_signed_response_shape():
    signer = EnclaveSigner()
    body = signer.sign_intent(PAYLOAD, 1, IntentScope.WEATHER).to_dict()
    assert body["response"] == {"intent": 0, "timestamp_ms": 1, "data": PAYLOAD}
    assert len(bytes.fromhex(body["signature"])) == 64


def test_health_reports_public_key():
    signer = EnclaveSigner()
    assert signer.health() == {"pk": signer.public_key.hex()}
