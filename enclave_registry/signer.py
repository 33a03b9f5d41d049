"""Enclave-side signing of intent messages.

Runs inside the enclave: generates an ephemeral Ed25519 keypair at boot,
exposes the public key for embedding in the attestation document, and
signs the canonical encoding of every response it hands out. The private
key never leaves this object.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from .codec import Struct
from .intent import IntentMessage

logger = logging.getLogger(__name__)


@dataclass
class SignedResponse:
    """An intent message together with the hex signature over its encoding."""

    response: IntentMessage
    signature: str

    def to_dict(self) -> dict:
        return {"response": self.response.to_dict(), "signature": self.signature}


class EnclaveSigner:
    """Holds the enclave's ephemeral keypair."""

    def __init__(self, private_key: Ed25519PrivateKey | None = None):
        self._private_key = private_key or Ed25519PrivateKey.generate()
        self.public_key = self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        logger.info(f"Enclave signer ready, public key {self.public_key.hex()}")

    def sign_bytes(self, message: bytes) -> bytes:
        return self._private_key.sign(message)

    def sign_intent(
        self,
        payload: Any,
        timestamp_ms: int,
        intent: int,
        schema: Struct | None = None,
    ) -> SignedResponse:
        """Wrap *payload* in an intent envelope and sign its canonical bytes."""
        message = IntentMessage(intent=int(intent), timestamp_ms=timestamp_ms, data=payload)
        signature = self.sign_bytes(message.to_bytes(schema))
        return SignedResponse(response=message, signature=signature.hex())

    def health(self) -> dict:
        """Public key report in the shape of the enclave's health check."""
        return {"pk": self.public_key.hex()}
