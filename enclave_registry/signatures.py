"""Ed25519 verification of enclave-signed intent messages.

Verification returns a bool and never raises on untrusted input. Callers
decide what a failed check means for them (reject, log, rate-limit).
"""

from __future__ import annotations

import logging
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from .codec import Struct
from .db_models import EnclaveIdentity
from .errors import CodecError, RegistryError
from .intent import encode_intent

logger = logging.getLogger(__name__)

PUBLIC_KEY_LENGTH = 32
SIGNATURE_LENGTH = 64


def verify_ed25519(public_key: bytes, message: bytes, signature: bytes) -> bool:
    """Check an Ed25519 signature. Wrong-length keys or signatures are simply invalid."""
    if len(public_key) != PUBLIC_KEY_LENGTH or len(signature) != SIGNATURE_LENGTH:
        return False
    try:
        Ed25519PublicKey.from_public_bytes(bytes(public_key)).verify(bytes(signature), message)
    except (InvalidSignature, ValueError):
        return False
    return True


def verify_signature(
    identity: EnclaveIdentity,
    intent: int,
    timestamp_ms: int,
    payload: Any,
    signature: bytes,
    schema: Struct | None = None,
) -> bool:
    """Verify *signature* over the intent envelope ``(intent, timestamp_ms, payload)``.

    The message is rebuilt from the arguments and canonically encoded, so
    altering any one of them (or the signature) makes the check fail.

    Returns:
        True only if the signature was produced by the identity's key over
        exactly these values; False otherwise, including when the values
        cannot be encoded.
    """
    try:
        message = encode_intent(intent, timestamp_ms, payload, schema)
    except (RegistryError, CodecError, TypeError, ValueError) as e:
        logger.debug(f"Cannot encode message for enclave {identity.enclave_id}: {e}")
        return False

    valid = verify_ed25519(identity.public_key, message, signature)
    logger.debug(
        f"Signature check for enclave {identity.enclave_id} intent {intent} "
        f"at {timestamp_ms}: {'valid' if valid else 'invalid'}"
    )
    return valid
