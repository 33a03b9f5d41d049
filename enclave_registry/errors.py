"""Error taxonomy for the enclave registry.

Every registry failure carries an HTTP status code so the API layer can
map it without a lookup table. Signature verification failures are not
errors; see ``signatures.verify_signature``.
"""

from __future__ import annotations


class RegistryError(Exception):
    """Base class for registry failures that abort a call with no state change."""

    status_code = 400

    def __init__(self, detail: str, status_code: int | None = None):
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code
        super().__init__(detail)


class AuthorizationError(RegistryError):
    """Capability does not belong to the config being mutated."""

    status_code = 403


class MalformedAttestation(RegistryError):
    """Measurement entries missing or not in index order 0, 1, 2."""

    status_code = 400


class MeasurementMismatch(RegistryError):
    """An attested measurement differs from the config's expectation."""

    status_code = 403


class MissingPublicKey(RegistryError):
    """Attestation has no embedded public key."""

    status_code = 400


class NotStale(RegistryError):
    """Retirement attempted on an identity bound to the current config version."""

    status_code = 409


class ConfigNotFound(RegistryError):
    status_code = 404


class EnclaveNotFound(RegistryError):
    status_code = 404


class UnknownIntentError(RegistryError):
    """No payload schema is registered for an intent scope."""

    status_code = 400


class InvalidSignatureError(RegistryError):
    """Raised by consumers that choose to reject unverified messages."""

    status_code = 403


class CodecError(ValueError):
    """Value cannot be encoded, or bytes cannot be decoded, under a schema."""
