"""Attestation checks against a measurement config.

The attestation document's envelope (certificate chain, COSE signature)
is validated by a trusted collaborator before it reaches this module.
Here we only decide whether the parsed contents match what a config
expects and pull out the enclave's public key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import cbor2

from .db_models import MeasurementConfig
from .errors import MalformedAttestation, MeasurementMismatch, MissingPublicKey

logger = logging.getLogger(__name__)

# PCRs bound by a config, in the order they must appear.
EXPECTED_PCR_INDICES = (0, 1, 2)

# CBOR tag for COSE_Sign1
COSE_SIGN1_TAG = 18


@dataclass
class MeasurementEntry:
    """One (index, value) pair from an attestation's measurement list."""

    index: int
    value: bytes


@dataclass
class ParsedAttestation:
    """Contents of an already-validated attestation document."""

    measurements: list[MeasurementEntry] = field(default_factory=list)
    public_key: bytes | None = None
    module_id: str | None = None
    timestamp_ms: int | None = None


def verify(config: MeasurementConfig, attestation: ParsedAttestation) -> bytes:
    """Check *attestation* against *config* and return the embedded public key.

    Pure: reads nothing but its arguments and writes nothing.

    Raises:
        MalformedAttestation: Fewer than three entries, or the first three
            are not indices 0, 1, 2 in that order. Entries are never re-sorted.
        MeasurementMismatch: Any of the three values differs from the config.
        MissingPublicKey: No public key embedded.
    """
    entries = attestation.measurements
    if len(entries) < len(EXPECTED_PCR_INDICES):
        raise MalformedAttestation(
            f"Attestation has {len(entries)} measurement entries, need at least "
            f"{len(EXPECTED_PCR_INDICES)}"
        )

    for position, expected_index in enumerate(EXPECTED_PCR_INDICES):
        if entries[position].index != expected_index:
            raise MalformedAttestation(
                f"Measurement entry {position} has index {entries[position].index}, "
                f"expected {expected_index}"
            )

    expected = config.measurements()
    mismatched = [
        f"PCR{i}" for i in EXPECTED_PCR_INDICES if bytes(entries[i].value) != bytes(expected[i])
    ]
    if mismatched:
        logger.warning(
            f"Attestation rejected for config {config.config_id}: {', '.join(mismatched)} mismatch"
        )
        raise MeasurementMismatch(
            f"Measurements do not match config {config.config_id} "
            f"(version {config.version}): {', '.join(mismatched)}"
        )

    if not attestation.public_key:
        raise MissingPublicKey("Attestation does not embed a public key")

    return bytes(attestation.public_key)


def parse_nitro_document(document: bytes) -> ParsedAttestation:
    """Extract PCRs and public key from a raw AWS Nitro attestation document.

    The document is a COSE_Sign1 structure whose payload is a CBOR map with
    ``pcrs`` (index -> digest) and an optional ``public_key``. PCRs keep the
    order they have in the document.

    This does NOT verify the COSE signature or the certificate chain to the
    AWS Nitro root; callers must only use it on documents whose envelope
    has been validated elsewhere.

    Raises:
        MalformedAttestation: If the bytes are not a COSE_Sign1 attestation document.
    """
    try:
        cose = cbor2.loads(document)
    except (cbor2.CBORDecodeError, ValueError, TypeError) as e:
        raise MalformedAttestation(f"Attestation document is not valid CBOR: {e}") from e

    if isinstance(cose, cbor2.CBORTag):
        if cose.tag != COSE_SIGN1_TAG:
            raise MalformedAttestation(f"Unexpected CBOR tag {cose.tag}, expected COSE_Sign1")
        cose = cose.value
    if not isinstance(cose, list) or len(cose) != 4:
        raise MalformedAttestation("Invalid COSE_Sign1: expected a 4-element array")

    _protected, _unprotected, payload, _signature = cose
    if not isinstance(payload, bytes):
        raise MalformedAttestation("COSE_Sign1 payload is not a byte string")

    try:
        doc = cbor2.loads(payload)
    except (cbor2.CBORDecodeError, ValueError, TypeError) as e:
        raise MalformedAttestation(f"Attestation payload is not valid CBOR: {e}") from e
    if not isinstance(doc, dict):
        raise MalformedAttestation("Attestation payload is not a map")

    pcrs = doc.get("pcrs")
    if not isinstance(pcrs, dict):
        raise MalformedAttestation("Attestation document has no pcrs map")

    measurements = []
    for index, value in pcrs.items():
        if not isinstance(index, int) or not isinstance(value, bytes):
            raise MalformedAttestation(f"Invalid PCR entry: {index!r}")
        measurements.append(MeasurementEntry(index=index, value=value))

    public_key = doc.get("public_key")
    if public_key is not None and not isinstance(public_key, bytes):
        raise MalformedAttestation("Attestation public_key is not a byte string")

    module_id = doc.get("module_id")
    timestamp = doc.get("timestamp")
    return ParsedAttestation(
        measurements=measurements,
        public_key=public_key,
        module_id=module_id if isinstance(module_id, str) else None,
        timestamp_ms=timestamp if isinstance(timestamp, int) else None,
    )
