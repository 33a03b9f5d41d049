"""Measurement config and enclave identity registry.

Each operation here runs in one database session: reads, the capability
check and writes either all commit or all roll back.

Flow:
1. ``create_config`` publishes expected PCRs and returns the only capability
2. ``update_measurements`` / ``update_name`` mutate a config (capability required)
3. ``register_enclave`` checks an attestation and mints a new identity bound
   to the config version observed in the same transaction
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlmodel import Session, select

from .attestation import ParsedAttestation, verify
from .auth import (
    generate_capability_token,
    get_token_prefix,
    hash_capability_token,
    verify_capability_token,
)
from .database import get_db
from .db_models import CapabilityGrant, EnclaveIdentity, MeasurementConfig
from .errors import AuthorizationError, ConfigNotFound, EnclaveNotFound
from .storage import config_store, enclave_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Capability:
    """Bearer token authorizing mutation of exactly one config."""

    config_id: str
    application_tag: str
    token: str = field(repr=False)


def _load_config(session: Session, config_id: str) -> MeasurementConfig:
    config = session.get(MeasurementConfig, config_id)
    if config is None:
        raise ConfigNotFound(f"Measurement config {config_id} not found")
    return config


def _authorize(session: Session, config: MeasurementConfig, capability: Capability | str) -> None:
    """Raise AuthorizationError unless *capability* was minted for *config*."""
    if isinstance(capability, Capability):
        if (
            capability.config_id != config.config_id
            or capability.application_tag != config.application_tag
        ):
            logger.warning(
                f"Capability for config {capability.config_id} presented to config {config.config_id}"
            )
            raise AuthorizationError("Capability does not match this config")
        token = capability.token
    else:
        token = capability

    grant = session.exec(
        select(CapabilityGrant).where(CapabilityGrant.config_id == config.config_id)
    ).first()
    if (
        grant is None
        or grant.application_tag != config.application_tag
        or get_token_prefix(token) != grant.token_prefix
        or not verify_capability_token(token, grant.token_hash)
    ):
        logger.warning(
            f"Rejected capability {get_token_prefix(token)!r}... for config {config.config_id}"
        )
        raise AuthorizationError("Capability does not match this config")


# ==============================================================================
# Measurement config registry
# ==============================================================================


def create_config(
    application_tag: str,
    name: str,
    pcr0: bytes,
    pcr1: bytes,
    pcr2: bytes,
) -> tuple[MeasurementConfig, Capability]:
    """Create a config at version 0 and mint its capability.

    The returned Capability is the only copy of the token; it is never
    reissued.
    """
    config = MeasurementConfig(
        application_tag=application_tag,
        name=name,
        pcr0=bytes(pcr0),
        pcr1=bytes(pcr1),
        pcr2=bytes(pcr2),
        version=0,
    )
    token = generate_capability_token()
    grant = CapabilityGrant(
        config_id=config.config_id,
        application_tag=application_tag,
        token_hash=hash_capability_token(token),
        token_prefix=get_token_prefix(token),
    )
    with get_db() as session:
        session.add(config)
        session.add(grant)

    logger.info(f"Created measurement config {config.config_id} ({application_tag}: {name!r})")
    return config, Capability(
        config_id=config.config_id, application_tag=application_tag, token=token
    )


def update_measurements(
    config_id: str,
    capability: Capability | str,
    pcr0: bytes,
    pcr1: bytes,
    pcr2: bytes,
) -> MeasurementConfig:
    """Replace all three expected PCRs and bump the config version by one.

    Every identity bound to the previous version becomes stale.

    Raises:
        ConfigNotFound: Unknown config_id
        AuthorizationError: Capability was not minted for this config
    """
    with get_db() as session:
        config = _load_config(session, config_id)
        _authorize(session, config, capability)
        config.pcr0 = bytes(pcr0)
        config.pcr1 = bytes(pcr1)
        config.pcr2 = bytes(pcr2)
        config.version += 1
        config.updated_at = datetime.now(timezone.utc)
        session.add(config)

    logger.info(f"Updated measurements of config {config_id}, now version {config.version}")
    return config


def update_name(config_id: str, capability: Capability | str, name: str) -> MeasurementConfig:
    """Rename a config. The version is left unchanged.

    Raises:
        ConfigNotFound: Unknown config_id
        AuthorizationError: Capability was not minted for this config
    """
    with get_db() as session:
        config = _load_config(session, config_id)
        _authorize(session, config, capability)
        config.name = name
        config.updated_at = datetime.now(timezone.utc)
        session.add(config)

    logger.info(f"Renamed config {config_id} to {name!r}")
    return config


def get_config(config_id: str) -> MeasurementConfig:
    config = config_store.get(config_id)
    if config is None:
        raise ConfigNotFound(f"Measurement config {config_id} not found")
    return config


def list_configs(application_tag: str | None = None) -> list[MeasurementConfig]:
    return config_store.list(application_tag)


# ==============================================================================
# Enclave identity registry
# ==============================================================================


def register_enclave(config_id: str, attestation: ParsedAttestation) -> EnclaveIdentity:
    """Verify *attestation* against the config and mint a new identity.

    Registrations are not deduplicated: the same attestation registered
    twice yields two independent identities with equal keys and versions.

    Raises:
        ConfigNotFound: Unknown config_id
        MalformedAttestation, MeasurementMismatch, MissingPublicKey: see ``attestation.verify``
    """
    with get_db() as session:
        config = _load_config(session, config_id)
        public_key = verify(config, attestation)
        identity = EnclaveIdentity(
            config_id=config.config_id,
            application_tag=config.application_tag,
            public_key=public_key,
            config_version=config.version,
        )
        session.add(identity)

    logger.info(
        f"Registered enclave {identity.enclave_id} for config {config_id} "
        f"at version {identity.config_version} (pk {public_key.hex()[:16]}...)"
    )
    return identity


def get_enclave(enclave_id: str) -> EnclaveIdentity:
    identity = enclave_store.get(enclave_id)
    if identity is None:
        raise EnclaveNotFound(f"Enclave {enclave_id} not found")
    return identity


def list_enclaves(config_id: str | None = None, stale: bool | None = None) -> list[EnclaveIdentity]:
    return enclave_store.list({"config_id": config_id, "stale": stale})


def is_stale(identity: EnclaveIdentity, config: MeasurementConfig) -> bool:
    """True once the config has moved past the version the identity was verified against."""
    return identity.config_version < config.version
