"""Retirement of stale enclave identities.

An identity is stale once its config's version has moved past the version
it was verified against. Staleness is permanent, and only stale identities
can be retired; there is no forced retirement.
"""

from __future__ import annotations

import asyncio
import logging

from sqlmodel import select

from .database import get_db
from .db_models import EnclaveIdentity, MeasurementConfig
from .errors import ConfigNotFound, EnclaveNotFound, NotStale, RegistryError
from .settings import get_setting_int
from .storage import config_store

logger = logging.getLogger(__name__)

# How often the pruner re-reads its interval while disabled
DISABLED_POLL_SECONDS = 60


def retire(enclave_id: str, config_id: str | None = None) -> None:
    """Delete a stale identity.

    Args:
        enclave_id: Identity to retire
        config_id: Config the caller believes the identity belongs to;
            defaults to the identity's own config

    Raises:
        EnclaveNotFound: Unknown enclave_id
        ConfigNotFound: Config no longer exists
        RegistryError: Identity belongs to a different config
        NotStale: Identity is bound to the config's current version
    """
    with get_db() as session:
        identity = session.get(EnclaveIdentity, enclave_id)
        if identity is None:
            raise EnclaveNotFound(f"Enclave {enclave_id} not found")
        if config_id is not None and config_id != identity.config_id:
            raise RegistryError(f"Enclave {enclave_id} does not belong to config {config_id}")

        config = session.get(MeasurementConfig, identity.config_id)
        if config is None:
            raise ConfigNotFound(f"Measurement config {identity.config_id} not found")
        if not identity.config_version < config.version:
            raise NotStale(
                f"Enclave {enclave_id} is bound to version {identity.config_version}, "
                f"which is current for config {config.config_id}"
            )
        session.delete(identity)

    logger.info(
        f"Retired enclave {enclave_id} (version {identity.config_version} < {config.version})"
    )


def retire_stale(config_id: str) -> list[str]:
    """Delete every stale identity of a config in one transaction.

    Returns:
        IDs of the retired identities
    """
    with get_db() as session:
        config = session.get(MeasurementConfig, config_id)
        if config is None:
            raise ConfigNotFound(f"Measurement config {config_id} not found")
        stale = session.exec(
            select(EnclaveIdentity).where(
                EnclaveIdentity.config_id == config_id,
                EnclaveIdentity.config_version < config.version,
            )
        ).all()
        retired = [identity.enclave_id for identity in stale]
        for identity in stale:
            session.delete(identity)

    if retired:
        logger.info(f"Retired {len(retired)} stale enclaves of config {config_id}")
    return retired


async def background_stale_pruner():
    """Background task that periodically retires stale identities of every config.

    Controlled by ``lifecycle.prune_interval_seconds``; 0 disables pruning.
    """
    while True:
        interval = get_setting_int("lifecycle.prune_interval_seconds", fallback=0)
        if interval <= 0:
            await asyncio.sleep(DISABLED_POLL_SECONDS)
            continue
        try:
            for config in config_store.list():
                retire_stale(config.config_id)
        except Exception as e:
            logger.error(f"Background stale pruner error: {e}")
        await asyncio.sleep(interval)
