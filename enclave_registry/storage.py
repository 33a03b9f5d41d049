"""SQLModel-backed storage for the enclave registry.

Stores are the read side and the simple single-record writes. Operations
that must check and mutate several records atomically live in
``registry`` and ``lifecycle`` and run in a single ``get_db()`` session.
"""

from __future__ import annotations

import logging

from sqlmodel import select

from .database import get_db
from .db_models import (
    CapabilityGrant,
    EnclaveIdentity,
    MeasurementConfig,
    WeatherReading,
)

logger = logging.getLogger(__name__)


class ConfigStore:
    """Storage for measurement configs. Configs are never deleted by the API."""

    def get(self, config_id: str) -> MeasurementConfig | None:
        with get_db() as session:
            return session.get(MeasurementConfig, config_id)

    def list(self, application_tag: str | None = None) -> list[MeasurementConfig]:
        with get_db() as session:
            stmt = select(MeasurementConfig)
            if application_tag:
                stmt = stmt.where(MeasurementConfig.application_tag == application_tag)
            return list(session.exec(stmt.order_by(MeasurementConfig.created_at)).all())

    def clear(self) -> None:
        with get_db() as session:
            for c in session.exec(select(MeasurementConfig)).all():
                session.delete(c)


class CapabilityStore:
    """Storage for capability grants (token hashes)."""

    def get_for_config(self, config_id: str) -> CapabilityGrant | None:
        with get_db() as session:
            return session.exec(
                select(CapabilityGrant).where(CapabilityGrant.config_id == config_id)
            ).first()

    def clear(self) -> None:
        with get_db() as session:
            for g in session.exec(select(CapabilityGrant)).all():
                session.delete(g)


class EnclaveStore:
    """Storage for verified enclave identities."""

    def get(self, enclave_id: str) -> EnclaveIdentity | None:
        with get_db() as session:
            return session.get(EnclaveIdentity, enclave_id)

    def list(self, filters: dict | None = None) -> list[EnclaveIdentity]:
        """List identities, optionally filtered by ``config_id`` and ``stale``."""
        filters = filters or {}
        with get_db() as session:
            stmt = select(EnclaveIdentity)
            if filters.get("config_id"):
                stmt = stmt.where(EnclaveIdentity.config_id == filters["config_id"])
            identities = list(session.exec(stmt.order_by(EnclaveIdentity.registered_at)).all())

            if filters.get("stale") is not None:
                versions = {
                    c.config_id: c.version for c in session.exec(select(MeasurementConfig)).all()
                }
                want_stale = bool(filters["stale"])
                identities = [
                    i
                    for i in identities
                    if (i.config_version < versions.get(i.config_id, i.config_version)) == want_stale
                ]
        return identities

    def clear(self) -> None:
        with get_db() as session:
            for i in session.exec(select(EnclaveIdentity)).all():
                session.delete(i)


class WeatherReadingStore:
    """Storage for weather readings accepted from enclaves."""

    def create(self, reading: WeatherReading) -> str:
        with get_db() as session:
            session.add(reading)
        return reading.reading_id

    def list(self, enclave_id: str | None = None) -> list[WeatherReading]:
        with get_db() as session:
            stmt = select(WeatherReading)
            if enclave_id:
                stmt = stmt.where(WeatherReading.enclave_id == enclave_id)
            return list(session.exec(stmt.order_by(WeatherReading.recorded_at)).all())

    def clear(self) -> None:
        with get_db() as session:
            for r in session.exec(select(WeatherReading)).all():
                session.delete(r)


# Global store instances
config_store = ConfigStore()
capability_store = CapabilityStore()
enclave_store = EnclaveStore()
weather_reading_store = WeatherReadingStore()
