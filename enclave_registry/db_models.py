"""SQLModel database models for the enclave registry.

These models serve as both SQLAlchemy ORM models AND Pydantic models,
eliminating the need for separate data classes.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlmodel import Field, SQLModel


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


class MeasurementConfig(SQLModel, table=True):
    """Expected PCR measurements for one application.

    ``version`` starts at 0 and is bumped by exactly one on every
    measurement update. It never decreases.
    """

    __tablename__ = "measurement_configs"

    config_id: str = Field(default_factory=generate_uuid, primary_key=True)
    application_tag: str = Field(index=True)
    name: str = Field(default="")
    pcr0: bytes = Field(default=b"")
    pcr1: bytes = Field(default=b"")
    pcr2: bytes = Field(default=b"")
    version: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def measurements(self) -> tuple[bytes, bytes, bytes]:
        return self.pcr0, self.pcr1, self.pcr2


class CapabilityGrant(SQLModel, table=True):
    """Persisted half of a config capability.

    The bearer token itself is only ever returned once, at config creation.
    """

    __tablename__ = "capability_grants"

    capability_id: str = Field(default_factory=generate_uuid, primary_key=True)
    config_id: str = Field(unique=True, index=True)
    application_tag: str
    token_hash: str  # bcrypt hash
    token_prefix: str = Field(index=True)  # First 12 chars for fast lookup
    created_at: datetime = Field(default_factory=utcnow)


class EnclaveIdentity(SQLModel, table=True):
    """Verified enclave public key, bound to the config version it was checked against."""

    __tablename__ = "enclave_identities"

    enclave_id: str = Field(default_factory=generate_uuid, primary_key=True)
    config_id: str = Field(index=True)
    application_tag: str
    public_key: bytes
    config_version: int
    registered_at: datetime = Field(default_factory=utcnow)


class WeatherReading(SQLModel, table=True):
    """Weather report accepted from a verified enclave signature."""

    __tablename__ = "weather_readings"

    reading_id: str = Field(default_factory=generate_uuid, primary_key=True)
    enclave_id: str = Field(index=True)
    location: str
    temperature: int
    timestamp_ms: int
    recorded_at: datetime = Field(default_factory=utcnow)


class Setting(SQLModel, table=True):
    """Key-value settings stored in DB, overriding env vars."""

    __tablename__ = "settings"

    key: str = Field(primary_key=True)
    value: str = Field(default="")
    is_secret: bool = Field(default=False)
    updated_at: datetime = Field(default_factory=utcnow)
