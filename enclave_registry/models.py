"""Request/response models for the enclave registry API.

Byte fields travel as lowercase hex strings; the route handlers decode them.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from .db_models import EnclaveIdentity, MeasurementConfig, WeatherReading

# ==============================================================================
# Measurement configs
# ==============================================================================


class ConfigCreateRequest(BaseModel):
    """Request model for publishing a new measurement config."""

    application_tag: str = Field(..., description="Application the config belongs to")
    name: str = Field(default="", description="Human-readable config name")
    pcr0: str = Field(..., description="Expected PCR0 (hex)")
    pcr1: str = Field(..., description="Expected PCR1 (hex)")
    pcr2: str = Field(..., description="Expected PCR2 (hex)")


class MeasurementsUpdateRequest(BaseModel):
    pcr0: str = Field(..., description="New expected PCR0 (hex)")
    pcr1: str = Field(..., description="New expected PCR1 (hex)")
    pcr2: str = Field(..., description="New expected PCR2 (hex)")


class NameUpdateRequest(BaseModel):
    name: str


class ConfigResponse(BaseModel):
    config_id: str
    application_tag: str
    name: str
    pcr0: str
    pcr1: str
    pcr2: str
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_config(cls, config: MeasurementConfig) -> ConfigResponse:
        return cls(
            config_id=config.config_id,
            application_tag=config.application_tag,
            name=config.name,
            pcr0=config.pcr0.hex(),
            pcr1=config.pcr1.hex(),
            pcr2=config.pcr2.hex(),
            version=config.version,
            created_at=config.created_at,
            updated_at=config.updated_at,
        )


class ConfigCreateResponse(BaseModel):
    """Response model for config creation. The capability is never shown again."""

    config: ConfigResponse
    capability: str = Field(..., description="Bearer token authorizing updates to this config")


class ConfigListResponse(BaseModel):
    configs: list[ConfigResponse]
    total: int


# ==============================================================================
# Enclave identities
# ==============================================================================


class MeasurementEntryModel(BaseModel):
    index: int = Field(..., ge=0, description="PCR index")
    value: str = Field(..., description="PCR value (hex)")


class AttestationRequest(BaseModel):
    """Attestation presented for registration.

    Either the already-parsed ``measurements`` + ``public_key``, or a raw
    ``document`` (hex-encoded COSE_Sign1 Nitro attestation document).
    """

    measurements: list[MeasurementEntryModel] = Field(default_factory=list)
    public_key: str | None = Field(default=None, description="Enclave public key (hex)")
    document: str | None = Field(default=None, description="Raw attestation document (hex)")


class EnclaveResponse(BaseModel):
    enclave_id: str
    config_id: str
    application_tag: str
    public_key: str
    config_version: int
    registered_at: datetime
    stale: bool = False

    @classmethod
    def from_identity(cls, identity: EnclaveIdentity, stale: bool = False) -> EnclaveResponse:
        return cls(
            enclave_id=identity.enclave_id,
            config_id=identity.config_id,
            application_tag=identity.application_tag,
            public_key=identity.public_key.hex(),
            config_version=identity.config_version,
            registered_at=identity.registered_at,
            stale=stale,
        )


class EnclaveListResponse(BaseModel):
    enclaves: list[EnclaveResponse]
    total: int


class RetireStaleResponse(BaseModel):
    config_id: str
    retired: list[str]


# ==============================================================================
# Signatures
# ==============================================================================


class SignatureVerifyRequest(BaseModel):
    """Intent envelope values and the signature claimed over them."""

    intent: int = Field(..., ge=0, le=255)
    timestamp_ms: int = Field(..., ge=0)
    payload: dict
    signature: str = Field(..., description="Ed25519 signature (hex)")


class SignatureVerifyResponse(BaseModel):
    enclave_id: str
    valid: bool


class WeatherUpdateRequest(BaseModel):
    enclave_id: str
    location: str
    temperature: int = Field(..., ge=0)
    timestamp_ms: int = Field(..., ge=0)
    signature: str = Field(..., description="Ed25519 signature (hex)")


class WeatherReadingResponse(BaseModel):
    reading_id: str
    enclave_id: str
    location: str
    temperature: int
    timestamp_ms: int
    recorded_at: datetime

    @classmethod
    def from_reading(cls, reading: WeatherReading) -> WeatherReadingResponse:
        return cls(**reading.model_dump())


class WeatherReadingListResponse(BaseModel):
    readings: list[WeatherReadingResponse]
    total: int


class SettingUpdateRequest(BaseModel):
    value: str


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str
    timestamp: datetime
    version: str = "0.1.0"
