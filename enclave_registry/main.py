"""Enclave Registry Service - FastAPI Application."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__, lifecycle, registry, weather
from .attestation import MeasurementEntry, ParsedAttestation, parse_nitro_document
from .auth import require_admin_token, require_capability_token
from .database import init_db
from .errors import RegistryError
from .models import (
    AttestationRequest,
    ConfigCreateRequest,
    ConfigCreateResponse,
    ConfigListResponse,
    ConfigResponse,
    EnclaveListResponse,
    EnclaveResponse,
    HealthResponse,
    MeasurementsUpdateRequest,
    NameUpdateRequest,
    RetireStaleResponse,
    SignatureVerifyRequest,
    SettingUpdateRequest,
    SignatureVerifyResponse,
    WeatherReadingListResponse,
    WeatherReadingResponse,
    WeatherUpdateRequest,
)
from .settings import (
    SETTING_DEFS,
    delete_setting,
    get_setting_bool,
    get_setting_list,
    invalidate_cache,
    list_settings,
    log_settings_sources,
    set_setting,
)
from .signatures import verify_signature

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - start background tasks."""
    init_db()
    invalidate_cache()
    logger.info("Database initialized")
    log_settings_sources()

    pruner_task = asyncio.create_task(lifecycle.background_stale_pruner())
    logger.info("Started background stale pruner")
    yield
    pruner_task.cancel()
    try:
        await pruner_task
    except asyncio.CancelledError:
        pass


app = FastAPI(
    title="Enclave Registry",
    description="Registry of attested enclave identities and their measurement configs",
    version=__version__,
    lifespan=lifespan,
)

CORS_ORIGINS = get_setting_list("server.cors_origins")
if CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RegistryError)
async def registry_error_handler(request: Request, exc: RegistryError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def _from_hex(value: str, field: str) -> bytes:
    """Decode a hex request field or fail the request with 400."""
    try:
        return bytes.fromhex(value)
    except (ValueError, TypeError):
        raise HTTPException(status_code=400, detail=f"Field {field!r} is not valid hex") from None


def _config_versions() -> dict[str, int]:
    return {c.config_id: c.version for c in registry.list_configs()}


def _enclave_response(identity, versions: dict[str, int]) -> EnclaveResponse:
    current = versions.get(identity.config_id, identity.config_version)
    return EnclaveResponse.from_identity(identity, stale=identity.config_version < current)


# Health check endpoint
@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=__version__,
    )


# ==============================================================================
# Measurement configs
# ==============================================================================


@app.post("/api/v1/configs", response_model=ConfigCreateResponse)
async def create_config(request: ConfigCreateRequest):
    """Publish expected measurements for an application.

    The capability token in the response is the only way to update this
    config later. It is not stored and cannot be recovered.
    """
    config, capability = registry.create_config(
        application_tag=request.application_tag,
        name=request.name,
        pcr0=_from_hex(request.pcr0, "pcr0"),
        pcr1=_from_hex(request.pcr1, "pcr1"),
        pcr2=_from_hex(request.pcr2, "pcr2"),
    )
    return ConfigCreateResponse(
        config=ConfigResponse.from_config(config), capability=capability.token
    )


@app.get("/api/v1/configs", response_model=ConfigListResponse)
async def list_configs(
    application_tag: str | None = Query(None, description="Filter by application tag"),
):
    """List measurement configs."""
    configs = [ConfigResponse.from_config(c) for c in registry.list_configs(application_tag)]
    return ConfigListResponse(configs=configs, total=len(configs))


@app.get("/api/v1/configs/{config_id}", response_model=ConfigResponse)
async def get_config(config_id: str):
    return ConfigResponse.from_config(registry.get_config(config_id))


@app.put("/api/v1/configs/{config_id}/measurements", response_model=ConfigResponse)
async def update_measurements(
    config_id: str,
    request: MeasurementsUpdateRequest,
    capability: str = Depends(require_capability_token),
):
    """Replace the expected measurements. Every registered enclave becomes stale."""
    config = registry.update_measurements(
        config_id,
        capability,
        pcr0=_from_hex(request.pcr0, "pcr0"),
        pcr1=_from_hex(request.pcr1, "pcr1"),
        pcr2=_from_hex(request.pcr2, "pcr2"),
    )
    return ConfigResponse.from_config(config)


@app.put("/api/v1/configs/{config_id}/name", response_model=ConfigResponse)
async def update_name(
    config_id: str,
    request: NameUpdateRequest,
    capability: str = Depends(require_capability_token),
):
    return ConfigResponse.from_config(registry.update_name(config_id, capability, request.name))


@app.post("/api/v1/configs/{config_id}/retire-stale", response_model=RetireStaleResponse)
async def retire_stale(config_id: str):
    """Retire every identity bound to an outdated version of the config."""
    return RetireStaleResponse(config_id=config_id, retired=lifecycle.retire_stale(config_id))


# ==============================================================================
# Enclave identities
# ==============================================================================


@app.post("/api/v1/configs/{config_id}/enclaves", response_model=EnclaveResponse)
async def register_enclave(config_id: str, request: AttestationRequest):
    """Register an enclave from its attestation.

    Accepts either pre-parsed measurements and public key, or a raw Nitro
    attestation document when ``attestation.accept_raw_documents`` is on.
    The document's certificate chain is not checked here.
    """
    if request.document is not None:
        if not get_setting_bool("attestation.accept_raw_documents"):
            raise HTTPException(status_code=400, detail="Raw attestation documents are disabled")
        attestation = parse_nitro_document(_from_hex(request.document, "document"))
    else:
        attestation = ParsedAttestation(
            measurements=[
                MeasurementEntry(index=m.index, value=_from_hex(m.value, "measurements"))
                for m in request.measurements
            ],
            public_key=(
                _from_hex(request.public_key, "public_key") if request.public_key else None
            ),
        )

    identity = registry.register_enclave(config_id, attestation)
    return EnclaveResponse.from_identity(identity, stale=False)


@app.get("/api/v1/enclaves", response_model=EnclaveListResponse)
async def list_enclaves(
    config_id: str | None = Query(None, description="Filter by config"),
    stale: bool | None = Query(None, description="Filter by staleness"),
):
    """List registered enclave identities."""
    versions = _config_versions()
    enclaves = [
        _enclave_response(i, versions)
        for i in registry.list_enclaves(config_id=config_id, stale=stale)
    ]
    return EnclaveListResponse(enclaves=enclaves, total=len(enclaves))


@app.get("/api/v1/enclaves/{enclave_id}", response_model=EnclaveResponse)
async def get_enclave(enclave_id: str):
    return _enclave_response(registry.get_enclave(enclave_id), _config_versions())


@app.delete("/api/v1/enclaves/{enclave_id}")
async def retire_enclave(
    enclave_id: str,
    config_id: str | None = Query(None, description="Config the enclave must belong to"),
):
    """Retire a stale enclave identity. Current identities cannot be retired."""
    lifecycle.retire(enclave_id, config_id)
    return {"status": "retired", "enclave_id": enclave_id}


@app.post("/api/v1/enclaves/{enclave_id}/verify", response_model=SignatureVerifyResponse)
async def verify_enclave_signature(enclave_id: str, request: SignatureVerifyRequest):
    """Check a signature over an intent envelope against the enclave's key.

    A bad signature is a normal outcome, reported as ``valid: false``.
    """
    identity = registry.get_enclave(enclave_id)
    valid = verify_signature(
        identity,
        request.intent,
        request.timestamp_ms,
        request.payload,
        _from_hex(request.signature, "signature"),
    )
    return SignatureVerifyResponse(enclave_id=enclave_id, valid=valid)


# ==============================================================================
# Weather consumer
# ==============================================================================


@app.post("/api/v1/weather", response_model=WeatherReadingResponse)
async def update_weather(request: WeatherUpdateRequest):
    """Accept a weather report signed by a registered enclave."""
    reading = weather.update_weather(
        request.enclave_id,
        request.location,
        request.temperature,
        request.timestamp_ms,
        _from_hex(request.signature, "signature"),
    )
    return WeatherReadingResponse.from_reading(reading)


@app.get("/api/v1/weather", response_model=WeatherReadingListResponse)
async def list_weather(enclave_id: str | None = Query(None)):
    readings = [WeatherReadingResponse.from_reading(r) for r in weather.list_readings(enclave_id)]
    return WeatherReadingListResponse(readings=readings, total=len(readings))


# ==============================================================================
# Settings
# ==============================================================================


@app.get("/api/v1/settings")
async def get_settings(group: str | None = Query(None)):
    """List settings with their effective values and sources."""
    return {"settings": list_settings(group)}


@app.put("/api/v1/settings/{key:path}")
async def update_setting(
    key: str,
    request: SettingUpdateRequest,
    _admin: None = Depends(require_admin_token),
):
    """Save a setting value to the database."""
    if key not in SETTING_DEFS:
        raise HTTPException(status_code=404, detail=f"Unknown setting: {key}")
    set_setting(key, request.value)
    logger.info(f"Setting updated: {key}")
    return {"key": key, "status": "saved"}


@app.delete("/api/v1/settings/{key:path}")
async def reset_setting(key: str, _admin: None = Depends(require_admin_token)):
    """Remove a setting from the database (reverts to env var or default)."""
    if key not in SETTING_DEFS:
        raise HTTPException(status_code=404, detail=f"Unknown setting: {key}")
    deleted = delete_setting(key)
    logger.info(f"Setting reset: {key} (was_in_db={deleted})")
    return {"key": key, "status": "reset"}


# Run with: uvicorn enclave_registry.main:app --host 0.0.0.0 --port 8080
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)
