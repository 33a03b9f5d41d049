"""Reference consumer: accept weather reports signed by a registered enclave."""

from __future__ import annotations

import logging

from .db_models import WeatherReading
from .errors import InvalidSignatureError
from .intent import WEATHER_RESPONSE, IntentScope
from .registry import get_enclave
from .signatures import verify_signature
from .storage import weather_reading_store

logger = logging.getLogger(__name__)


def update_weather(
    enclave_id: str,
    location: str,
    temperature: int,
    timestamp_ms: int,
    signature: bytes,
) -> WeatherReading:
    """Record a weather reading if *signature* verifies under the enclave's key.

    Raises:
        EnclaveNotFound: Unknown enclave_id
        InvalidSignatureError: Signature does not cover exactly these values
    """
    identity = get_enclave(enclave_id)
    payload = {"location": location, "temperature": temperature}
    if not verify_signature(
        identity, IntentScope.WEATHER, timestamp_ms, payload, signature, WEATHER_RESPONSE
    ):
        logger.warning(f"Rejected weather report for {location!r} from enclave {enclave_id}")
        raise InvalidSignatureError("Invalid signature")

    reading = WeatherReading(
        enclave_id=enclave_id,
        location=location,
        temperature=temperature,
        timestamp_ms=timestamp_ms,
    )
    weather_reading_store.create(reading)
    logger.info(f"Recorded weather for {location!r}: {temperature} (enclave {enclave_id})")
    return reading


def list_readings(enclave_id: str | None = None) -> list[WeatherReading]:
    return weather_reading_store.list(enclave_id)
