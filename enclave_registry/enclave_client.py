"""HTTP client for a running enclave's endpoints.

The enclave exposes:
    GET  /get_attestation  -> {"attestation": "<hex COSE_Sign1 document>"}
    GET  /health_check     -> {"pk": "<hex public key>", "endpoints_status": {...}}
    POST /process_data     -> {"response": {...intent message...}, "signature": "<hex>"}

Fetching an attestation is orchestration outside the registry core; this
module only moves bytes. Retries are the caller's business.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .settings import get_setting_int

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {"user-agent": "enclave-registry/0.1"}


class EnclaveClientError(Exception):
    """Raised when an enclave endpoint cannot be reached or returns garbage."""

    pass


def _timeout() -> float:
    return float(get_setting_int("enclave.request_timeout_seconds", fallback=10))


def _decode_hex_field(data: Any, key: str, url: str) -> bytes:
    value = data.get(key) if isinstance(data, dict) else None
    if not isinstance(value, str) or not value:
        raise EnclaveClientError(f"Response from {url} has no {key!r} field")
    try:
        return bytes.fromhex(value)
    except ValueError as e:
        raise EnclaveClientError(f"Field {key!r} from {url} is not hex: {e}") from e


async def _request_json(method: str, url: str, **kwargs) -> Any:
    try:
        async with httpx.AsyncClient(timeout=_timeout(), headers=DEFAULT_HEADERS) as client:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
    except httpx.HTTPStatusError as e:
        raise EnclaveClientError(
            f"Enclave request failed: HTTP {e.response.status_code} from {url}"
        ) from e
    except httpx.HTTPError as e:
        raise EnclaveClientError(f"Enclave request to {url} failed: {e}") from e
    except ValueError as e:
        raise EnclaveClientError(f"Invalid JSON from {url}: {e}") from e


async def fetch_attestation(enclave_url: str) -> bytes:
    """Fetch the raw attestation document committing to the enclave's public key."""
    url = f"{enclave_url.rstrip('/')}/get_attestation"
    data = await _request_json("GET", url)
    document = _decode_hex_field(data, "attestation", url)
    logger.info(f"Fetched attestation from {enclave_url} ({len(document)} bytes)")
    return document


async def fetch_public_key(enclave_url: str) -> bytes:
    """Fetch the enclave's ephemeral public key from its health check."""
    url = f"{enclave_url.rstrip('/')}/health_check"
    data = await _request_json("GET", url)
    return _decode_hex_field(data, "pk", url)


async def fetch_signed_response(enclave_url: str, payload: dict) -> dict:
    """Ask the enclave to process *payload* and return its signed response.

    Returns:
        Dict with ``response`` (intent, timestamp_ms, data) and hex ``signature``
    """
    url = f"{enclave_url.rstrip('/')}/process_data"
    data = await _request_json("POST", url, json={"payload": payload})
    if not isinstance(data, dict) or "response" not in data or "signature" not in data:
        raise EnclaveClientError(f"Response from {url} is not a signed response")
    return data
