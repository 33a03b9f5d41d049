"""Tests for stale identity retirement."""

import asyncio
from unittest.mock import patch

import pytest

from enclave_registry import lifecycle
from enclave_registry.errors import ConfigNotFound, EnclaveNotFound, NotStale, RegistryError
from enclave_registry.registry import (
    create_config,
    get_enclave,
    list_enclaves,
    register_enclave,
    update_measurements,
)

NEW_PCRS = (b"\xaa" * 48, b"\xbb" * 48, b"\xcc" * 48)


@pytest.fixture
def registered(config_and_capability, signer, attestation_for):
    config, capability = config_and_capability
    identity = register_enclave(config.config_id, attestation_for(signer.public_key))
    return config, capability, identity


def test_current_identity_is_not_stale(registered):
    _, _, identity = registered
    with pytest.raises(NotStale):
        lifecycle.retire(identity.enclave_id)
    assert get_enclave(identity.enclave_id).enclave_id == identity.enclave_id


def test_retire_after_update(registered):
    config, capability, identity = registered
    update_measurements(config.config_id, capability, *NEW_PCRS)
    lifecycle.retire(identity.enclave_id, config.config_id)
    with pytest.raises(EnclaveNotFound):
        get_enclave(identity.enclave_id)


def test_retire_twice(registered):
    config, capability, identity = registered
    update_measurements(config.config_id, capability, *NEW_PCRS)
    lifecycle.retire(identity.enclave_id)
    with pytest.raises(EnclaveNotFound):
        lifecycle.retire(identity.enclave_id)


def test_retire_with_wrong_config(registered, pcrs):
    config, capability, identity = registered
    other, _ = create_config("weather", "other", *pcrs)
    update_measurements(config.config_id, capability, *NEW_PCRS)
    with pytest.raises(RegistryError):
        lifecycle.retire(identity.enclave_id, other.config_id)
    assert get_enclave(identity.enclave_id).enclave_id == identity.enclave_id


def test_retire_stale_keeps_current(registered, signer, attestation_for):
    config, capability, old = registered
    second_old = register_enclave(config.config_id, attestation_for(signer.public_key))
    update_measurements(config.config_id, capability, *NEW_PCRS)
    current = register_enclave(config.config_id, attestation_for(signer.public_key, NEW_PCRS))

    retired = lifecycle.retire_stale(config.config_id)
    assert set(retired) == {old.enclave_id, second_old.enclave_id}
    assert [i.enclave_id for i in list_enclaves(config.config_id)] == [current.enclave_id]
    assert lifecycle.retire_stale(config.config_id) == []


def test_retire_stale_unknown_config():
    with pytest.raises(ConfigNotFound):
        lifecycle.retire_stale("missing")


@pytest.mark.asyncio
async def test_background_pruner_retires_stale(registered):
    config, capability, identity = registered
    update_measurements(config.config_id, capability, *NEW_PCRS)

    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        raise asyncio.CancelledError

    with (
        patch("enclave_registry.lifecycle.get_setting_int", return_value=30),
        patch("enclave_registry.lifecycle.asyncio.sleep", side_effect=fake_sleep),
    ):
        with pytest.raises(asyncio.CancelledError):
            await lifecycle.background_stale_pruner()

    assert sleeps == [30]
    assert list_enclaves(config.config_id) == []


@pytest.mark.asyncio
async def test_background_pruner_disabled(registered):
    _, _, identity = registered

    async def fake_sleep(seconds):
        assert seconds == lifecycle.DISABLED_POLL_SECONDS
        raise asyncio.CancelledError

    with patch("enclave_registry.lifecycle.asyncio.sleep", side_effect=fake_sleep):
        with pytest.raises(asyncio.CancelledError):
            await lifecycle.background_stale_pruner()

    assert get_enclave(identity.enclave_id).enclave_id == identity.enclave_id
