"""Settings to queue-config mapping and instance identity fallback."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from cliq.common.config import CommonSettings, QueueConfig, resolve_instance_id


def test_defaults_match_delivery_contract():
    config = QueueConfig.from_settings(CommonSettings(postgres_dsn="sqlite://"))

    assert config.batch_size == 10
    assert config.idle_delay_seconds == 1.0
    assert config.lease_duration == timedelta(seconds=60)
    assert config.max_retries == 3
    assert (config.backoff_initial_seconds, config.backoff_max_seconds) == (1.0, 60.0)


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("PUSH_BATCH_SIZE", "25")
    monkeypatch.setenv("PUSH_LEASE_SECONDS", "120")

    config = QueueConfig.from_settings(CommonSettings())

    assert config.batch_size == 25
    assert config.lease_seconds == 120


def test_fly_machine_id_is_accepted_as_instance_id(monkeypatch):
    monkeypatch.delenv("INSTANCE_ID", raising=False)
    monkeypatch.setenv("FLY_MACHINE_ID", "machine-abc")

    assert CommonSettings().instance_id == "machine-abc"


def test_instance_id_falls_back_to_random():
    first = resolve_instance_id(None)
    second = resolve_instance_id("")

    assert first and second and first != second
    assert resolve_instance_id("host-1") == "host-1"


def test_invalid_batch_size_rejected():
    with pytest.raises(ValidationError):
        QueueConfig(batch_size=0)
