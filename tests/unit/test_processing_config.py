import pytest

from catalog_sync.settings_store import ProcessingConfig


def test_defaults():
    config = ProcessingConfig.from_dict(None)
    assert config.to_dict() == {
        "concurrency": 15,
        "batch_interval_ms": 100,
        "max_retries": 5,
        "base_delay_ms": 500,
        "request_timeout_ms": 30000,
    }


@pytest.mark.parametrize("raw, field, expected", [
    ({"concurrency": 0}, "concurrency", 1),
    ({"concurrency": 99}, "concurrency", 30),
    ({"batch_interval_ms": 10}, "batch_interval_ms", 50),
    ({"batch_interval_ms": 5000}, "batch_interval_ms", 1000),
    ({"max_retries": 0}, "max_retries", 1),
    ({"max_retries": 50}, "max_retries", 10),
    ({"base_delay_ms": 1}, "base_delay_ms", 100),
    ({"base_delay_ms": 9999}, "base_delay_ms", 2000),
    ({"request_timeout_ms": 100}, "request_timeout_ms", 5000),
    ({"request_timeout_ms": 600000}, "request_timeout_ms", 60000),
    ({"concurrency": "8"}, "concurrency", 8),
    ({"concurrency": "fast"}, "concurrency", 15),
])
def test_values_are_clamped(raw, field, expected):
    assert getattr(ProcessingConfig.from_dict(raw), field) == expected


def test_retry_policy_follows_config():
    policy = ProcessingConfig(max_retries=3, base_delay_ms=200, request_timeout_ms=10000).retry_policy()
    assert policy.max_attempts == 3
    assert policy.base_delay_ms == 200
    assert policy.timeout_seconds == 10.0
    assert policy.max_delay_ms == 15000
