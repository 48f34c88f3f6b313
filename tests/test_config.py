"""
Tests for CoalescerSettings in batchfetch.config.
"""

import pytest
from pydantic import ValidationError

from batchfetch.config import CoalescerSettings
from batchfetch.core import Coalescer


def test_defaults():
    settings = CoalescerSettings()

    assert settings.batch_endpoint == "/api/batch"
    assert settings.debounce_seconds == 0.05
    assert settings.group_depth == 2
    assert settings.max_wait_seconds is None
    assert settings.fail_missing_results is True
    assert settings.batchable_prefixes == ("/api/",)


def test_from_env_reads_prefixed_variables(monkeypatch):
    monkeypatch.setenv("BATCHFETCH_BASE_URL", "https://pickle.example")
    monkeypatch.setenv("BATCHFETCH_DEBOUNCE_SECONDS", "0.1")
    monkeypatch.setenv("BATCHFETCH_GROUP_DEPTH", "3")
    monkeypatch.setenv("BATCHFETCH_MAX_WAIT_SECONDS", "1.5")
    monkeypatch.setenv("BATCHFETCH_FAIL_MISSING_RESULTS", "off")
    monkeypatch.setenv("BATCHFETCH_BATCHABLE_PREFIXES", "/api/, /v2/")

    settings = CoalescerSettings.from_env()

    assert settings.base_url == "https://pickle.example"
    assert settings.debounce_seconds == 0.1
    assert settings.group_depth == 3
    assert settings.max_wait_seconds == 1.5
    assert settings.fail_missing_results is False
    assert settings.batchable_prefixes == ("/api/", "/v2/")


def test_from_env_overrides_take_precedence(monkeypatch):
    monkeypatch.setenv("BATCHFETCH_DEBOUNCE_SECONDS", "0.1")

    settings = CoalescerSettings.from_env(debounce_seconds=0.3, group_depth=None)

    assert settings.debounce_seconds == 0.3
    assert settings.group_depth == 2


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("BATCHFETCH_DEBOUNCE_SECONDS", "0"),
        ("BATCHFETCH_DEBOUNCE_SECONDS", "soon"),
        ("BATCHFETCH_GROUP_DEPTH", "0"),
        ("BATCHFETCH_BATCH_ENDPOINT", "api/batch"),
        ("BATCHFETCH_FAIL_MISSING_RESULTS", "maybe"),
        ("BATCHFETCH_BATCHABLE_PREFIXES", "api/"),
        ("BATCHFETCH_MAX_WAIT_SECONDS", "0.01"),
    ],
)
def test_from_env_rejects_invalid_values(monkeypatch, name: str, value: str):
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        CoalescerSettings.from_env()


def test_coalescer_from_settings():
    settings = CoalescerSettings(debounce_seconds=0.2, group_depth=1, max_wait_seconds=1.0)

    coalescer = Coalescer.from_settings(settings)

    assert coalescer.debounce_seconds == 0.2
    assert coalescer.batch_key("/api/users/1") == "/api"
