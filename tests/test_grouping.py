"""
Tests for endpoint grouping and wire models.
"""

import pytest
from pydantic import ValidationError

from batchfetch.grouping import endpoint_group, is_batchable
from batchfetch.models import (
    BatchEnvelope,
    BatchItem,
    BatchResponseEntry,
    HttpMethod,
    batch_response_adapter,
)


@pytest.mark.parametrize(
    ("endpoint", "depth", "expected"),
    [
        ("/api/users/1", 2, "/api/users"),
        ("/api/users/2/stats", 2, "/api/users"),
        ("/api/users/1?include=stats", 2, "/api/users"),
        ("/api//users/1", 2, "/api/users"),
        ("/api/users/1/stats", 3, "/api/users/1"),
        ("/api", 2, "/api"),
        ("/", 2, "/"),
        ("/api/teams/5", 1, "/api"),
    ],
)
def test_endpoint_group(endpoint: str, depth: int, expected: str):
    assert endpoint_group(endpoint, depth=depth) == expected


def test_prefix_sharing_endpoints_share_group():
    assert endpoint_group("/api/users/1") == endpoint_group("/api/users/42/matches")
    assert endpoint_group("/api/users/1") != endpoint_group("/api/teams/1")


@pytest.mark.parametrize("endpoint", ["", "users/1", "http://host/api/users"])
def test_endpoint_group_rejects_invalid_endpoint(endpoint: str):
    with pytest.raises(ValueError):
        endpoint_group(endpoint)


def test_endpoint_group_rejects_invalid_depth():
    with pytest.raises(ValueError):
        endpoint_group("/api/users/1", depth=0)


@pytest.mark.parametrize(
    ("endpoint", "expected"),
    [
        ("/api/users/1", True),
        ("/api/batch", False),
        ("/api/batch/", False),
        ("/auth/login", False),
        ("/apiusers", False),
        ("", False),
        ("api/users", False),
    ],
)
def test_is_batchable(endpoint: str, expected: bool):
    assert is_batchable(endpoint) is expected


def test_is_batchable_custom_prefixes():
    assert is_batchable("/v2/users/1", prefixes=("/v2/",))
    assert not is_batchable("/api/users/1", prefixes=("/v2/",))


def test_batch_envelope_wire_format():
    envelope = BatchEnvelope(
        requests=[
            BatchItem(id="a", endpoint="/api/users/1"),
            BatchItem(id="b", endpoint="/api/users", method=HttpMethod.POST, body={"x": None}),
        ]
    )

    assert envelope.to_wire() == {
        "requests": [
            {"id": "a", "endpoint": "/api/users/1", "method": "GET"},
            {"id": "b", "endpoint": "/api/users", "method": "POST", "body": {"x": None}},
        ]
    }


def test_batch_envelope_requires_requests():
    with pytest.raises(ValidationError):
        BatchEnvelope(requests=[])


def test_batch_item_rejects_relative_endpoint():
    with pytest.raises(ValidationError):
        BatchItem(id="a", endpoint="users/1")


def test_batch_response_entries_decode():
    entries = batch_response_adapter.validate_json(
        b'[{"id": "a", "status": 200, "data": {"n": 1}},'
        b' {"id": "b", "status": 404, "error": "not found"}]'
    )

    assert entries == [
        BatchResponseEntry(id="a", status=200, data={"n": 1}),
        BatchResponseEntry(id="b", status=404, error="not found"),
    ]
    assert entries[0].ok
    assert not entries[1].ok


@pytest.mark.parametrize(("status", "ok"), [(199, False), (200, True), (299, True), (300, False)])
def test_response_entry_ok_range(status: int, ok: bool):
    assert BatchResponseEntry(id="a", status=status).ok is ok
