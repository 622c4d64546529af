import dataclasses
import json
import re

import pytest

from metrics.sample import (
    PROFILES,
    Sample,
    get_profile,
    now_timestamp,
    parse_payload,
    round_half_up,
    serialize,
    to_payload,
)


@pytest.mark.parametrize("value,digits,expected", [
    (42.37, 1, 42.4),
    (12.345, 2, 12.35),
    (0.001, 2, 0.0),
    (99.999, 2, 100.0),
    (0.05, 1, 0.1),
    (100.0, 1, 100.0),
])
def test_round_half_up(value, digits, expected):
    assert round_half_up(value, digits) == expected


def test_timestamp_has_offset():
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}[+-]\d{2}:\d{2}", now_timestamp())


def test_sample_is_immutable(sample):
    with pytest.raises(dataclasses.FrozenInstanceError):
        sample.cpu_usage_percent = 1.0


def test_basic_payload_uses_snake_case_and_echoes_key(sample):
    payload = to_payload(sample, get_profile("basic"))
    assert payload == {
        "key": "abc123",
        "timestamp": "2024-01-01T00:00:00+09:00",
        "cpu_usage_percent": 42.4,
        "memory_used_mb": 2048,
        "memory_total_mb": 8192,
        "disk_used_gb": 50,
        "disk_total_gb": 500,
    }


def test_tenant_payload_keeps_key_out_by_default(sample):
    payload = to_payload(sample, get_profile("tenant"))
    assert payload["tenantId"] == "tenant-7"
    assert payload["cpuUsagePercent"] == 42.4
    assert "key" not in payload
    assert "processList" not in payload


def test_include_key_overrides_profile_default(sample):
    assert to_payload(sample, get_profile("tenant"), include_key=True)["key"] == "abc123"
    assert "key" not in to_payload(sample, get_profile("container"), include_key=False)


def test_container_payload_carries_identifiers_and_processes(sample):
    payload = json.loads(serialize(sample, get_profile("container")))
    assert list(payload) == [
        "tid", "cid", "key", "timestamp", "cpuUsagePercent", "memoryUsedMb",
        "memoryTotalMb", "diskUsedGb", "diskTotalGb", "processList",
    ]
    assert payload["tid"] == "tenant-7"
    assert payload["cid"] == "web-01"
    assert payload["processList"] == [
        {"pid": 42, "name": "postgres", "cpuPercent": 31.5},
        {"pid": 7, "name": "nginx", "cpuPercent": 2.25},
    ]


def test_container_payload_with_no_processes_sends_empty_list(sample):
    bare = dataclasses.replace(sample, processes=None)
    assert to_payload(bare, get_profile("container"))["processList"] == []


@pytest.mark.parametrize("name", sorted(PROFILES))
def test_serialize_then_parse_is_identical(sample, name):
    profile = get_profile(name)
    expected = Sample(**{
        attr: getattr(sample, attr)
        for attr, _ in profile.fields
    })
    if profile.with_processes:
        expected = dataclasses.replace(expected, processes=sample.processes)

    parsed = parse_payload(serialize(sample, profile, include_key=True), profile)

    assert parsed == expected


def test_unknown_profile():
    with pytest.raises(KeyError, match="unknown profile"):
        get_profile("verbose")
