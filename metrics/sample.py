# ------------------------------------------------------------------------------
# monagent - sample records and their JSON wire layouts
#
# License: GNU GPL v3 (non-commercial use only)
# ------------------------------------------------------------------------------

import json
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple


def round_half_up(value, digits):
    """
    Rounds a non-negative reading to the given number of decimals, halves away
    from zero (12.345 -> 12.35, not the bankers' 12.34).
    """
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def now_timestamp():
    """Local wall-clock time as RFC 3339 with offset, e.g. 2024-01-01T00:00:00+09:00."""
    return datetime.now().astimezone().isoformat(timespec="seconds")


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    name: str
    cpu_percent: float


@dataclass(frozen=True)
class Sample:
    key: str
    timestamp: str
    cpu_usage_percent: float
    memory_used_mb: int
    memory_total_mb: int
    disk_used_gb: int
    disk_total_gb: int
    tenant_id: Optional[str] = None
    container_id: Optional[str] = None
    processes: Optional[Tuple[ProcessInfo, ...]] = None


@dataclass(frozen=True)
class Profile:
    """
    One payload layout. `fields` maps Sample attributes to wire names, in wire order.
    """
    name: str
    fields: Tuple[Tuple[str, str], ...]
    key_in_payload: bool
    requires_tenant: bool = False
    requires_container: bool = False
    with_processes: bool = False


_CAMEL_READINGS = (
    ("timestamp", "timestamp"),
    ("cpu_usage_percent", "cpuUsagePercent"),
    ("memory_used_mb", "memoryUsedMb"),
    ("memory_total_mb", "memoryTotalMb"),
    ("disk_used_gb", "diskUsedGb"),
    ("disk_total_gb", "diskTotalGb"),
)

PROFILES = {
    "basic": Profile(
        name="basic",
        fields=(
            ("key", "key"),
            ("timestamp", "timestamp"),
            ("cpu_usage_percent", "cpu_usage_percent"),
            ("memory_used_mb", "memory_used_mb"),
            ("memory_total_mb", "memory_total_mb"),
            ("disk_used_gb", "disk_used_gb"),
            ("disk_total_gb", "disk_total_gb"),
        ),
        key_in_payload=True,
    ),
    "tenant": Profile(
        name="tenant",
        fields=(("tenant_id", "tenantId"), ("key", "key")) + _CAMEL_READINGS,
        key_in_payload=False,
        requires_tenant=True,
    ),
    "container": Profile(
        name="container",
        fields=(("tenant_id", "tid"), ("container_id", "cid"), ("key", "key")) + _CAMEL_READINGS,
        key_in_payload=True,
        requires_tenant=True,
        requires_container=True,
        with_processes=True,
    ),
}

DEFAULT_PROFILE = "container"


def get_profile(name):
    """Looks up a profile by name; raises KeyError for unknown names."""
    try:
        return PROFILES[name]
    except KeyError:
        raise KeyError(f"unknown profile {name!r} (expected one of: {', '.join(sorted(PROFILES))})")


def to_payload(sample: Sample, profile: Profile, include_key=None):
    """
    Builds the profile's JSON object for a sample. `include_key` overrides the
    profile's default for echoing the shared key.
    """
    if include_key is None:
        include_key = profile.key_in_payload
    payload = {}
    for attr, wire in profile.fields:
        if attr == "key" and not include_key:
            continue
        payload[wire] = getattr(sample, attr)
    if profile.with_processes:
        payload["processList"] = [
            {"pid": p.pid, "name": p.name, "cpuPercent": p.cpu_percent}
            for p in (sample.processes or ())
        ]
    return payload


def serialize(sample, profile, include_key=None):
    return json.dumps(to_payload(sample, profile, include_key), ensure_ascii=False)


def parse_payload(text, profile: Profile):
    """
    Inverse of serialize(): reads a profile's JSON text back into a Sample.
    Fields the profile does not carry come back as their defaults.
    """
    data = json.loads(text)
    values = {attr: data[wire] for attr, wire in profile.fields if wire in data}
    values.setdefault("key", "")
    if profile.with_processes:
        values["processes"] = tuple(
            ProcessInfo(pid=p["pid"], name=p["name"], cpu_percent=p["cpuPercent"])
            for p in data.get("processList", [])
        )
    return Sample(**values)
