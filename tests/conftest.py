from types import SimpleNamespace

import pytest

from metrics.sample import ProcessInfo, Sample


class FakeClock:
    """Monotonic clock that only moves when something sleeps or advances it."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds):
        self.now += seconds


class FakeConn:
    def __init__(self, headers=None, fail_sends=0):
        self.response = SimpleNamespace(headers=headers or {})
        self.sent = []
        self.closed = False
        self.fail_sends = fail_sends

    def send(self, message):
        if self.fail_sends:
            self.fail_sends -= 1
            raise OSError("broken pipe")
        self.sent.append(message)

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sample():
    return Sample(
        key="abc123",
        timestamp="2024-01-01T00:00:00+09:00",
        cpu_usage_percent=42.4,
        memory_used_mb=2048,
        memory_total_mb=8192,
        disk_used_gb=50,
        disk_total_gb=500,
        tenant_id="tenant-7",
        container_id="web-01",
        processes=(
            ProcessInfo(pid=42, name="postgres", cpu_percent=31.5),
            ProcessInfo(pid=7, name="nginx", cpu_percent=2.25),
        ),
    )
