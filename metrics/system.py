# ------------------------------------------------------------------------------
# monagent - CPU, memory and root-disk readings
#
# License: GNU GPL v3 (non-commercial use only)
# ------------------------------------------------------------------------------

import psutil

from metrics import top_processes
from metrics.sample import Sample, now_timestamp, round_half_up

CPU_WINDOW = 1.0  # seconds
MB = 1024 * 1024
GB = 1024 * 1024 * 1024


def read_cpu(window=CPU_WINDOW):
    """Aggregate CPU usage over `window` seconds, clamped to 0-100, one decimal."""
    cpu = psutil.cpu_percent(interval=window)
    return round_half_up(min(max(cpu, 0.0), 100.0), 1)


def read_memory():
    vmem = psutil.virtual_memory()
    return int(vmem.used) // MB, int(vmem.total) // MB


def read_disk(path="/"):
    disk = psutil.disk_usage(path)
    return int(disk.used) // GB, int(disk.total) // GB


def collect_sample(key, tenant_id=None, container_id=None, with_processes=False,
                   process_limit=top_processes.DEFAULT_LIMIT):
    """
    Takes one self-consistent Sample. Process counters are primed before the
    aggregate CPU window and read right after it, so every reading belongs to
    the same one-second observation.
    Raises psutil.Error / OSError when a reading cannot be taken.
    """
    primed = top_processes.prime() if with_processes else None
    timestamp = now_timestamp()
    cpu = read_cpu()
    memory_used, memory_total = read_memory()
    disk_used, disk_total = read_disk("/")
    processes = top_processes.collect(primed, process_limit) if with_processes else None

    return Sample(
        key=key,
        timestamp=timestamp,
        cpu_usage_percent=cpu,
        memory_used_mb=memory_used,
        memory_total_mb=memory_total,
        disk_used_gb=disk_used,
        disk_total_gb=disk_total,
        tenant_id=tenant_id,
        container_id=container_id,
        processes=processes,
    )
