# ------------------------------------------------------------------------------
# monagent - top CPU-consuming processes
#
# License: GNU GPL v3 (non-commercial use only)
# ------------------------------------------------------------------------------

import psutil

from metrics.sample import ProcessInfo, round_half_up

DEFAULT_LIMIT = 5

_GONE = (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess)


def prime():
    """
    Starts the per-process CPU counters. psutil reports 0.0 on the first
    cpu_percent() call, so the real reading is taken by collect() after the
    caller has waited out its measurement window.
    """
    primed = []
    for proc in psutil.process_iter(['pid', 'name']):
        try:
            proc.cpu_percent(interval=None)
            primed.append(proc)
        except _GONE:
            continue
    return primed


def collect(primed, limit=DEFAULT_LIMIT):
    """
    Reads CPU percent for previously primed processes and returns the top
    `limit` as ProcessInfo, highest first. Processes that exited or deny access
    in the meantime are dropped; fewer than `limit` survivors is not an error.
    """
    processes = []
    seen = set()
    for proc in primed:
        if proc.pid in seen:
            continue
        try:
            cpu = proc.cpu_percent(interval=None)
        except _GONE:
            continue
        name = proc.info.get('name') or ""
        seen.add(proc.pid)
        processes.append(ProcessInfo(pid=proc.pid, name=name, cpu_percent=round_half_up(cpu, 2)))

    processes.sort(key=lambda p: p.cpu_percent, reverse=True)
    return tuple(processes[:max(limit, 0)])


# Optional debug entry point
if __name__ == "__main__":
    import json
    import time
    from dataclasses import asdict
    procs = prime()
    time.sleep(1.0)
    print(json.dumps([asdict(p) for p in collect(procs)], indent=2))
