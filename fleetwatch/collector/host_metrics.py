"""
Host-level counters for the machine the collector runs on.
"""
import socket
import time

import psutil

from fleetwatch.models import HostMetrics


def read_host_metrics(disk_path: str = "/") -> HostMetrics:
    """Sample load, memory, disk and uptime. Raises psutil.Error/OSError when unavailable."""
    load_avg = [round(v, 2) for v in psutil.getloadavg()]
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage(disk_path)
    now = time.time()

    return HostMetrics(
        ts=int(now * 1000),
        hostname=socket.gethostname(),
        load_avg=load_avg,
        memory={"total": memory.total, "used": memory.used, "available": memory.available},
        disk={"total": disk.total, "used": disk.used},
        uptime=int(now - psutil.boot_time()),
    )
