"""
Device metrics reported with each heartbeat.

Readers return 0 when a figure is unavailable (non-Linux dev machines,
missing sysfs nodes) rather than failing the heartbeat.
"""

import os
from pathlib import Path
from typing import Any, Dict

THERMAL_PATHS = (
    "/sys/class/thermal/thermal_zone0/temp",
    "/sys/class/thermal/thermal_zone1/temp",
)

DISK_CHECK_PATHS = ("/var/lib/masjid-display", "/home", "/")


def get_cpu_temp() -> int:
    """
    Get CPU temperature in Celsius.

    Returns:
        CPU temperature or 0 if unavailable
    """
    try:
        for path in THERMAL_PATHS:
            if Path(path).exists():
                with open(path, 'r') as f:
                    # sysfs reports millidegrees
                    return int(f.read().strip()) // 1000
        return 0
    except (OSError, ValueError):
        return 0


def get_memory_usage() -> int:
    """
    Get system memory usage percentage.

    Returns:
        Memory usage percent (0-100) or 0 if unavailable
    """
    try:
        with open('/proc/meminfo', 'r') as f:
            meminfo = f.read()
    except OSError:
        return 0

    mem_total = 0
    mem_available = 0

    for line in meminfo.split('\n'):
        if line.startswith('MemTotal:'):
            mem_total = int(line.split()[1])
        elif line.startswith('MemAvailable:'):
            mem_available = int(line.split()[1])

    if mem_total > 0:
        return int(((mem_total - mem_available) / mem_total) * 100)
    return 0


def get_disk_free() -> float:
    """
    Get free disk space in gigabytes.

    Returns:
        Free disk space in GB or 0.0 if unavailable
    """
    try:
        for path in DISK_CHECK_PATHS:
            if Path(path).exists():
                stat = os.statvfs(path)
                return round(stat.f_bavail * stat.f_frsize / (1024 ** 3), 1)
        return 0.0
    except (OSError, AttributeError):
        return 0.0


def collect_heartbeat_metrics(uptime_seconds: float, last_error: str) -> Dict[str, Any]:
    """
    Build the metrics block of a heartbeat.

    Args:
        uptime_seconds: Seconds since the sync engine started
        last_error: Most recent error logged by the service ('' if none)
    """
    return {
        "uptime": int(uptime_seconds),
        "memoryUsage": get_memory_usage(),
        "cpuTemp": get_cpu_temp(),
        "diskFreeGb": get_disk_free(),
        "lastError": last_error,
    }
