from __future__ import annotations

import logging
import platform
from typing import Dict

import cpuinfo
import psutil

logger = logging.getLogger(__name__)


def collect_specs() -> Dict[str, str]:
    cpu = cpuinfo.get_cpu_info()
    memory_gb = psutil.virtual_memory().total / (1024 ** 3)
    disk_gb = psutil.disk_usage(".").free / (1024 ** 3)
    return {
        "System": platform.system(),
        "Release": platform.release(),
        "Machine": platform.machine(),
        "Python": platform.python_version(),
        "CPU": cpu.get("brand_raw", "Unknown CPU"),
        "Numbers of CPU": str(cpu.get("count", "")),
        "RAM": f"{memory_gb:.2f} GB",
        "Free disk": f"{disk_gb:.2f} GB",
    }


def log_host_specs() -> Dict[str, str]:
    """
    Log the current host specifications and return them.
    """
    specs = collect_specs()
    for key, value in specs.items():
        logger.info("%s: %s", key, value)
    return specs
