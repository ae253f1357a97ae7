import os
import platform
import shutil
import socket
from datetime import datetime

import psutil


def format_bytes(num) -> str:
    if num is None:
        return "-"
    size = float(num)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size < 1024 or unit == "TB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024


def main_ip() -> str:
    """First non-loopback IPv4 address, or 127.0.0.1."""
    for name, addrs in psutil.net_if_addrs().items():
        if name == "lo":
            continue
        for addr in addrs:
            if addr.family == socket.AF_INET and not addr.address.startswith("127."):
                return addr.address
    return "127.0.0.1"


def get_system_stats(disk_path: str = "/"):
    """
    Host snapshot for the dashboard: load, CPU, RAM, swap, disk, OS info.
    """
    cores = psutil.cpu_count() or 1
    load1, load5, load15 = os.getloadavg() if hasattr(os, "getloadavg") else (0.0, 0.0, 0.0)

    memory = psutil.virtual_memory()
    swap = psutil.swap_memory()
    total, used, free = shutil.disk_usage(disk_path)

    boot_time = datetime.fromtimestamp(psutil.boot_time()).strftime("%Y-%m-%d %H:%M:%S")

    return {
        "cpu": {
            "usage_percent": psutil.cpu_percent(interval=0.1),
            "cores": cores,
            "load": [round(load1, 2), round(load5, 2), round(load15, 2)],
            "load_percent": round(load1 / cores * 100, 1),
        },
        "memory": {
            "total": memory.total,
            "used": memory.used,
            "percent": memory.percent,
            "human": f"{format_bytes(memory.used)} / {format_bytes(memory.total)}",
        },
        "swap": {
            "total": swap.total,
            "used": swap.used,
            "percent": swap.percent,
        },
        "disk": {
            "total": total,
            "used": used,
            "free": free,
            "percent": round(used / total * 100, 1) if total else 0.0,
            "human": f"{format_bytes(used)} / {format_bytes(total)}",
        },
        "system": {
            "hostname": socket.gethostname(),
            "ip": main_ip(),
            "os": f"{platform.system()} {platform.release()}",
            "boot_time": boot_time,
        },
    }
