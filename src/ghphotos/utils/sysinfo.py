"""Host system description recorded in audit trails and metadata files."""

from __future__ import annotations

import platform
import socket
from pathlib import Path


def os_name() -> str:
    """Return a short lower-case OS name (``linux``, ``darwin``, ``windows``)."""

    return platform.system().lower() or "unknown"


def arch() -> str:
    machine = platform.machine().lower()
    return {"x86_64": "amd64", "aarch64": "arm64"}.get(machine, machine or "unknown")


def hostname() -> str:
    try:
        return socket.gethostname()
    except OSError:
        return ""


def _linux_pretty_name() -> str:
    os_release = Path("/etc/os-release")
    try:
        lines = os_release.read_text(encoding="utf-8").splitlines()
    except OSError:
        return "Linux"
    for line in lines:
        if line.startswith("PRETTY_NAME="):
            return line.split("=", 1)[1].strip().strip('"')
    return "Linux"


def os_version() -> str:
    """Return a human readable operating system version string."""

    system = platform.system()
    if system == "Darwin":
        release = platform.mac_ver()[0]
        return f"macOS {release}" if release else "macOS"
    if system == "Windows":
        release = platform.release()
        return f"Windows {release}" if release else "Windows"
    if system == "Linux":
        return _linux_pretty_name()
    return ""
