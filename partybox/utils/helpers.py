import logging
import os
import re
import shutil
import socket
import subprocess
import sys
from pathlib import Path

import psutil

from .constants import COOKIE_FILES

logger = logging.getLogger(__name__)


def get_network_interfaces():
    """Non-internal IPv4 addresses, one entry per interface."""
    results = []
    for name, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            if addr.address.startswith("127."):
                continue
            results.append({"name": name, "ip": addr.address})
    return results or [{"name": "Localhost", "ip": "127.0.0.1"}]


def get_wifi_ssid():
    """Best-effort name of the wireless network the host is on."""
    if sys.platform == "win32":
        cmd = ["netsh", "wlan", "show", "interfaces"]
    elif sys.platform == "darwin":
        cmd = ["networksetup", "-getairportnetwork", "en0"]
    else:
        cmd = ["iwgetid", "-r"]
    try:
        out = subprocess.run(cmd, capture_output=True, text=True, timeout=3)
    except (OSError, subprocess.TimeoutExpired):
        return "Unknown Network"
    if out.returncode != 0:
        return "Unknown Network"

    if sys.platform == "win32":
        match = re.search(r"^\s*SSID\s*:\s*(.+)$", out.stdout, re.MULTILINE)
        return match.group(1).strip() if match else "Wired / Hotspot"
    if sys.platform == "darwin":
        _, _, ssid = out.stdout.partition(":")
        return ssid.strip() or "Wired / Hotspot"
    return out.stdout.strip() or "Wired / Hotspot"


def get_cookies_path(url, data_dir):
    """Per-site cookies file in the data directory, if the user provided one."""
    for host, filename in COOKIE_FILES.items():
        if host in (url or ""):
            path = Path(data_dir) / filename
            return str(path) if path.is_file() else None
    return None


def yt_dlp_command(data_dir):
    """A yt-dlp binary dropped into the data directory wins over the installed module."""
    for name in ("yt-dlp.exe", "yt-dlp"):
        local = Path(data_dir) / name
        if local.is_file() and os.access(local, os.X_OK):
            return [str(local)]
    return [sys.executable, "-m", "yt_dlp"]


def demucs_command():
    return [sys.executable, "-m", "demucs"]


def ffmpeg_command():
    return shutil.which("ffmpeg") or "ffmpeg"
