import importlib.util
import logging
import shutil
import subprocess

from .constants import STATUS_ERROR, STATUS_OK, STATUS_WARNING

logger = logging.getLogger(__name__)


def check_python_module(component, module, required=True):
    """Check that a tool we run with ``python -m`` is importable"""
    try:
        found = importlib.util.find_spec(module) is not None
    except (ImportError, ValueError):
        found = False
    if found:
        return {"component": component, "status": STATUS_OK, "details": f"{module} is installed"}
    return {
        "component": component,
        "status": STATUS_ERROR if required else STATUS_WARNING,
        "details": f"{module} is not installed",
    }


def check_ffmpeg():
    """Check that ffmpeg is on PATH and runs"""
    path = shutil.which("ffmpeg")
    if not path:
        return {
            "component": "FFmpeg",
            "status": STATUS_WARNING,
            "details": "ffmpeg not found, loudness analysis will use 0 dB gain",
        }
    try:
        result = subprocess.run([path, "-version"], capture_output=True, text=True, timeout=10)
    except (OSError, subprocess.TimeoutExpired) as e:
        return {"component": "FFmpeg", "status": STATUS_ERROR, "details": f"ffmpeg error: {e}"}
    first_line = (result.stdout or "").splitlines()[:1]
    return {
        "component": "FFmpeg",
        "status": STATUS_OK if result.returncode == 0 else STATUS_ERROR,
        "details": first_line[0] if first_line else f"exit code {result.returncode}",
    }


def check_file_system(download_dir):
    """Check that the downloads directory exists and has enough space"""
    try:
        download_dir.mkdir(parents=True, exist_ok=True)
        free_space = shutil.disk_usage(download_dir).free / (1024 * 1024 * 1024)
    except OSError as e:
        return {"component": "File System", "status": STATUS_ERROR, "details": f"File system error: {e}"}

    # Thresholds in GB
    warning_threshold = 5
    error_threshold = 1

    if free_space < error_threshold:
        status, label = STATUS_ERROR, "Critical low disk space"
    elif free_space < warning_threshold:
        status, label = STATUS_WARNING, "Low disk space"
    else:
        status, label = STATUS_OK, "File system OK"
    return {"component": "File System", "status": status, "details": f"{label}: {free_space:.2f} GB free"}


def get_processing_queue(store):
    """Songs with work in flight, keyed by id"""
    with store.lock:
        queue = {}
        for song_id, process in store.active_downloads.items():
            song = store.find(song_id)
            queue[song_id] = {
                "job": "download",
                "pid": getattr(process, "pid", None),
                "title": song.title if song else None,
                "progress": song.progress if song else None,
            }
        for song_id, job in store.active_karaoke_processes.items():
            queue[song_id] = {
                "job": "karaoke",
                "pid": getattr(job.process, "pid", None),
                "title": job.song.title,
                "progress": job.song.karaoke_progress,
            }
        return queue


def run_all_checks(download_dir):
    return [
        check_python_module("yt-dlp", "yt_dlp"),
        check_python_module("Demucs", "demucs", required=False),
        check_ffmpeg(),
        check_file_system(download_dir),
    ]
