from flask import Blueprint, current_app, jsonify

from ..utils.decorators import get_jukebox
from ..utils.error_logging import get_recent_errors
from ..utils.status_checks import get_processing_queue, run_all_checks

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


@system_bp.route("/status", methods=["GET"])
def status():
    """Tool availability, disk space, jobs in flight and recent pipeline errors."""
    jukebox = get_jukebox()
    return jsonify(
        {
            "checks": run_all_checks(current_app.config["DOWNLOAD_DIR"]),
            "processing": {str(k): v for k, v in get_processing_queue(jukebox.store).items()},
            "maxConcurrentDownloads": jukebox.downloader.max_concurrent(),
            "autoProcessKaraoke": jukebox.store.auto_process_karaoke,
            "errors": get_recent_errors(),
        }
    )


@system_bp.route("/state", methods=["GET"])
def state():
    return jsonify(get_jukebox().store.snapshot())
