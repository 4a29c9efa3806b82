import logging
import threading
from collections import deque
from datetime import datetime

logger = logging.getLogger(__name__)

# Recent pipeline errors, newest last. Exposed on the status endpoint.
_recent_errors = deque(maxlen=100)
_errors_lock = threading.Lock()


def log_pipeline_error(song_id, stage, error_msg, title=None):
    """Log a pipeline processing error. Safe to call from background threads."""
    logger.error(f"[{stage}] song {song_id}{f' ({title})' if title else ''}: {error_msg}")
    with _errors_lock:
        _recent_errors.append(
            {
                "songId": song_id,
                "stage": stage,
                "message": str(error_msg),
                "title": title,
                "at": datetime.now().isoformat(timespec="seconds"),
            }
        )


def log_exception(error, song_id=None, title=None):
    """Log a PipelineError using its own stage name."""
    log_pipeline_error(
        song_id if song_id is not None else getattr(error, "song_id", None),
        getattr(error, "stage", "pipeline"),
        error,
        title=title,
    )


def get_recent_errors(limit=20):
    """Get a copy of the most recent pipeline errors, newest first."""
    with _errors_lock:
        items = list(_recent_errors)
    return list(reversed(items))[:limit]


def clear_recent_errors():
    with _errors_lock:
        _recent_errors.clear()
