import logging
import shutil
import threading
from pathlib import Path

from .constants import DELETE_RETRIES, DELETE_RETRY_DELAY, SONG_FILES
from .error_logging import log_exception
from .errors import FileLockFailure

logger = logging.getLogger(__name__)


def song_file(download_dir, song_id, kind, ext="mp3"):
    """Path of a per-song artifact ("video", "audio" or "karaoke")."""
    return Path(download_dir) / SONG_FILES[kind].format(id=song_id, ext=ext)


def karaoke_files(download_dir, song_id):
    """All karaoke artifacts for a song, whatever their extension."""
    return sorted(Path(download_dir).glob(f"{song_id}_karaoke.*"))


def separation_workdir(separated_dir, model, audio_path):
    """Intermediate directory the separation tool writes for an audio file.

    The tool namespaces its output by model name and the input's base name.
    """
    return Path(separated_dir) / (model or "htdemucs") / Path(audio_path).stem


def remove_tree(path):
    """Remove a directory tree if it exists. Returns True if something was removed."""
    path = Path(path)
    if not path.exists():
        return False
    try:
        shutil.rmtree(path)
        logger.info(f"Cleaned up: {path}")
        return True
    except OSError as e:
        logger.error(f"Cleanup failed for {path}: {e}")
        return False


def try_delete(path, retries=DELETE_RETRIES, delay=DELETE_RETRY_DELAY, timer=threading.Timer):
    """Delete a file, retrying later while it is locked.

    Retries are scheduled with ``timer`` so the caller never blocks. After the
    last retry the file is abandoned and only logged.
    """
    if not path:
        return
    path = Path(path)
    if not path.exists():
        return
    try:
        path.unlink()
        logger.info(f"Deleted: {path}")
    except OSError as e:
        if retries > 0:
            logger.warning(f"Delete failed for {path} ({e}), retrying in {delay}s")
            t = timer(delay, try_delete, args=(path, retries - 1, delay, timer))
            t.daemon = True
            t.start()
        else:
            log_exception(FileLockFailure(f"Giving up on deleting {path}: {e}"))


def copy_artifact(source, target):
    """Copy a produced artifact into place, creating the target directory."""
    target = Path(target)
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, target)
    return target
