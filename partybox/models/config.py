import copy
import json
import logging
import os
import threading
from pathlib import Path

from ..utils.errors import ConfigPersistFailure

logger = logging.getLogger(__name__)

DEFAULT_ADVANCED_CONFIG = {
    "ytdlp": {
        "videoFormat": "bestvideo[ext=mp4]/bestvideo",
        "audioFormat": "bestaudio[ext=m4a]/bestaudio",
        "concurrentFragments": 16,
        "httpChunkSize": "10M",
        "noPlaylist": True,
        "proxy": "",
        "socketTimeout": 0,
        "retries": 10,
        "fragmentRetries": 10,
        "userAgent": "",
        "extractorArgs": "",
        "postprocessorArgs": "",
        "noCheckCertificates": False,
        "limitRate": "",
        "geoBypass": True,
        "addHeader": [],
        "mergeOutputFormat": "",
        "flatPlaylist": True,
        "dumpJson": True,
        "noWarnings": False,
        "ignoreErrors": False,
        "abortOnError": False,
        "noPart": False,
        "restrictFilenames": False,
        "windowsFilenames": False,
        "noOverwrites": False,
        "forceIPv4": False,
        "forceIPv6": False,
    },
    "demucs": {
        "model": "htdemucs",
        "twoStems": "vocals",
        "outputFormat": "mp3",
        "overlap": 0.25,
        "segment": 7.8,
        "shifts": 1,
        "overlapOutput": False,
        "float32": False,
        "clipMode": "rescale",
        "noSegment": False,
        "jobs": 0,
        "device": "",
        "repo": "",
    },
    "ffmpeg": {
        "loudnessI": -16,
        "loudnessTP": -1.5,
        "loudnessLRA": 11,
        "loudnessGainClamp": 12,
    },
    "system": {
        "deleteDelayMs": 20000,
        "maxConcurrentDownloads": 1,
    },
}


def _same_kind(current, value):
    """True if ``value`` may replace ``current`` without changing its type."""
    if isinstance(current, bool):
        return isinstance(value, bool)
    if isinstance(current, (int, float)):
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if isinstance(current, (str, list, dict)):
        return isinstance(value, type(current))
    return True


def deep_merge(target, source):
    """Merge ``source`` into ``target`` in place and return ``target``.

    Nested dicts merge key by key; lists and scalars replace. ``None`` never
    overwrites, and a value whose type does not match the existing one is
    dropped, so every known key keeps a usable value.
    """
    if not isinstance(source, dict):
        return target
    for key, value in source.items():
        if value is None:
            continue
        current = target.get(key)
        if key in target and not _same_kind(current, value):
            logger.warning(f"Ignoring setting {key}={value!r}: expected {type(current).__name__}")
            continue
        if isinstance(value, dict):
            if not isinstance(current, dict):
                target[key] = {}
            deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)
    return target


def default_config():
    return copy.deepcopy(DEFAULT_ADVANCED_CONFIG)


class ConfigStore:
    """
    Loads and saves the advanced settings (yt-dlp, demucs, ffmpeg, system)
    as one JSON document. Every read goes through a merge onto the defaults,
    so callers can rely on every key being present.
    """

    def __init__(self, path):
        self.path = Path(path)
        self._config = None
        self._lock = threading.Lock()

    def load(self):
        """Load config from disk, falling back to defaults on any problem."""
        config = default_config()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                loaded = json.load(f)
            deep_merge(config, loaded)
        except FileNotFoundError:
            # first run
            pass
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load {self.path.name}: {e}")
        with self._lock:
            self._config = config
        return copy.deepcopy(config)

    def get(self):
        if self._config is None:
            self.load()
        with self._lock:
            return copy.deepcopy(self._config)

    def section(self, name):
        return self.get().get(name, {})

    def save(self, update):
        """Merge ``update`` onto the defaults and persist it."""
        config = deep_merge(default_config(), update)
        self._write(config)
        logger.info("Saved advanced settings")
        return copy.deepcopy(config)

    def reset(self):
        config = default_config()
        self._write(config)
        logger.info("Restored default advanced settings")
        return copy.deepcopy(config)

    def _write(self, config):
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(config, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to save {self.path.name}: {e}")
            raise ConfigPersistFailure(f"Could not write {self.path}: {e}") from e
        with self._lock:
            self._config = config
