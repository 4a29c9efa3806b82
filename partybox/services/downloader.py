import logging
from pathlib import Path

from .loudness import build_loudnorm_args, gain_from_result
from .process_runner import spawn_tool
from ..utils.constants import (
    MAX_CONCURRENT_DOWNLOADS,
    MIN_CONCURRENT_DOWNLOADS,
    PROGRESS,
    PROGRESS_COMPLETE,
    STAGE_AUDIO,
    STAGE_LOUDNESS,
    STAGE_VIDEO,
    STATUS_DOWNLOADING,
    STATUS_ERROR,
    STATUS_PENDING,
    STATUS_READY,
)
from ..utils.error_logging import log_pipeline_error
from ..utils.errors import DownloadStageFailure, ProcessSpawnFailure
from ..utils.file_handling import song_file
from ..utils.helpers import ffmpeg_command, get_cookies_path, yt_dlp_command

logger = logging.getLogger(__name__)

# (flag, config key) pairs passed through when the value is truthy
_VALUE_FLAGS = [
    ("-N", "concurrentFragments"),
    ("--proxy", "proxy"),
    ("--socket-timeout", "socketTimeout"),
    ("--retries", "retries"),
    ("--user-agent", "userAgent"),
    ("--limit-rate", "limitRate"),
]
_VIDEO_ONLY_VALUE_FLAGS = [
    ("--http-chunk-size", "httpChunkSize"),
    ("--fragment-retries", "fragmentRetries"),
]
_SWITCHES = [
    ("--no-check-certificates", "noCheckCertificates"),
    ("--force-ipv4", "forceIPv4"),
    ("--force-ipv6", "forceIPv6"),
    ("--no-part", "noPart"),
    ("--restrict-filenames", "restrictFilenames"),
    ("--windows-filenames", "windowsFilenames"),
    ("--no-overwrites", "noOverwrites"),
]
_VIDEO_ONLY_SWITCHES = [
    ("--ignore-errors", "ignoreErrors"),
    ("--abort-on-error", "abortOnError"),
    ("--no-warnings", "noWarnings"),
]


def build_ytdlp_args(cfg, url, output_path, stage, cookies=None):
    """yt-dlp arguments for the video-only or audio-only fetch."""
    if stage == STAGE_VIDEO:
        fmt = cfg.get("videoFormat") or "bestvideo[ext=mp4]/bestvideo"
    else:
        fmt = cfg.get("audioFormat") or "bestaudio[ext=m4a]/bestaudio"
    args = ["-f", fmt, "-o", str(output_path), "--newline"]
    if cfg.get("noPlaylist") is not False:
        args.append("--no-playlist")

    value_flags = _VALUE_FLAGS + (_VIDEO_ONLY_VALUE_FLAGS if stage == STAGE_VIDEO else [])
    for flag, key in value_flags:
        if cfg.get(key):
            args.extend([flag, str(cfg[key])])

    switches = _SWITCHES + (_VIDEO_ONLY_SWITCHES if stage == STAGE_VIDEO else [])
    for flag, key in switches:
        if cfg.get(key):
            args.append(flag)

    for header in cfg.get("addHeader") or []:
        args.extend(["--add-header", header])
    for key in ("extractorArgs", "postprocessorArgs"):
        if cfg.get(key):
            args.extend(cfg[key].split())
    if cookies:
        args.extend(["--cookies", cookies])
    args.append(url)
    return args


def stage_progress(stage, percent):
    """Map a stage's own 0-100% onto its slice of the overall progress."""
    start, end = PROGRESS[stage]
    return start + (end - start) * min(max(percent, 0.0), 100.0) / 100.0


class _StageRun:
    """Binds a running stage process to the song it works for."""

    def __init__(self, song, stage):
        self.song = song
        self.stage = stage
        self.handle = None


class DownloadScheduler:
    """
    Bounded worker pool advancing pending songs through
    video fetch -> audio fetch -> loudness analysis.
    """

    def __init__(self, store, config, download_dir, data_dir=None, karaoke=None, spawn=spawn_tool):
        self.store = store
        self.config = config
        self.download_dir = Path(download_dir)
        self.data_dir = Path(data_dir) if data_dir else self.download_dir.parent
        self.karaoke = karaoke
        self._spawn = spawn
        self._scheduling = False

    def max_concurrent(self):
        value = self.config.section("system").get("maxConcurrentDownloads") or 1
        try:
            value = int(value)
        except (TypeError, ValueError):
            value = 1
        return max(MIN_CONCURRENT_DOWNLOADS, min(MAX_CONCURRENT_DOWNLOADS, value))

    def schedule(self):
        """Fill free download slots with pending songs, current song first."""
        with self.store.lock:
            # a spawn failure inside the loop frees its slot for the next song
            if self._scheduling:
                return
            self._scheduling = True
            try:
                limit = self.max_concurrent()
                for song in self.store.queue_order():
                    if len(self.store.active_downloads) >= limit:
                        break
                    if song.status != STATUS_PENDING or song.id in self.store.active_downloads:
                        continue
                    self.start_download(song)
            finally:
                self._scheduling = False

    def start_download(self, song):
        with self.store.lock:
            if song.id in self.store.active_downloads:
                return
            song.status = STATUS_DOWNLOADING
            song.progress = 0
            self.store.broadcast()
            logger.info(f"Downloading: {song.title}")
            self._launch_fetch(song, STAGE_VIDEO)

    def terminate(self, song_id):
        """Kill the in-flight stage for a song. Returns True if one was running."""
        with self.store.lock:
            handle = self.store.active_downloads.pop(song_id, None)
            if handle is None:
                return False
            logger.info(f"Cancelling download for song {song_id}")
            handle.kill()
            return True

    # --- stages ---

    def _launch(self, run, name, args, on_exit):
        # Caller holds the store lock, so callbacks cannot observe the map
        # before the handle is registered.
        try:
            run.handle = self._spawn(
                name,
                args,
                on_progress=lambda pct: self._on_progress(run, pct),
                on_exit=lambda result: on_exit(run, result),
                on_line=lambda line: logger.debug(f"[{name}] {line}"),
            )
        except ProcessSpawnFailure as e:
            return e
        self.store.active_downloads[run.song.id] = run.handle
        return None

    def _launch_fetch(self, song, stage):
        cfg = self.config.section("ytdlp")
        kind = "video" if stage == STAGE_VIDEO else "audio"
        output = song_file(self.download_dir, song.id, kind)
        cookies = get_cookies_path(song.original_url, self.data_dir)
        args = yt_dlp_command(self.data_dir) + build_ytdlp_args(
            cfg, song.original_url, output, stage, cookies
        )
        run = _StageRun(song, stage)
        error = self._launch(run, "yt-dlp", args, self._on_fetch_exit)
        if error:
            self._fail(run, f"{kind.capitalize()} spawn error: {error}")

    def _launch_loudness(self, song):
        audio_path = song_file(self.download_dir, song.id, "audio")
        args = build_loudnorm_args(audio_path, self.config.section("ffmpeg"), ffmpeg_command())
        logger.info(f"Analyzing loudness: {audio_path.name}")
        run = _StageRun(song, STAGE_LOUDNESS)
        error = self._launch(run, "ffmpeg", args, self._on_loudness_exit)
        if error:
            # analysis is optional, a missing ffmpeg just means no gain
            logger.error(f"Loudness spawn error: {error}")
            self._finish(song, 0.0)

    def _is_active(self, run):
        return run.handle is not None and self.store.active_downloads.get(run.song.id) is run.handle

    def _on_progress(self, run, percent):
        if run.stage == STAGE_LOUDNESS:
            return
        with self.store.lock:
            if not self._is_active(run):
                return
            progress = stage_progress(run.stage, percent)
            if progress > run.song.progress:
                run.song.progress = progress
                self.store.emit("update_progress", {"id": run.song.id, "progress": progress})

    def _on_fetch_exit(self, run, result):
        with self.store.lock:
            if not self._is_active(run):
                return
            song = run.song
            if not result.ok:
                error = DownloadStageFailure(
                    f"{run.stage.capitalize()} download failed with code {result.returncode}",
                    song_id=song.id,
                )
                self._fail(run, str(error), result.last_lines())
                return

            if run.stage == STAGE_VIDEO:
                logger.info(f"Video downloaded: {song.title}")
                self._launch_fetch(song, STAGE_AUDIO)
                return

            logger.info(f"Audio downloaded: {song.title}")
            self._set_progress(song, PROGRESS[STAGE_LOUDNESS][0])
            self._launch_loudness(song)

    def _on_loudness_exit(self, run, result):
        with self.store.lock:
            if not self._is_active(run):
                return
            audio_path = song_file(self.download_dir, run.song.id, "audio")
            gain = gain_from_result(result, self.config.section("ffmpeg"), audio_path)
            self._finish(run.song, gain)

    def _set_progress(self, song, progress):
        if progress > song.progress:
            song.progress = progress
            self.store.emit("update_progress", {"id": song.id, "progress": progress})

    def _finish(self, song, gain):
        self._set_progress(song, PROGRESS[STAGE_LOUDNESS][1])
        self.store.active_downloads.pop(song.id, None)

        video_path = song_file(self.download_dir, song.id, "video")
        audio_path = song_file(self.download_dir, song.id, "audio")
        song.status = STATUS_READY
        song.progress = PROGRESS_COMPLETE
        song.src = f"/downloads/{video_path.name}"
        song.audio_src = f"/downloads/{audio_path.name}"
        song.local_video_path = str(video_path)
        song.local_audio_path = str(audio_path)
        song.loudness_gain = gain
        song.karaoke_ready = False
        song.karaoke_src = None
        logger.info(f"Ready: {song.title} (Loudness Gain: {gain:.2f} dB)")

        if self.store.current_playing is song:
            self.store.player_status["playing"] = True
        self.store.broadcast()
        if self.store.auto_process_karaoke and self.karaoke is not None:
            self.karaoke.queue(song)
        self.schedule()

    def _fail(self, run, message, details=None):
        song = run.song
        self.store.active_downloads.pop(song.id, None)
        song.status = STATUS_ERROR
        log_pipeline_error(song.id, run.stage, message, title=song.title)
        if details:
            logger.debug(f"Last tool output for {song.id}:\n{details}")
        self.store.broadcast()
        self.schedule()
