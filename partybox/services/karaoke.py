import logging
import time
from pathlib import Path

from .process_runner import spawn_tool
from ..models.state import KaraokeJob
from ..utils.constants import KARAOKE_PROGRESS_CAP, PROGRESS_COMPLETE, STATUS_READY
from ..utils.error_logging import log_pipeline_error
from ..utils.errors import ProcessSpawnFailure, SeparationFailure
from ..utils.file_handling import copy_artifact, remove_tree, separation_workdir, song_file
from ..utils.helpers import demucs_command

logger = logging.getLogger(__name__)

# demucs defaults, only passed when the config differs
_DEFAULT_OVERLAP = 0.25
_DEFAULT_SEGMENT = 7.8
_DEFAULT_SHIFTS = 1


def output_extension(dcfg):
    fmt = (dcfg.get("outputFormat") or "mp3").lower()
    return fmt if fmt in ("mp3", "wav", "flac") else "mp3"


def build_demucs_args(dcfg, audio_path, separated_dir):
    """demucs arguments for a two-stem split of one audio file."""
    args = ["-n", dcfg.get("model") or "htdemucs", "-o", str(separated_dir)]
    if dcfg.get("twoStems"):
        args.extend(["--two-stems", dcfg["twoStems"]])

    ext = output_extension(dcfg)
    if ext == "mp3":
        args.append("--mp3")
    elif ext == "flac":
        args.append("--flac")

    if dcfg.get("overlap") is not None and dcfg["overlap"] != _DEFAULT_OVERLAP:
        args.extend(["--overlap", str(dcfg["overlap"])])
    if dcfg.get("segment") is not None and dcfg["segment"] != _DEFAULT_SEGMENT:
        args.extend(["--segment", str(dcfg["segment"])])
    if dcfg.get("shifts") is not None and dcfg["shifts"] != _DEFAULT_SHIFTS:
        args.extend(["--shifts", str(dcfg["shifts"])])
    if dcfg.get("overlapOutput"):
        args.append("--overlap-output")
    if dcfg.get("float32"):
        args.append("--float32")
    if dcfg.get("clipMode"):
        args.extend(["--clip-mode", dcfg["clipMode"]])
    if dcfg.get("noSegment"):
        args.append("--no-segment")
    if dcfg.get("jobs"):
        args.extend(["-j", str(dcfg["jobs"])])
    if dcfg.get("device"):
        args.extend(["-d", dcfg["device"]])
    if dcfg.get("repo"):
        args.extend(["--repo", dcfg["repo"]])
    args.append(str(audio_path))
    return args


def is_candidate(song):
    return (
        song is not None
        and song.status == STATUS_READY
        and not song.karaoke_ready
        and not song.karaoke_processing
    )


class KaraokeScheduler:
    """
    Single-flight vocal separation.

    Songs explicitly requested by a client wait in a FIFO manual queue that is
    always served first; when it is empty and auto-processing is on, the
    current song and then the playlist are scanned in order.
    """

    def __init__(self, store, config, download_dir, separated_dir, spawn=spawn_tool):
        self.store = store
        self.config = config
        self.download_dir = Path(download_dir)
        self.separated_dir = Path(separated_dir)
        self.manual_queue = []
        # songs whose last separation failed; skipped by the auto-scan
        self.failed_ids = set()
        self._spawn = spawn

    def queue(self, song, prioritize=False):
        with self.store.lock:
            if song is None or song.karaoke_ready or song.karaoke_processing:
                return
            if prioritize:
                self.failed_ids.discard(song.id)
                if all(s.id != song.id for s in self.manual_queue):
                    self.manual_queue.append(song)
            self.schedule_next()

    def schedule_next(self):
        """Start the next separation job if none is running."""
        with self.store.lock:
            if self.store.is_processing_karaoke:
                return
            while self.manual_queue:
                song = self.manual_queue.pop(0)
                if is_candidate(song) and self.store.is_live(song):
                    if self.process(song):
                        return

            if self.store.auto_process_karaoke:
                for song in self.store.queue_order():
                    if song.id in self.failed_ids:
                        continue
                    if is_candidate(song) and self.process(song):
                        return
            # idle until the next add/ready/setting change/completion

    def process(self, song):
        """Start separating a song. Returns True if a job was started."""
        with self.store.lock:
            if self.store.is_processing_karaoke or not is_candidate(song):
                return False
            audio_path = song.local_audio_path
            if not audio_path or not Path(audio_path).exists():
                self.failed_ids.add(song.id)
                log_pipeline_error(song.id, "separation", "Audio file missing", title=song.title)
                return False

            dcfg = self.config.section("demucs")
            args = demucs_command() + build_demucs_args(dcfg, audio_path, self.separated_dir)
            job = KaraokeJob(None, song)
            song.karaoke_processing = True
            song.karaoke_progress = 0
            logger.info(f"Processing audio: {Path(audio_path).name}")
            try:
                job.process = self._spawn(
                    "demucs",
                    args,
                    on_progress=lambda pct: self._on_progress(job, pct),
                    on_exit=lambda result: self._on_exit(job, result),
                    on_line=lambda line: logger.debug(f"[demucs] {line}"),
                )
            except ProcessSpawnFailure as e:
                song.karaoke_processing = False
                song.karaoke_progress = 0
                self.failed_ids.add(song.id)
                log_pipeline_error(song.id, "separation", e, title=song.title)
                self._cleanup_workdir(song)
                self.store.broadcast()
                return False

            self.store.active_karaoke_processes[song.id] = job
            self.store.broadcast()
            return True

    def terminate(self, song_id):
        """Kill a running separation for a song and forget any pending request."""
        with self.store.lock:
            self.manual_queue = [s for s in self.manual_queue if s.id != song_id]
            job = self.store.active_karaoke_processes.pop(song_id, None)
            if job is None:
                return False
            logger.info(f"Terminating separation for song {song_id}")
            job.process.kill()
            job.song.karaoke_processing = False
            job.song.karaoke_progress = 0
            self._cleanup_workdir(job.song)
            self.schedule_next()
            return True

    def clear_queue(self):
        with self.store.lock:
            self.manual_queue = []
            self.failed_ids.clear()

    # --- callbacks ---

    def _is_active(self, job):
        return job.process is not None and self.store.active_karaoke_processes.get(job.song.id) is job

    def _on_progress(self, job, percent):
        with self.store.lock:
            if not self._is_active(job):
                return
            progress = min(KARAOKE_PROGRESS_CAP, round(percent))
            if progress > (job.song.karaoke_progress or 0):
                job.song.karaoke_progress = progress
                self.store.emit("karaoke_progress", {"id": job.song.id, "progress": progress})

    def _on_exit(self, job, result):
        with self.store.lock:
            if not self._is_active(job):
                return
            song = job.song
            del self.store.active_karaoke_processes[song.id]
            song.karaoke_processing = False
            try:
                self._collect_output(song, result)
            except SeparationFailure as e:
                song.karaoke_progress = 0
                self.failed_ids.add(song.id)
                log_pipeline_error(song.id, e.stage, e, title=song.title)
                if result.output:
                    logger.debug(f"Last demucs output for {song.id}:\n{result.last_lines()}")
            finally:
                self._cleanup_workdir(song)
            self.store.broadcast()
            self.schedule_next()

    def _collect_output(self, song, result):
        if not result.ok:
            raise SeparationFailure(f"Failed with code {result.returncode}", song_id=song.id)

        dcfg = self.config.section("demucs")
        ext = output_extension(dcfg)
        stem = dcfg.get("twoStems") or "vocals"
        workdir = separation_workdir(self.separated_dir, dcfg.get("model"), song.local_audio_path)
        produced = workdir / f"no_{stem}.{ext}"
        if not produced.exists():
            raise SeparationFailure(f"Output not found: {produced}", song_id=song.id)

        target = song_file(self.download_dir, song.id, "karaoke", ext=ext)
        try:
            copy_artifact(produced, target)
        except OSError as e:
            raise SeparationFailure(f"Could not copy {produced}: {e}", song_id=song.id) from e

        song.karaoke_src = f"/downloads/{target.name}?t={int(time.time() * 1000)}"
        song.karaoke_ready = True
        song.karaoke_progress = PROGRESS_COMPLETE
        logger.info(f"Karaoke ready: {song.title}")

    def _cleanup_workdir(self, song):
        model = self.config.section("demucs").get("model")
        audio_path = song.local_audio_path or song_file(self.download_dir, song.id, "audio")
        remove_tree(separation_workdir(self.separated_dir, model, audio_path))
