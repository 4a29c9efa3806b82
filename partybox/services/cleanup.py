import logging
import threading
from pathlib import Path

from ..utils.constants import DELETE_RETRIES, DELETE_RETRY_DELAY
from ..utils.file_handling import karaoke_files, remove_tree, separation_workdir, song_file, try_delete

logger = logging.getLogger(__name__)


class SongCleaner:
    """Reclaims a song's processes and files, immediately or after a grace delay."""

    def __init__(
        self,
        store,
        config,
        downloader,
        karaoke,
        download_dir,
        separated_dir,
        timer=threading.Timer,
        retries=DELETE_RETRIES,
        retry_delay=DELETE_RETRY_DELAY,
    ):
        self.store = store
        self.config = config
        self.downloader = downloader
        self.karaoke = karaoke
        self.download_dir = Path(download_dir)
        self.separated_dir = Path(separated_dir)
        self.timer = timer
        self.retries = retries
        self.retry_delay = retry_delay
        self._pending = {}  # timer -> snapshot
        self._pending_lock = threading.Lock()

    def delete_song_files(self, song):
        """Terminate any work for the song and delete everything it owns."""
        if song is None:
            return
        with self.store.lock:
            if self.downloader.terminate(song.id):
                # a freed slot goes to the next pending song
                self.downloader.schedule()
            self.karaoke.terminate(song.id)

        model = self.config.section("demucs").get("model")
        audio_path = song.local_audio_path or song_file(self.download_dir, song.id, "audio")
        remove_tree(separation_workdir(self.separated_dir, model, audio_path))

        # names are deterministic, so songs cancelled mid-download are covered too
        paths = [
            song.local_video_path or song_file(self.download_dir, song.id, "video"),
            song.local_audio_path or song_file(self.download_dir, song.id, "audio"),
        ]
        paths.extend(karaoke_files(self.download_dir, song.id))
        for path in paths:
            try_delete(path, self.retries, self.retry_delay, self.timer)

    def schedule_delete(self, song):
        """Delete a snapshot of the song after the configured delay."""
        if song is None:
            return None
        snapshot = song.snapshot()
        delay_ms = self.config.section("system").get("deleteDelayMs")
        delay = max(0, delay_ms if delay_ms is not None else 20000) / 1000.0

        timer = self.timer(delay, self._run_scheduled, args=(snapshot,))
        timer.daemon = True
        with self._pending_lock:
            self._pending[timer] = snapshot
        timer.start()
        logger.info(f"Scheduled deletion of {snapshot.title} in {delay:g}s")
        return timer

    def _run_scheduled(self, snapshot):
        with self._pending_lock:
            self._pending = {t: s for t, s in self._pending.items() if s is not snapshot}
        self.delete_song_files(snapshot)

    def cancel_pending(self):
        """Cancel delayed deletions that have not fired yet."""
        with self._pending_lock:
            pending, self._pending = self._pending, {}
        for timer in pending:
            timer.cancel()
        return len(pending)
