import logging
import random

from .cleanup import SongCleaner
from .downloader import DownloadScheduler
from .fetcher import UrlFetcher
from .karaoke import KaraokeScheduler
from ..models.song import Song
from ..utils.constants import STATUS_READY

logger = logging.getLogger(__name__)

# player status keys a client may change through control actions
_CONTROL_KEYS = {
    "seek": "currentTime",
    "volume": "volume",
    "pitch": "pitch",
    "loudness_norm": "loudnessNorm",
}


class Jukebox:
    """
    Client commands against the shared queue.

    Each command mutates the store and then broadcasts, all under the store
    lock, and wakes whichever scheduler the change concerns.
    """

    def __init__(self, store, config, fetcher, downloader, karaoke, cleaner, rng=random):
        self.store = store
        self.config = config
        self.fetcher = fetcher
        self.downloader = downloader
        self.karaoke = karaoke
        self.cleaner = cleaner
        self.rng = rng

    @classmethod
    def build(cls, store, config, data_dir, download_dir, separated_dir, spawn=None, timer=None, ydl_factory=None):
        """Wire up the schedulers around one store."""
        spawn_kwargs = {"spawn": spawn} if spawn else {}
        karaoke = KaraokeScheduler(store, config, download_dir, separated_dir, **spawn_kwargs)
        downloader = DownloadScheduler(
            store, config, download_dir, data_dir=data_dir, karaoke=karaoke, **spawn_kwargs
        )
        cleaner = SongCleaner(
            store,
            config,
            downloader,
            karaoke,
            download_dir,
            separated_dir,
            **({"timer": timer} if timer else {}),
        )
        fetcher = UrlFetcher(config, data_dir, ydl_factory=ydl_factory)
        return cls(store, config, fetcher, downloader, karaoke, cleaner)

    # --- adding ---

    def parse_url(self, url):
        return self.fetcher.fetch(url)

    def add_song(self, url, requester=None):
        """Resolve a URL and queue its first item. Raises ParseFailure."""
        items = self.fetcher.fetch(url)
        song = Song.from_item(items[0], requester=requester)
        with self.store.lock:
            self.store.enqueue(song)
            self.store.emit("add_success")
            self.store.broadcast()
            self.downloader.schedule()
        return song

    def add_batch(self, items, requester=None):
        songs = [Song.from_item(item, requester=requester) for item in items or [] if isinstance(item, dict)]
        songs = [s for s in songs if s.original_url]
        if not songs:
            return 0
        with self.store.lock:
            for song in songs:
                self.store.enqueue(song)
            self.store.emit("add_success", len(songs))
            self.store.broadcast()
            self.downloader.schedule()
        logger.info(f"Added {len(songs)} song(s) for {requester or 'anonymous'}")
        return len(songs)

    def readd_history(self, item):
        song = Song.from_history(item)
        if not song.original_url:
            return None
        with self.store.lock:
            self.store.enqueue(song)
            self.store.emit("add_success")
            self.store.broadcast()
            self.downloader.schedule()
        return song

    # --- playback ---

    def next_song(self, manual=False):
        with self.store.lock:
            if manual:
                self.store.emit("exec_control", {"type": "cut"})
            previous = self.store.promote()
            if previous is not None:
                self.cleaner.schedule_delete(previous)
            self.store.broadcast()
            self.downloader.schedule()
            return previous

    def manage_queue(self, action, song_id):
        with self.store.lock:
            if action == "delete":
                song = self.store.remove_from_playlist(song_id)
                if song is not None:
                    self.cleaner.delete_song_files(song)
            elif action == "top":
                song = self.store.move_to_top(song_id)
            else:
                logger.warning(f"Unknown queue action: {action}")
                return None
            if song is None:
                return None
            self.store.broadcast()
            self.downloader.schedule()
            if self.store.auto_process_karaoke:
                self.karaoke.schedule_next()
            return song

    def shuffle(self):
        with self.store.lock:
            self.store.shuffle(self.rng)
            logger.info("Playlist shuffled")
            self.store.broadcast()
            if self.store.auto_process_karaoke:
                self.karaoke.schedule_next()

    def set_auto_process(self, enabled):
        with self.store.lock:
            self.store.auto_process_karaoke = bool(enabled)
            logger.info(f"autoProcessKaraoke: {self.store.auto_process_karaoke}")
            if self.store.auto_process_karaoke:
                self.karaoke.failed_ids.clear()
                self.karaoke.schedule_next()
            self.store.broadcast()

    def prioritize_karaoke(self):
        """Move the current song to the front of the separation queue."""
        with self.store.lock:
            song = self.store.current_playing
            if (
                song is None
                or song.status != STATUS_READY
                or song.karaoke_ready
                or song.karaoke_processing
            ):
                return False
            logger.info(f"Manual karaoke trigger for: {song.title}")
            self.karaoke.queue(song, prioritize=True)
            return True

    def control_action(self, action):
        action_type = action.get("type")
        with self.store.lock:
            status = self.store.player_status
            if action_type == "toggle":
                status["playing"] = not status["playing"]
            elif action_type in _CONTROL_KEYS:
                status[_CONTROL_KEYS[action_type]] = action.get("value")
            elif action_type == "vocal_removal":
                if action.get("value"):
                    self.prioritize_karaoke()
                status["vocalRemoval"] = bool(action.get("value"))
            self.store.emit("exec_control", action)

    def player_tick(self, data):
        with self.store.lock:
            self.store.update_player_status(data)
            self.store.emit_tick()

    def system_reset(self):
        with self.store.lock:
            songs = self.store.clear()
            self.karaoke.clear_queue()
            for song in songs:
                self.cleaner.delete_song_files(song)
            logger.info(f"System reset, removed {len(songs)} song(s)")
            self.store.broadcast()
            self.store.emit("exec_control", {"type": "reload"})

    # --- advanced settings ---

    def get_config(self):
        return self.config.get()

    def save_config(self, update):
        """Persist settings and let the download pool pick up a new limit."""
        config = self.config.save(update)
        self.downloader.schedule()
        return config

    def reset_config(self):
        config = self.config.reset()
        self.downloader.schedule()
        return config

    def shutdown(self):
        """Kill running tools; pending delayed deletions are dropped."""
        with self.store.lock:
            self.store.auto_process_karaoke = False
            self.karaoke.clear_queue()
            for song_id in list(self.store.active_downloads):
                self.downloader.terminate(song_id)
            for song_id in list(self.store.active_karaoke_processes):
                self.karaoke.terminate(song_id)
        self.cleaner.cancel_pending()
