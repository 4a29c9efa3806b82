import copy
import logging
import random
import threading
import time

from .song import serialize
from ..utils.constants import DEFAULT_PLAYER_STATUS, HISTORY_LIMIT, TICK_INTERVAL

logger = logging.getLogger(__name__)


class KaraokeJob:
    """Entry of the active separation map: the running process and its song."""

    __slots__ = ("process", "song")

    def __init__(self, process, song):
        self.process = process
        self.song = song


class StateStore:
    """
    The single in-memory record of what is playing, queued and played.

    All mutations happen while holding ``lock``; the broadcast that follows a
    mutation is sent before the lock is released so observers see snapshots in
    mutation order. Process reader threads take the same lock.
    """

    def __init__(self, emitter=None, clock=time.monotonic):
        self.lock = threading.RLock()
        self.playlist = []
        self.history = []
        self.current_playing = None
        self.player_status = dict(DEFAULT_PLAYER_STATUS)
        self.auto_process_karaoke = False

        # Job maps, the only record of work in flight
        self.active_downloads = {}  # song id -> process
        self.active_karaoke_processes = {}  # song id -> KaraokeJob

        self._emitter = emitter
        self._clock = clock
        self._last_tick = None

    def set_emitter(self, emitter):
        self._emitter = emitter

    @property
    def is_downloading(self):
        return bool(self.active_downloads)

    @property
    def is_processing_karaoke(self):
        return bool(self.active_karaoke_processes)

    # --- broadcasting ---

    def snapshot(self):
        with self.lock:
            return {
                "playlist": serialize(self.playlist),
                "currentPlaying": self.current_playing.to_dict() if self.current_playing else None,
                "playerStatus": dict(self.player_status),
                "history": serialize(self.history),
                "autoProcessKaraoke": self.auto_process_karaoke,
            }

    def emit(self, event, payload=None):
        if self._emitter is None:
            return
        try:
            if payload is None:
                self._emitter(event)
            else:
                self._emitter(event, payload)
        except Exception as e:
            # A broken client connection must not abort a pipeline callback
            logger.warning(f"Failed to emit {event}: {e}")

    def broadcast(self):
        with self.lock:
            self.emit("sync_state", self.snapshot())

    def emit_tick(self):
        """Best-effort playback tick. Ticks closer than TICK_INTERVAL are dropped."""
        now = self._clock()
        if self._last_tick is not None and now - self._last_tick < TICK_INTERVAL:
            return False
        self._last_tick = now
        self.emit("sync_tick", dict(self.player_status))
        return True

    # --- lookups ---

    def find(self, song_id):
        """Find a song in the playback set (current or playlist)."""
        with self.lock:
            if self.current_playing is not None and self.current_playing.id == song_id:
                return self.current_playing
            for song in self.playlist:
                if song.id == song_id:
                    return song
            return None

    def is_live(self, song):
        """True if this exact song object is still current or queued."""
        with self.lock:
            return song is not None and self.find(song.id) is song

    def queue_order(self):
        """[current, *playlist], the order both schedulers scan in."""
        with self.lock:
            songs = [self.current_playing] if self.current_playing else []
            return songs + list(self.playlist)

    # --- mutations ---

    def enqueue(self, song):
        """Make the song current if nothing plays, otherwise append it."""
        with self.lock:
            if self.current_playing is None:
                self.current_playing = song
                self.player_status["playing"] = True
            else:
                self.playlist.append(song)
            return song

    def promote(self):
        """Move current to the history head and the first queued song to current.

        Returns the song that was playing, or None.
        """
        with self.lock:
            previous = self.current_playing
            if previous is not None:
                self.history.insert(0, previous.history_entry())
                del self.history[HISTORY_LIMIT:]

            if self.playlist:
                self.current_playing = self.playlist.pop(0)
                self.player_status.update(
                    playing=True, currentTime=0, pitch=0, vocalRemoval=False
                )
            else:
                self.current_playing = None
                self.player_status["playing"] = False
            return previous

    def remove_from_playlist(self, song_id):
        with self.lock:
            for index, song in enumerate(self.playlist):
                if song.id == song_id:
                    return self.playlist.pop(index)
            return None

    def move_to_top(self, song_id):
        with self.lock:
            song = self.remove_from_playlist(song_id)
            if song is not None:
                self.playlist.insert(0, song)
            return song

    def shuffle(self, rng=random):
        """Shuffle the waiting list only; current stays put."""
        with self.lock:
            rng.shuffle(self.playlist)

    def update_player_status(self, data):
        with self.lock:
            self.player_status.update(data)
            return dict(self.player_status)

    def clear(self):
        """Empty every collection. Returns all songs that were held."""
        with self.lock:
            songs = list(self.playlist)
            if self.current_playing is not None:
                songs.append(self.current_playing)
            songs.extend(self.history)
            self.playlist = []
            self.history = []
            self.current_playing = None
            self.player_status = copy.deepcopy(DEFAULT_PLAYER_STATUS)
            self.auto_process_karaoke = False
            return songs
