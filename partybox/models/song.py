import copy
import threading
import time
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, Optional

from ..utils.constants import STATUS_PENDING

_id_lock = threading.Lock()
_last_id = 0


def new_song_id() -> int:
    """Millisecond timestamp based id, bumped when two songs share a millisecond."""
    global _last_id
    with _id_lock:
        _last_id = max(_last_id + 1, int(time.time() * 1000))
        return _last_id


# python attribute -> client field name
_FIELD_NAMES = {
    "id": "id",
    "title": "title",
    "uploader": "uploader",
    "pic": "pic",
    "requester": "requester",
    "original_url": "originalUrl",
    "status": "status",
    "progress": "progress",
    "src": "src",
    "audio_src": "audioSrc",
    "local_video_path": "localVideoPath",
    "local_audio_path": "localAudioPath",
    "loudness_gain": "loudnessGain",
    "karaoke_ready": "karaokeReady",
    "karaoke_processing": "karaokeProcessing",
    "karaoke_progress": "karaokeProgress",
    "karaoke_src": "karaokeSrc",
    "played_at": "playedAt",
}


@dataclass
class Song:
    title: str
    original_url: str
    uploader: str = "Unknown"
    requester: Optional[str] = None
    pic: Optional[str] = None
    id: int = field(default_factory=new_song_id)
    status: str = STATUS_PENDING
    progress: float = 0
    src: Optional[str] = None
    audio_src: Optional[str] = None
    local_video_path: Optional[str] = None
    local_audio_path: Optional[str] = None
    loudness_gain: Optional[float] = None
    karaoke_ready: bool = False
    karaoke_processing: bool = False
    karaoke_progress: float = 0
    karaoke_src: Optional[str] = None
    played_at: Optional[str] = None

    @classmethod
    def from_item(cls, item: Dict[str, Any], requester=None) -> "Song":
        """Create a pending song from a resolved item ({title, uploader, pic, originalUrl})."""
        return cls(
            title=item.get("title") or "Unknown Title",
            uploader=item.get("uploader") or "Unknown",
            pic=item.get("pic"),
            original_url=item.get("originalUrl") or item.get("url"),
            requester=requester if requester is not None else item.get("requester"),
        )

    @classmethod
    def from_history(cls, item: Dict[str, Any]) -> "Song":
        """Fresh pending copy of a history entry: new id, no files, no karaoke state."""
        return cls.from_item(item)

    def snapshot(self) -> "Song":
        """Independent copy for deferred work."""
        return copy.deepcopy(self)

    def history_entry(self) -> "Song":
        """Snapshot for the history list; no job runs for it any more."""
        entry = self.snapshot()
        entry.karaoke_processing = False
        if not entry.karaoke_ready:
            entry.karaoke_progress = 0
        entry.played_at = datetime.now().isoformat(timespec="seconds")
        return entry

    def to_dict(self) -> Dict[str, Any]:
        return {_FIELD_NAMES[f.name]: getattr(self, f.name) for f in fields(self)}


def serialize(songs):
    return [s.to_dict() for s in songs if s is not None]
