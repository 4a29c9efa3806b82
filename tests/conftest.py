import copy
import sys
from pathlib import Path

import pytest


# Ensure tests can import project packages regardless of how pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from partybox.models.config import ConfigStore  # noqa: E402
from partybox.models.song import Song  # noqa: E402
from partybox.models.state import StateStore  # noqa: E402
from partybox.services.jukebox import Jukebox  # noqa: E402
from partybox.services.process_runner import ToolResult  # noqa: E402
from partybox.utils.constants import STATUS_READY  # noqa: E402
from partybox.utils.errors import ProcessSpawnFailure  # noqa: E402
from partybox.utils.file_handling import separation_workdir  # noqa: E402


LOUDNORM_OUTPUT = """[Parsed_loudnorm_0 @ 0x55d0c1a2b3c0]
{
\t"input_i" : "%s",
\t"input_tp" : "-1.02",
\t"input_lra" : "6.10",
\t"input_thresh" : "-30.55",
\t"output_i" : "-16.04",
\t"output_tp" : "-1.50",
\t"output_lra" : "5.20",
\t"output_thresh" : "-26.59",
\t"normalization_type" : "dynamic",
\t"target_offset" : "0.04"
}
"""


def loudnorm_output(input_lufs):
    return LOUDNORM_OUTPUT % input_lufs


class FakeProcess:
    """Stands in for a ToolProcess; the test drives progress and exit."""

    _next_pid = 1000

    def __init__(self, name, args, on_progress=None, on_exit=None, on_line=None):
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.name = name
        self.args = [str(a) for a in args]
        self.on_progress = on_progress
        self.on_exit = on_exit
        self.on_line = on_line
        self.killed = False
        self.exited = False

    @property
    def running(self):
        return not self.killed and not self.exited

    def mentions(self, text):
        return any(text in arg for arg in self.args)

    def progress(self, percent):
        if self.on_progress:
            self.on_progress(percent)

    def kill(self):
        self.killed = True

    def exit(self, returncode=0, output=""):
        self.exited = True
        if self.on_exit:
            self.on_exit(ToolResult(returncode, output, self.killed))


class FakeSpawner:
    def __init__(self):
        self.processes = []
        self.fail_names = set()

    def __call__(self, name, args, on_progress=None, on_exit=None, on_line=None):
        if name in self.fail_names:
            raise ProcessSpawnFailure(f"{name} could not be started: not found")
        proc = FakeProcess(name, args, on_progress, on_exit, on_line)
        self.processes.append(proc)
        return proc

    def running(self, name=None):
        return [p for p in self.processes if p.running and (name is None or p.name == name)]

    def for_song(self, song, name=None):
        """The most recent live process working on a song."""
        matches = [p for p in self.running(name) if p.mentions(f"{song.id}_")]
        return matches[-1] if matches else None


class FakeTimer:
    def __init__(self, delay, function, args=None, kwargs=None):
        self.delay = delay
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function(*self.args, **self.kwargs)


class FakeTimers:
    """Timer factory recording every timer it makes."""

    def __init__(self):
        self.created = []

    def __call__(self, delay, function, args=None, kwargs=None):
        timer = FakeTimer(delay, function, args, kwargs)
        self.created.append(timer)
        return timer

    def fire_all(self):
        pending, self.created = self.created, []
        for timer in pending:
            if not timer.cancelled:
                timer.fire()


class EventRecorder:
    def __init__(self):
        self.events = []

    def __call__(self, event, payload=None):
        self.events.append((event, payload))

    def names(self):
        return [name for name, _ in self.events]

    def payloads(self, event):
        return [payload for name, payload in self.events if name == event]

    def clear(self):
        self.events = []


class FakeYoutubeDL:
    """Stands in for yt_dlp.YoutubeDL; records options and looked-up urls."""

    def __init__(self, info=None, error=None):
        self.info = info
        self.error = error
        self.opts = []
        self.urls = []

    def __call__(self, opts):
        self.opts.append(opts)
        return self

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def extract_info(self, url, download=True):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.info)


@pytest.fixture
def data_dir(tmp_path):
    (tmp_path / "downloads").mkdir()
    (tmp_path / "separated").mkdir()
    return tmp_path


@pytest.fixture
def download_dir(data_dir):
    return data_dir / "downloads"


@pytest.fixture
def separated_dir(data_dir):
    return data_dir / "separated"


@pytest.fixture
def config(data_dir):
    store = ConfigStore(data_dir / "advanced-config.json")
    store.load()
    return store


@pytest.fixture
def events():
    return EventRecorder()


@pytest.fixture
def store(events):
    return StateStore(emitter=events)


@pytest.fixture
def spawner():
    return FakeSpawner()


@pytest.fixture
def timers():
    return FakeTimers()


@pytest.fixture
def ydl():
    return FakeYoutubeDL(
        {
            "id": "dQw4w9WgXcQ",
            "title": "Never Gonna Give You Up",
            "uploader": "Rick Astley",
            "webpage_url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        }
    )


@pytest.fixture
def jukebox(store, config, data_dir, download_dir, separated_dir, spawner, timers, ydl):
    return Jukebox.build(
        store,
        config,
        data_dir=data_dir,
        download_dir=download_dir,
        separated_dir=separated_dir,
        spawn=spawner,
        timer=timers,
        ydl_factory=ydl,
    )


def make_ready_song(download_dir, title="Song", with_video=True):
    """A downloaded song with real files on disk."""
    song = Song(title=title, original_url=f"https://example.test/{title}")
    audio = download_dir / f"{song.id}_audio.m4a"
    audio.write_bytes(b"audio")
    song.local_audio_path = str(audio)
    song.audio_src = f"/downloads/{audio.name}"
    if with_video:
        video = download_dir / f"{song.id}_video.mp4"
        video.write_bytes(b"video")
        song.local_video_path = str(video)
        song.src = f"/downloads/{video.name}"
    song.status = STATUS_READY
    song.progress = 100
    song.loudness_gain = 0.0
    return song


def write_separation_output(separated_dir, song, model="htdemucs", name="no_vocals.mp3"):
    workdir = separation_workdir(separated_dir, model, song.local_audio_path)
    workdir.mkdir(parents=True, exist_ok=True)
    (workdir / name).write_bytes(b"instrumental")
    (workdir / "vocals.mp3").write_bytes(b"vocals")
    return workdir


def run_download(spawner, song, input_lufs="-20.00"):
    """Drive a song through video, audio and loudness stages successfully."""
    spawner.for_song(song, "yt-dlp").exit(0)
    spawner.for_song(song, "yt-dlp").exit(0)
    spawner.for_song(song, "ffmpeg").exit(0, loudnorm_output(input_lufs))
