import pytest

from conftest import loudnorm_output, run_download
from partybox.models.song import Song
from partybox.services.downloader import build_ytdlp_args, stage_progress
from partybox.utils.constants import STAGE_AUDIO, STAGE_VIDEO, STATUS_DOWNLOADING, STATUS_ERROR, STATUS_PENDING, STATUS_READY
from partybox.utils.error_logging import clear_recent_errors, get_recent_errors


def add(jukebox, *titles):
    items = [{"title": t, "originalUrl": f"https://www.youtube.com/watch?v={t}"} for t in titles]
    jukebox.add_batch(items, requester="tester")
    return jukebox.store.queue_order()[-len(titles):]


def progress_events(events, song):
    return [p["progress"] for p in events.payloads("update_progress") if p["id"] == song.id]


def test_video_args_include_video_only_options():
    cfg = {
        "videoFormat": "bv",
        "concurrentFragments": 8,
        "httpChunkSize": "10M",
        "noWarnings": True,
        "addHeader": ["Referer: https://www.bilibili.com"],
        "extractorArgs": "--extractor-args youtube:player_client=web",
    }
    args = build_ytdlp_args(cfg, "https://v", "/d/1_video.mp4", STAGE_VIDEO, cookies="/c.txt")
    assert args[:5] == ["-f", "bv", "-o", "/d/1_video.mp4", "--newline"]
    assert "--no-playlist" in args
    assert args[args.index("-N") + 1] == "8"
    assert args[args.index("--http-chunk-size") + 1] == "10M"
    assert "--no-warnings" in args
    assert args[args.index("--add-header") + 1] == "Referer: https://www.bilibili.com"
    assert "youtube:player_client=web" in args
    assert args[-3:] == ["--cookies", "/c.txt", "https://v"]


def test_audio_args_skip_video_only_options():
    cfg = {"httpChunkSize": "10M", "fragmentRetries": 10, "noWarnings": True, "noPlaylist": False, "retries": 3}
    args = build_ytdlp_args(cfg, "https://v", "/d/1_audio.m4a", STAGE_AUDIO)
    assert args[1] == "bestaudio[ext=m4a]/bestaudio"
    assert "--http-chunk-size" not in args
    assert "--fragment-retries" not in args
    assert "--no-warnings" not in args
    assert "--no-playlist" not in args
    assert args[args.index("--retries") + 1] == "3"


def test_stage_progress_weighting():
    assert stage_progress(STAGE_VIDEO, 0) == 0
    assert stage_progress(STAGE_VIDEO, 100) == 50
    assert stage_progress(STAGE_AUDIO, 50) == 65
    assert stage_progress(STAGE_AUDIO, 150) == 80


def test_single_song_reaches_ready(jukebox, spawner, events):
    (song,) = add(jukebox, "a")
    assert song.status == STATUS_DOWNLOADING
    video = spawner.for_song(song, "yt-dlp")
    assert video.mentions(f"{song.id}_video.mp4")

    video.progress(50)
    video.exit(0)
    audio = spawner.for_song(song, "yt-dlp")
    assert audio.mentions(f"{song.id}_audio.m4a")
    audio.progress(50)
    audio.exit(0)
    spawner.for_song(song, "ffmpeg").exit(0, loudnorm_output("-20.00"))

    assert progress_events(events, song) == [25, 65, 80, 95]
    assert song.status == STATUS_READY
    assert song.progress == 100
    assert song.loudness_gain == pytest.approx(4.0)
    assert song.src == f"/downloads/{song.id}_video.mp4"
    assert song.audio_src == f"/downloads/{song.id}_audio.m4a"
    assert jukebox.store.active_downloads == {}
    assert jukebox.store.player_status["playing"] is True


def test_progress_never_goes_backwards(jukebox, spawner, events):
    (song,) = add(jukebox, "a")
    video = spawner.for_song(song, "yt-dlp")
    video.progress(40)
    video.progress(30)
    video.progress(40)
    video.progress(60)
    assert progress_events(events, song) == [20, 30]


def test_default_pool_runs_one_download_in_queue_order(jukebox, spawner):
    first, second, third = add(jukebox, "a", "b", "c")
    assert [p.name for p in spawner.running()] == ["yt-dlp"]
    assert spawner.for_song(first) is not None
    assert second.status == STATUS_PENDING

    run_download(spawner, first)
    assert second.status == STATUS_DOWNLOADING
    assert third.status == STATUS_PENDING


def test_pool_respects_configured_limit(jukebox, spawner, config):
    config.save({"system": {"maxConcurrentDownloads": 2}})
    songs = add(jukebox, "a", "b", "c", "d")

    downloading = [s for s in songs if s.status == STATUS_DOWNLOADING]
    assert downloading == songs[:2]
    assert len(jukebox.store.active_downloads) == 2

    spawner.for_song(songs[0], "yt-dlp").exit(1, "ERROR: Video unavailable")
    assert songs[0].status == STATUS_ERROR
    assert songs[2].status == STATUS_DOWNLOADING
    assert len(jukebox.store.active_downloads) == 2


@pytest.mark.parametrize("value, expected", [(10, 5), (0, 1), (-3, 1), (2.0, 2), ("lots", 1)])
def test_limit_is_clamped(jukebox, config, value, expected):
    config.save({"system": {"maxConcurrentDownloads": value}})
    assert jukebox.downloader.max_concurrent() == expected


def test_raising_the_limit_starts_waiting_songs(jukebox, spawner):
    songs = add(jukebox, "a", "b", "c")
    jukebox.save_config({"system": {"maxConcurrentDownloads": 3}})
    assert all(s.status == STATUS_DOWNLOADING for s in songs)


def test_fetch_failure_marks_error_and_logs(jukebox, spawner):
    clear_recent_errors()
    (song,) = add(jukebox, "a")
    spawner.for_song(song, "yt-dlp").exit(0)
    spawner.for_song(song, "yt-dlp").exit(2, "ERROR: HTTP Error 403: Forbidden")

    assert song.status == STATUS_ERROR
    assert jukebox.store.active_downloads == {}
    error = get_recent_errors()[0]
    assert error["songId"] == song.id
    assert error["stage"] == STAGE_AUDIO


def test_missing_downloader_binary_marks_error(jukebox, spawner):
    spawner.fail_names.add("yt-dlp")
    first, second = add(jukebox, "a", "b")
    assert first.status == STATUS_ERROR
    assert second.status == STATUS_ERROR
    assert jukebox.store.active_downloads == {}


def test_long_batch_with_failing_spawns_does_not_recurse(jukebox, spawner):
    spawner.fail_names.add("yt-dlp")
    songs = add(jukebox, *[f"s{i}" for i in range(400)])
    assert len(songs) == 400
    assert all(s.status == STATUS_ERROR for s in songs)
    assert jukebox.store.active_downloads == {}


def test_loudness_failure_still_makes_song_ready(jukebox, spawner):
    (song,) = add(jukebox, "a")
    spawner.for_song(song, "yt-dlp").exit(0)
    spawner.for_song(song, "yt-dlp").exit(0)
    spawner.for_song(song, "ffmpeg").exit(1, "Invalid data found when processing input")
    assert song.status == STATUS_READY
    assert song.loudness_gain == 0.0


def test_missing_ffmpeg_gives_zero_gain(jukebox, spawner):
    spawner.fail_names.add("ffmpeg")
    (song,) = add(jukebox, "a")
    spawner.for_song(song, "yt-dlp").exit(0)
    spawner.for_song(song, "yt-dlp").exit(0)
    assert song.status == STATUS_READY
    assert song.loudness_gain == 0.0


def test_deleted_song_stops_reporting(jukebox, spawner, events, config):
    config.save({"system": {"maxConcurrentDownloads": 2}})
    _, queued = add(jukebox, "a", "b")
    proc = spawner.for_song(queued, "yt-dlp")
    proc.progress(10)

    jukebox.manage_queue("delete", queued.id)
    assert proc.killed
    assert queued.id not in jukebox.store.active_downloads

    events.clear()
    proc.progress(90)
    proc.exit(0)
    assert events.payloads("update_progress") == []
    assert queued.status == STATUS_DOWNLOADING
    assert [p for p in spawner.running() if p.mentions(f"{queued.id}_")] == []


def test_auto_karaoke_queues_song_when_ready(jukebox, spawner, download_dir):
    jukebox.set_auto_process(True)
    (song,) = add(jukebox, "a")
    spawner.for_song(song, "yt-dlp").exit(0)
    (download_dir / f"{song.id}_audio.m4a").write_bytes(b"audio")
    spawner.for_song(song, "yt-dlp").exit(0)
    spawner.for_song(song, "ffmpeg").exit(0, loudnorm_output("-16.00"))

    assert song.karaoke_processing
    assert spawner.for_song(song, "demucs") is not None


def test_song_ids_are_unique():
    ids = {Song(title="t", original_url="u").id for _ in range(200)}
    assert len(ids) == 200
