# Song status constants
STATUS_PENDING = "pending"
STATUS_DOWNLOADING = "downloading"
STATUS_READY = "ready"
STATUS_ERROR = "error"

# Health check results
STATUS_OK = "ok"
STATUS_WARNING = "warning"

# Progress ranges (start, end) for each download stage
STAGE_VIDEO = "video"
STAGE_AUDIO = "audio"
STAGE_LOUDNESS = "loudness"

PROGRESS = {
    STAGE_VIDEO: (0, 50),
    STAGE_AUDIO: (50, 80),
    STAGE_LOUDNESS: (80, 95),
}
PROGRESS_COMPLETE = 100

# Karaoke progress never reaches 100 until the output file is verified
KARAOKE_PROGRESS_CAP = 99

HISTORY_LIMIT = 50

MIN_CONCURRENT_DOWNLOADS = 1
MAX_CONCURRENT_DOWNLOADS = 5

# Deletion retries for files still held open by a dying process
DELETE_RETRIES = 3
DELETE_RETRY_DELAY = 1.0

# Minimum spacing between best-effort playback ticks (seconds)
TICK_INTERVAL = 0.1

# Directories / files (relative to the data directory)
DOWNLOADS_DIR = "downloads"
SEPARATED_DIR = "separated"
ADVANCED_CONFIG_FILE = "advanced-config.json"

# Files per song
SONG_FILES = {
    "video": "{id}_video.mp4",
    "audio": "{id}_audio.m4a",
    "karaoke": "{id}_karaoke.{ext}",
}

COOKIE_FILES = {
    "bilibili.com": "cookies_bilibili.txt",
    "youtube.com": "cookies_youtube.txt",
    "youtu.be": "cookies_youtube.txt",
}

DEFAULT_PLAYER_STATUS = {
    "playing": False,
    "currentTime": 0,
    "duration": 0,
    "volume": 0.8,
    "pitch": 0,
    "vocalRemoval": False,
    "loudnessNorm": True,
}
