import logging
import re

import requests
from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadError

from ..utils.errors import ParseFailure
from ..utils.helpers import get_cookies_path

logger = logging.getLogger(__name__)

BILI_FAVLIST_RE = re.compile(r"space\.bilibili\.com/\d+/favlist\?.*fid=(\d+)")
BILI_FAV_API = "https://api.bilibili.com/x/v3/fav/resource/list"
BILI_PAGE_SIZE = 20  # the API rejects larger pages
BILI_MAX_PAGES = 5
BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


def build_ydl_opts(cfg, cookies=None):
    """YoutubeDL options for a metadata-only lookup."""
    opts = {
        "quiet": True,
        "no_warnings": True,
        "skip_download": True,
        "extract_flat": "in_playlist" if cfg.get("flatPlaylist") is not False else False,
        "noplaylist": cfg.get("noPlaylist") is not False,
    }
    if cfg.get("proxy"):
        opts["proxy"] = cfg["proxy"]
    if cfg.get("socketTimeout"):
        opts["socket_timeout"] = cfg["socketTimeout"]
    if cfg.get("userAgent"):
        opts["http_headers"] = {"User-Agent": cfg["userAgent"]}
    if cfg.get("noCheckCertificates"):
        opts["nocheckcertificate"] = True
    if cookies:
        opts["cookiefile"] = cookies
    return opts


def item_url(data, fallback):
    url = data.get("webpage_url") or data.get("url")
    if url:
        return url
    video_id = data.get("id")
    if not video_id:
        return fallback
    ie_key = data.get("ie_key")
    if not ie_key or ie_key == "Youtube":
        return f"https://www.youtube.com/watch?v={video_id}"
    if ie_key == "BiliBili":
        return f"https://www.bilibili.com/video/{video_id}"
    return fallback


def info_to_items(info, url):
    """Turn an extract_info result (single video or playlist) into queue items."""
    if not isinstance(info, dict):
        return []
    entries = info.get("entries")
    entries = [info] if entries is None else list(entries)
    items = []
    for data in entries:
        if not isinstance(data, dict):
            continue
        title = data.get("title") or (f"Video {data['id']}" if data.get("id") else None)
        items.append(
            {
                "title": title or "Unknown Title",
                "uploader": data.get("uploader") or data.get("uploader_id") or "Unknown",
                "pic": None,
                "originalUrl": item_url(data, url),
            }
        )
    return items


def fetch_bilibili_favlist(media_id, session=None):
    """Items of a public Bilibili favourites folder (first pages only)."""
    http = session or requests
    medias = []
    for page in range(1, BILI_MAX_PAGES + 1):
        try:
            response = http.get(
                BILI_FAV_API,
                params={
                    "media_id": media_id,
                    "pn": page,
                    "ps": BILI_PAGE_SIZE,
                    "keyword": "",
                    "order": "mtime",
                    "type": 0,
                    "tid": 0,
                    "platform": "web",
                },
                headers={"User-Agent": BROWSER_UA},
                timeout=10,
            )
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Bilibili favlist page {page} failed: {e}")
            break

        data = payload.get("data") or {}
        if payload.get("code") != 0 or not data.get("medias"):
            break
        medias.extend(data["medias"])
        if not data.get("has_more"):
            break

    return [
        {
            "title": media.get("title"),
            "uploader": (media.get("upper") or {}).get("name") or "Unknown",
            "pic": None,
            "originalUrl": f"https://www.bilibili.com/video/{media.get('bvid')}",
        }
        for media in medias
    ]


class UrlFetcher:
    """Resolves a user-supplied URL into one or more queue items."""

    def __init__(self, config, data_dir, ydl_factory=None):
        self.config = config
        self.data_dir = data_dir
        self._ydl_factory = ydl_factory

    def fetch(self, url):
        """Return a non-empty list of items or raise ParseFailure."""
        url = (url or "").strip()
        if not url:
            raise ParseFailure("Empty URL")

        match = BILI_FAVLIST_RE.search(url)
        if match:
            items = fetch_bilibili_favlist(match.group(1))
            if items:
                return items
            # fall back to yt-dlp

        items = self._lookup(url)
        if not items:
            raise ParseFailure(f"No content found for {url}")
        return items

    def _lookup(self, url):
        cfg = self.config.section("ytdlp")
        opts = build_ydl_opts(cfg, get_cookies_path(url, self.data_dir))
        factory = self._ydl_factory or YoutubeDL
        try:
            with factory(opts) as ydl:
                info = ydl.extract_info(url, download=False)
        except DownloadError as e:
            raise ParseFailure(f"yt-dlp could not resolve {url}: {e}") from e
        return info_to_items(info, url)
