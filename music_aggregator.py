import argparse
import datetime
import json
import logging
import math
import os
import re
from dataclasses import dataclass, asdict, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote, urljoin, urlparse

import requests
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

USER_AGENT = "MusicFree-Plugin/1.0.0"
TIMEOUT = 10
METING_API_BASE = "https://meting-api.imixc.top/api.php"
GDSTUDIO_API_BASE = "https://music-api.gdstudio.xyz/api.php"

SERVERS = ("netease", "tencent", "kugou", "kuwo", "baidu", "pyncmd")
DEFAULT_SERVER = "netease"
SERVER_PRIORITY = ("netease", "kuwo", "tencent", "kugou")
UNM_SOURCES = ("pyncmd", "kuwo", "bilibili", "migu", "kugou", "qq", "youtube")

PAGE_SIZE = 20
SHEET_PAGE_SIZE = 50
ARTIST_PAGE_SIZE = 30
PICTURE_SIZE = 400

# ссылки с этих хостов отдаём через PROXY_URL (сравнение по суффиксу хоста)
PROXY_DOMAINS = ("kuwo.cn", "migu.cn", "music.163.com", "qqmusic.qq.com")

QUALITIES = ("low", "standard", "high", "super")
DEFAULT_QUALITY = "standard"
# значения br/bitrate в kbps; 999 у Meting/GDStudio означает lossless
BITRATES: Dict[str, Dict[str, str]] = {
    "default": {"low": "128", "standard": "320", "high": "999", "super": "999"},
    "kuwo": {"low": "128", "standard": "320", "high": "2000", "super": "2000"},
}

SEARCH_TYPES = {
    "music": "music",
    "album": "album",
    "artist": "artist",
    "sheet": "sheet",
    "playlist": "sheet",
}

UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"
UNKNOWN_PLAYLIST = "Unknown Playlist"
UNKNOWN_CREATOR = "Unknown Creator"

_BARE_ID_RE = re.compile(r"^[0-9A-Za-z_]+$")


def _load_env_file(env_path: Optional[Path] = None) -> None:
    """Простейший loader .env без сторонних зависимостей."""
    env_path = env_path or Path(__file__).resolve().parent / ".env"
    if not env_path.exists():
        return
    try:
        for line in env_path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, val = line.split("=", 1)
            os.environ.setdefault(key.strip(), val.strip())
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Не удалось прочитать %s: %s", env_path, exc)


def _is_http_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def _host_matches(host: str, domains: Iterable[str]) -> bool:
    host = (host or "").lower()
    return any(host == d or host.endswith("." + d) for d in domains)


def _parse_csv(value: Optional[str], allowed: Optional[Iterable[str]] = None) -> Tuple[str, ...]:
    if not value:
        return ()
    allowed_set = set(allowed) if allowed is not None else None
    out: List[str] = []
    for token in str(value).split(","):
        name = token.strip().lower()
        if not name or name in out:
            continue
        if allowed_set is not None and name not in allowed_set:
            logger.warning("Неизвестный источник %r пропущен", name)
            continue
        out.append(name)
    return tuple(out)


def _validate_server(value: Optional[str]) -> Optional[str]:
    name = (value or "").strip().lower()
    return name if name in SERVERS else None


def _env_number(environ, name: str, default, cast, lo=None, hi=None):
    raw = environ.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = cast(str(raw).strip())
    except ValueError:
        logger.warning("%s=%r не число, используем %s", name, raw, default)
        return default
    if value <= 0:
        return default
    if lo is not None:
        value = max(lo, value)
    if hi is not None:
        value = min(hi, value)
    return value


@dataclass(frozen=True)
class AggregatorConfig:
    """Снимок конфигурации процесса: собирается один раз и передаётся в MusicAggregator."""

    proxy_url: Optional[str] = None
    server: str = DEFAULT_SERVER
    cookie: Optional[str] = None
    unm_sources: Tuple[str, ...] = UNM_SOURCES
    server_priority: Tuple[str, ...] = SERVER_PRIORITY
    meting_api_base: str = METING_API_BASE
    gdstudio_api_base: str = GDSTUDIO_API_BASE
    timeout: float = TIMEOUT
    page_size: int = PAGE_SIZE

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "AggregatorConfig":
        env = os.environ if environ is None else environ

        proxy_url = (env.get("PROXY_URL") or "").strip() or None
        if proxy_url and not _is_http_url(proxy_url):
            logger.warning("PROXY_URL=%r не http(s) URL, прокси отключён", proxy_url)
            proxy_url = None

        raw_server = env.get("METING_SERVER") or env.get("METING_SOURCE")
        server = _validate_server(raw_server)
        if raw_server and not server:
            logger.warning("METING_SERVER=%r не поддерживается, используем %s", raw_server, DEFAULT_SERVER)

        return cls(
            proxy_url=proxy_url,
            server=server or DEFAULT_SERVER,
            cookie=(env.get("MUSIC_U") or "").strip() or None,
            unm_sources=_parse_csv(env.get("UNM_SOURCES")) or UNM_SOURCES,
            server_priority=_parse_csv(env.get("SERVER_PRIORITY"), SERVERS) or SERVER_PRIORITY,
            meting_api_base=(env.get("METING_API_BASE") or METING_API_BASE).rstrip("/"),
            gdstudio_api_base=(env.get("GDSTUDIO_API_BASE") or GDSTUDIO_API_BASE).rstrip("/"),
            timeout=_env_number(env, "MUSIC_API_TIMEOUT", TIMEOUT, float),
            page_size=_env_number(env, "SEARCH_PAGE_SIZE", PAGE_SIZE, int, 1, 100),
        )

    def with_overrides(self, **changes: Any) -> "AggregatorConfig":
        return replace(self, **changes)


@dataclass(frozen=True)
class Outcome:
    """Результат шага fetch/normalize: либо value, либо reason."""

    ok: bool
    value: Any = None
    reason: Optional[str] = None

    @classmethod
    def success(cls, value: Any) -> "Outcome":
        return cls(True, value, None)

    @classmethod
    def failure(cls, reason: str) -> "Outcome":
        return cls(False, None, reason)


@dataclass(frozen=True)
class Track:
    id: str
    title: str
    artist: str
    album: str
    artwork: str
    duration: int  # ms
    source: str
    lyric_id: str
    raw_lrc: str = ""
    album_id: Optional[str] = None
    pic_id: Optional[str] = None


@dataclass(frozen=True)
class Album:
    id: str
    title: str
    artist: str
    artwork: str
    description: str
    date: str
    works_num: int
    source: str
    pic_id: Optional[str] = None
    tracks: Tuple[Track, ...] = ()


@dataclass(frozen=True)
class Artist:
    id: str
    name: str
    avatar: str
    description: str
    works_num: int
    fans: int
    source: str
    pic_id: Optional[str] = None
    tracks: Tuple[Track, ...] = ()
    albums: Tuple[Album, ...] = ()


@dataclass(frozen=True)
class Playlist:
    id: str
    title: str
    creator: str
    artwork: str
    description: str
    works_num: int
    play_count: int
    source: str
    pic_id: Optional[str] = None
    tracks: Tuple[Track, ...] = ()


@dataclass(frozen=True)
class MediaSource:
    url: str
    size: int
    quality: str
    br: Optional[str]
    source: str


@dataclass(frozen=True)
class ShareLink:
    url: str
    title: str
    source: str


@dataclass(frozen=True)
class SearchResult:
    is_end: bool
    data: List[Any] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class LyricResult:
    raw_lrc: str = ""
    translate_lrc: str = ""
    source: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class SheetResult:
    is_end: bool
    sheet: Playlist
    music_list: List[Track] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class AlbumResult:
    is_end: bool
    album: Album
    music_list: List[Track] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class ArtistWorksResult:
    is_end: bool
    artist: Artist
    data: List[Any] = field(default_factory=list)
    error: Optional[str] = None


# --- Нормализация ---------------------------------------------------------
# Таблицы алиасов: апстримы называют одни и те же поля по-разному.

TRACK_FIELDS: Dict[str, Tuple[str, ...]] = {
    "id": ("id", "song_id", "songid", "rid", "MUSICRID", "musicrid"),
    "title": ("name", "title", "songname", "SONGNAME"),
    "artist": ("artist", "ar", "artists", "singer", "ARTIST"),
    "album": ("al", "album", "album_name", "ALBUM"),
    "album_id": ("album_id", "albumid", "ALBUMID"),
    "artwork": ("pic", "picture", "artwork", "cover", "picUrl", "img"),
    "pic_id": ("pic_id", "album_pic_id", "cover_id", "pic"),
    "duration_ms": ("dt", "duration", "duration_ms"),
    "duration_s": ("DURATION", "interval", "duration_s"),
    "lyric_id": ("lyric_id", "lrc_id"),
    "lyric": ("lyric", "lyrics", "lrc", "raw_lrc"),
    "source": ("source", "server", "platform"),
}

ALBUM_FIELDS: Dict[str, Tuple[str, ...]] = {
    "id": ("id", "album_id", "albumid"),
    "title": ("name", "title", "album_name"),
    "artist": ("artist", "ar", "artists", "singer", "artist_name"),
    "artwork": ("picUrl", "pic", "picture", "cover", "img", "blurPicUrl"),
    "pic_id": ("pic_id", "cover_id"),
    "description": ("description", "desc", "intro"),
    "date": ("publish_date", "publishTime", "publish_time", "time", "date"),
    "works_num": ("song_count", "size", "track_count", "total"),
    "tracks": ("songs", "tracks", "list"),
    "source": ("source", "server", "platform"),
}

ARTIST_FIELDS: Dict[str, Tuple[str, ...]] = {
    "id": ("id", "artist_id", "singer_id", "singermid"),
    "name": ("name", "artist_name", "singer_name"),
    "avatar": ("avatar", "pic", "picture", "img1v1Url", "picUrl", "cover"),
    "pic_id": ("pic_id", "cover_id"),
    "description": ("description", "brief", "briefDesc", "intro", "desc"),
    "works_num": ("song_count", "music_size", "musicSize", "album_count", "album_size", "albumSize"),
    "fans": ("follow_count", "fans", "fansCount"),
    "tracks": ("songs", "hotSongs", "tracks"),
    "albums": ("albums", "hotAlbums"),
    "source": ("source", "server", "platform"),
}

PLAYLIST_FIELDS: Dict[str, Tuple[str, ...]] = {
    "id": ("id", "playlist_id", "dissid"),
    "title": ("name", "title", "dissname"),
    "creator": ("creator", "artist_name", "nickname", "author"),
    "artwork": ("cover", "coverImgUrl", "cover_img_url", "picture", "pic", "logo"),
    "pic_id": ("pic_id", "cover_id", "coverImgId"),
    "description": ("description", "desc", "intro"),
    "works_num": ("song_count", "trackCount", "track_count", "songnum"),
    "play_count": ("play_count", "playCount", "listennum"),
    "tracks": ("songs", "tracks", "songlist", "list"),
    "source": ("source", "server", "platform"),
}

# идентификаторы kuwo вида "MUSIC_12345"
_PREFIXED_ID_KEYS = {"MUSICRID", "musicrid"}


def _clean_text(value: Any) -> str:
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, str):
        return value.replace("\0", "").strip()
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return ""
        return str(int(value)) if value.is_integer() else str(value)
    return ""


def _unescape_url(value: Any) -> str:
    return _clean_text(value).replace("\\/", "/")


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    elif not isinstance(value, (int, float)):
        return None
    # NaN и Infinity пропускает и json, и float()
    if isinstance(value, float) and not math.isfinite(value):
        return None
    number = int(value)
    return number if number >= 0 else None


def _pick_first(data: Dict[str, Any], keys: Iterable[str]) -> Optional[Any]:
    for key in keys:
        val = data.get(key)
        if val is not None and val != "":
            return val
    return None


def _pick_text(data: Dict[str, Any], keys: Iterable[str]) -> str:
    for key in keys:
        text = _clean_text(data.get(key))
        if text:
            return text
    return ""


def _pick_id(data: Dict[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        text = _clean_text(data.get(key))
        if key in _PREFIXED_ID_KEYS:
            text = text.split("_")[-1].strip()
        if text:
            return text
    return None


def _pick_url(data: Dict[str, Any], keys: Iterable[str]) -> str:
    for key in keys:
        url = _unescape_url(data.get(key))
        if _is_http_url(url):
            return url
    return ""


def _pick_pic_id(data: Dict[str, Any], keys: Iterable[str]) -> Optional[str]:
    # "pic" бывает и URL, и id для /picture, URL сюда не берём
    for key in keys:
        text = _clean_text(data.get(key))
        if text and not _is_http_url(text) and not text.startswith("//"):
            return text
    return None


def _pick_int(data: Dict[str, Any], keys: Iterable[str]) -> int:
    for key in keys:
        number = _to_int(data.get(key))
        if number:
            return number
    return 0


def _pick_list(data: Dict[str, Any], keys: Iterable[str]) -> Optional[List[Any]]:
    for key in keys:
        val = data.get(key)
        if isinstance(val, list):
            return val
    return None


def _artist_names(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        names: List[str] = []
        for entry in value:
            names.extend(_artist_names(entry))
        return names
    if isinstance(value, dict):
        name = _clean_text(value.get("name")) or _clean_text(value.get("nickname"))
        return [name] if name else []
    # kuwo склеивает исполнителей через ";"
    return [part.strip() for part in _clean_text(value).split(";") if part.strip()]


def format_artist(value: Any, default: str = UNKNOWN_ARTIST) -> str:
    return "&".join(_artist_names(value)) or default


def _pick_artist(data: Dict[str, Any], keys: Iterable[str], default: str = UNKNOWN_ARTIST) -> str:
    for key in keys:
        names = _artist_names(data.get(key))
        if names:
            return "&".join(names)
    return default


def _album_parts(data: Dict[str, Any], keys: Iterable[str]) -> Tuple[str, str, Optional[str]]:
    """(название, обложка, id) из вложенного объекта альбома или строки."""
    for key in keys:
        value = data.get(key)
        if isinstance(value, dict):
            name = _pick_text(value, ("name", "title"))
            artwork = _pick_url(value, ALBUM_FIELDS["artwork"])
            album_id = _pick_id(value, ("id", "album_id"))
            if name or artwork or album_id:
                return name, artwork, album_id
        else:
            name = _clean_text(value)
            if name:
                return name, "", None
    return "", "", None


def _duration_ms(data: Dict[str, Any], fields: Dict[str, Tuple[str, ...]]) -> int:
    ms = _pick_int(data, fields.get("duration_ms", ()))
    if ms:
        return ms
    return _pick_int(data, fields.get("duration_s", ())) * 1000


def _normalize_date(val: Any) -> str:
    """Дата релиза: строки как есть, таймстамп (сек или мс) приводим к YYYY-MM-DD."""
    if val is None or isinstance(val, bool):
        return ""
    if isinstance(val, (int, float)):
        if isinstance(val, float) and not math.isfinite(val):
            return ""
        if val > 10 ** 11:
            val = val / 1000
        if val > 3000:
            try:
                stamp = datetime.datetime.fromtimestamp(val, tz=datetime.timezone.utc)
            except (OverflowError, OSError, ValueError):
                return ""
            return stamp.strftime("%Y-%m-%d")
        return str(int(val))
    return _clean_text(val)


def _source_of(data: Dict[str, Any], keys: Iterable[str], source_hint: Optional[str]) -> str:
    return _pick_text(data, keys).lower() or source_hint or DEFAULT_SERVER


def normalize_track(
    raw: Any,
    source_hint: Optional[str] = None,
    fields: Dict[str, Tuple[str, ...]] = TRACK_FIELDS,
) -> Optional[Track]:
    """Приводит JSON трека любого апстрима к Track. Без id возвращает None, никогда не бросает."""
    if not isinstance(raw, dict):
        return None
    track_id = _pick_id(raw, fields["id"])
    if not track_id:
        return None

    album, album_artwork, nested_album_id = _album_parts(raw, fields["album"])
    artwork = _pick_url(raw, fields["artwork"]) or album_artwork
    return Track(
        id=track_id,
        title=_pick_text(raw, fields["title"]) or UNKNOWN_TITLE,
        artist=_pick_artist(raw, fields["artist"]),
        album=album or UNKNOWN_ALBUM,
        artwork=artwork,
        duration=_duration_ms(raw, fields),
        source=_source_of(raw, fields["source"], source_hint),
        lyric_id=_pick_id(raw, fields["lyric_id"]) or track_id,
        raw_lrc=_pick_text(raw, fields["lyric"]),
        album_id=_pick_id(raw, fields["album_id"]) or nested_album_id,
        pic_id=None if artwork else _pick_pic_id(raw, fields["pic_id"]),
    )


def _normalize_tracks(items: Optional[Iterable[Any]], source_hint: Optional[str]) -> Tuple[Track, ...]:
    if not items:
        return ()
    tracks = (normalize_track(item, source_hint) for item in items)
    return tuple(t for t in tracks if t is not None)


def normalize_album(
    raw: Any,
    source_hint: Optional[str] = None,
    fields: Dict[str, Tuple[str, ...]] = ALBUM_FIELDS,
) -> Optional[Album]:
    if not isinstance(raw, dict):
        return None
    album_id = _pick_id(raw, fields["id"])
    if not album_id:
        return None
    source = _source_of(raw, fields["source"], source_hint)
    artwork = _pick_url(raw, fields["artwork"])
    tracks = _normalize_tracks(_pick_list(raw, fields["tracks"]), source)
    return Album(
        id=album_id,
        title=_pick_text(raw, fields["title"]) or UNKNOWN_ALBUM,
        artist=_pick_artist(raw, fields["artist"]),
        artwork=artwork,
        description=_pick_text(raw, fields["description"]),
        date=_normalize_date(_pick_first(raw, fields["date"])),
        works_num=_pick_int(raw, fields["works_num"]) or len(tracks),
        source=source,
        pic_id=None if artwork else _pick_pic_id(raw, fields["pic_id"]),
        tracks=tracks,
    )


def normalize_artist(
    raw: Any,
    source_hint: Optional[str] = None,
    fields: Dict[str, Tuple[str, ...]] = ARTIST_FIELDS,
) -> Optional[Artist]:
    if not isinstance(raw, dict):
        return None
    artist_id = _pick_id(raw, fields["id"])
    if not artist_id:
        return None
    source = _source_of(raw, fields["source"], source_hint)
    avatar = _pick_url(raw, fields["avatar"])
    tracks = _normalize_tracks(_pick_list(raw, fields["tracks"]), source)
    albums = tuple(
        a for a in (normalize_album(item, source) for item in _pick_list(raw, fields["albums"]) or ())
        if a is not None
    )
    return Artist(
        id=artist_id,
        name=_pick_text(raw, fields["name"]) or UNKNOWN_ARTIST,
        avatar=avatar,
        description=_pick_text(raw, fields["description"]),
        works_num=_pick_int(raw, fields["works_num"]) or len(tracks),
        fans=_pick_int(raw, fields["fans"]),
        source=source,
        pic_id=None if avatar else _pick_pic_id(raw, fields["pic_id"]),
        tracks=tracks,
        albums=albums,
    )


def _creator_name(raw: Dict[str, Any], keys: Iterable[str]) -> str:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, dict):
            name = _pick_text(value, ("nickname", "name"))
        else:
            name = _clean_text(value)
        if name:
            return name
    return UNKNOWN_CREATOR


def normalize_playlist(
    raw: Any,
    source_hint: Optional[str] = None,
    fields: Dict[str, Tuple[str, ...]] = PLAYLIST_FIELDS,
) -> Optional[Playlist]:
    if not isinstance(raw, dict):
        return None
    playlist_id = _pick_id(raw, fields["id"])
    if not playlist_id:
        return None
    source = _source_of(raw, fields["source"], source_hint)
    artwork = _pick_url(raw, fields["artwork"])
    tracks = _normalize_tracks(_pick_list(raw, fields["tracks"]), source)
    return Playlist(
        id=playlist_id,
        title=_pick_text(raw, fields["title"]) or UNKNOWN_PLAYLIST,
        creator=_creator_name(raw, fields["creator"]),
        artwork=artwork,
        description=_pick_text(raw, fields["description"]),
        works_num=_pick_int(raw, fields["works_num"]) or len(tracks),
        play_count=_pick_int(raw, fields["play_count"]),
        source=source,
        pic_id=None if artwork else _pick_pic_id(raw, fields["pic_id"]),
        tracks=tracks,
    )


NORMALIZERS: Dict[str, Callable[..., Any]] = {
    "music": normalize_track,
    "album": normalize_album,
    "artist": normalize_artist,
    "sheet": normalize_playlist,
}


def apply_proxy(url: str, proxy_url: Optional[str]) -> str:
    """Переписывает ссылку через PROXY_URL, если хост в PROXY_DOMAINS."""
    if not proxy_url or not _is_http_url(proxy_url) or not _is_http_url(url):
        return url
    if not _host_matches(urlparse(url).hostname or "", PROXY_DOMAINS):
        return url
    without_scheme = re.sub(r"^https?://", "", url, flags=re.IGNORECASE)
    return proxy_url.rstrip("/") + "/" + without_scheme


# --- Разбор ссылок ---------------------------------------------------------

SHEET_URL_PATTERNS: Tuple[Tuple[str, Tuple[str, ...], Tuple[str, ...]], ...] = (
    ("netease", ("music.163.com",), (r"playlist\?id=(\d+)", r"playlist/(\d+)", r"[?&]id=(\d+)")),
    ("tencent", ("y.qq.com",), (r"playlist/(\d+)", r"playsquare/(\w+)\.html", r"[?&]dissid=(\d+)", r"[?&]id=(\d+)")),
    ("kuwo", ("kuwo.cn",), (r"playlist_detail/(\d+)", r"playlist/(\d+)")),
    ("kugou", ("kugou.com",), (r"special/single/(\d+)", r"special/(\d+)", r"#hash=(\w+)", r"[?&]id=(\d+)")),
)

SONG_URL_PATTERNS: Tuple[Tuple[str, Tuple[str, ...], Tuple[str, ...]], ...] = (
    ("netease", ("music.163.com",), (r"song\?id=(\d+)", r"song/(\d+)", r"[?&]id=(\d+)")),
    ("tencent", ("y.qq.com",), (r"songDetail/(\w+)", r"[?&]songmid=(\w+)")),
    ("kuwo", ("kuwo.cn",), (r"play_detail/(\d+)",)),
    ("kugou", ("kugou.com",), (r"#hash=(\w+)", r"[?&]hash=(\w+)")),
)


def _match_url(url: str, patterns) -> Optional[Tuple[str, str]]:
    if not _is_http_url(url):
        return None
    host = urlparse(url).hostname or ""
    for server, domains, regexes in patterns:
        if not _host_matches(host, domains):
            continue
        for regex in regexes:
            m = re.search(regex, url, flags=re.IGNORECASE)
            if m:
                return server, m.group(1)
        return None
    return None


def parse_sheet_url(url: str) -> Optional[Tuple[str, str]]:
    """(server, playlist_id) по ссылке на плейлист, если формат знакомый."""
    return _match_url(url, SHEET_URL_PATTERNS)


def parse_song_url(url: str) -> Optional[Tuple[str, str]]:
    return _match_url(url, SONG_URL_PATTERNS)


SHARE_URL_TEMPLATES = {
    "netease": {
        "music": "https://music.163.com/#/song?id={id}",
        "album": "https://music.163.com/#/album?id={id}",
        "artist": "https://music.163.com/#/artist?id={id}",
        "playlist": "https://music.163.com/#/playlist?id={id}",
    },
    "tencent": {
        "music": "https://y.qq.com/n/ryqq/songDetail/{id}",
        "album": "https://y.qq.com/n/ryqq/albumDetail/{id}",
        "artist": "https://y.qq.com/n/ryqq/singer/{id}",
        "playlist": "https://y.qq.com/n/ryqq/playlist/{id}",
    },
}


def _read_head_bytes(response, max_bytes: int = 1_000_000) -> bytes:
    buf = bytearray()
    for chunk in response.iter_content(chunk_size=8192):
        if not chunk:
            continue
        buf.extend(chunk)
        if len(buf) >= max_bytes:
            break
        if b"</head" in buf.lower():
            break
    return bytes(buf)


def _parse_og_tags(head_bytes: bytes) -> Dict[str, str]:
    soup = BeautifulSoup(head_bytes, "html.parser")
    og_tags: Dict[str, str] = {}
    for tag in soup.find_all("meta"):
        prop = tag.get("property") or tag.get("name") or ""
        if not prop.startswith("og:"):
            continue
        content = tag.get("content")
        if content is None:
            continue
        og_tags[prop] = content.strip()
    return og_tags


# --- Транспорт --------------------------------------------------------------


class JsonFetcher:
    """GET с параметрами и таймаутом; любой сбой превращается в Outcome.failure."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = TIMEOUT,
                 user_agent: str = USER_AGENT):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.headers = {"User-Agent": user_agent}

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Outcome:
        try:
            resp = self.session.get(url, params=params, headers=self.headers, timeout=self.timeout)
        except requests.RequestException as exc:
            return Outcome.failure(f"network error: {exc}")
        if resp.status_code != 200:
            return Outcome.failure(f"HTTP {resp.status_code}")
        try:
            return Outcome.success(resp.json())
        except ValueError:
            return Outcome.failure("malformed JSON")

    def get_page(self, url: str, max_hops: int = 5) -> Outcome:
        """Короткие share-ссылки: (итоговый URL, og-теги страницы)."""
        final_url = url
        og_tags: Dict[str, str] = {}
        try:
            # Ручное следование редиректам: если Location указывает на non-http (orpheus:// и т.п.),
            # останавливаемся на предыдущем URL.
            for _ in range(max_hops):
                resp = self.session.get(final_url, headers=self.headers, timeout=self.timeout,
                                        allow_redirects=False, stream=True)
                location = None
                if resp.is_redirect or resp.is_permanent_redirect:
                    location = resp.headers.get("Location")
                if location:
                    resp.close()
                    scheme = urlparse(location).scheme
                    if scheme and scheme not in {"http", "https"}:
                        break
                    final_url = urljoin(final_url, location)
                    continue
                try:
                    if resp.status_code == 200:
                        og_tags = _parse_og_tags(_read_head_bytes(resp))
                finally:
                    resp.close()
                break
        except requests.RequestException as exc:
            return Outcome.failure(f"network error: {exc}")
        return Outcome.success((final_url, og_tags))


def _unwrap_meting(payload: Any) -> Outcome:
    """Конверт Meting {success, data, error} -> список объектов."""
    if isinstance(payload, dict) and "success" in payload:
        if payload.get("success") is not True:
            return Outcome.failure(_clean_text(payload.get("error")) or "API request failed")
        payload = payload.get("data")
    if isinstance(payload, dict) and isinstance(payload.get("results"), list):
        payload = payload["results"]
    if isinstance(payload, list):
        items = [item for item in payload if isinstance(item, dict)]
        return Outcome.success(items) if items else Outcome.failure("empty response")
    if isinstance(payload, dict) and payload:
        return Outcome.success([payload])
    return Outcome.failure("empty response")


class MetingClient:
    """Meting REST: /search, /song/{id}, /url/{id}, ... с параметром server."""

    name = "meting"

    def __init__(self, fetcher: JsonFetcher, base_url: str = METING_API_BASE):
        self.fetcher = fetcher
        self.base_url = base_url.rstrip("/")

    def _call(self, path: str, params: Dict[str, Any]) -> Outcome:
        outcome = self.fetcher.get_json(f"{self.base_url}{path}", params)
        if not outcome.ok:
            return outcome
        return _unwrap_meting(outcome.value)

    def _entity(self, kind: str, entity_id: str, params: Dict[str, Any]) -> Outcome:
        return self._call(f"/{kind}/{quote(str(entity_id), safe='')}", params)

    def search(self, keyword: str, server: str, limit: int, search_type: str = "music") -> Outcome:
        params: Dict[str, Any] = {"q": keyword, "server": server, "limit": limit}
        if search_type != "music":
            params["type"] = search_type
        return self._call("/search", params)

    def song(self, track_id: str, server: str) -> Outcome:
        return self._entity("song", track_id, {"server": server})

    def url(self, track_id: str, server: str, bitrate: str) -> Outcome:
        return self._entity("url", track_id, {"server": server, "bitrate": bitrate})

    def lyric(self, lyric_id: str, server: str) -> Outcome:
        return self._entity("lyric", lyric_id, {"server": server})

    def picture(self, pic_id: str, server: str, size: int = PICTURE_SIZE) -> Outcome:
        return self._entity("picture", pic_id, {"server": server, "size": size})

    def playlist(self, playlist_id: str, server: str) -> Outcome:
        return self._entity("playlist", playlist_id, {"server": server})

    def album(self, album_id: str, server: str) -> Outcome:
        return self._entity("album", album_id, {"server": server})

    def artist(self, artist_id: str, server: str) -> Outcome:
        return self._entity("artist", artist_id, {"server": server})


class GDStudioClient:
    """GDStudio api.php?types=search|url|lyric|pic&source=..."""

    name = "gdstudio"

    def __init__(self, fetcher: JsonFetcher, base_url: str = GDSTUDIO_API_BASE):
        self.fetcher = fetcher
        self.base_url = base_url

    def _object(self, params: Dict[str, Any]) -> Outcome:
        outcome = self.fetcher.get_json(self.base_url, params)
        if not outcome.ok:
            return outcome
        if not isinstance(outcome.value, dict) or not outcome.value:
            return Outcome.failure("unexpected response shape")
        return outcome

    def search(self, keyword: str, server: str, count: int, page: int) -> Outcome:
        params = {"types": "search", "source": server, "name": keyword, "count": count, "pages": page}
        outcome = self.fetcher.get_json(self.base_url, params)
        if not outcome.ok:
            return outcome
        payload = outcome.value
        if isinstance(payload, dict) and isinstance(payload.get("list"), list):
            payload = payload["list"]
        if not isinstance(payload, list):
            return Outcome.failure("unexpected response shape")
        return Outcome.success([item for item in payload if isinstance(item, dict)])

    def url(self, track_id: str, server: str, br: str) -> Outcome:
        return self._object({"types": "url", "source": server, "id": track_id, "br": br})

    def lyric(self, lyric_id: str, server: str) -> Outcome:
        return self._object({"types": "lyric", "source": server, "id": lyric_id})

    def picture(self, pic_id: str, server: str, size: int = PICTURE_SIZE) -> Outcome:
        return self._object({"types": "pic", "source": server, "id": pic_id, "size": size})


UnlockMatcher = Callable[[str, List[str], Optional[str]], Any]


class UnlockClient:
    """Обёртка над внешним unlock-матчером: match(id, sources, cookie) -> {url, size, ...}."""

    name = "unlock"

    def __init__(self, matcher: Optional[UnlockMatcher] = None, sources: Iterable[str] = UNM_SOURCES,
                 cookie: Optional[str] = None):
        self.matcher = matcher
        self.sources = list(sources)
        self.cookie = cookie

    def match(self, track_id: str) -> Outcome:
        if self.matcher is None:
            return Outcome.failure("unlock matcher not configured")
        try:
            result = self.matcher(track_id, list(self.sources), self.cookie)
        except Exception as exc:  # сторонний матчер бросает что угодно
            return Outcome.failure(f"unlock matcher failed: {exc}")
        if not isinstance(result, dict) or not result:
            return Outcome.failure("no match")
        return Outcome.success(result)


# --- Порядок источников ---------------------------------------------------


@dataclass(frozen=True)
class Attempt:
    provider: str  # meting | gdstudio | unlock
    server: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.provider}@{self.server}" if self.server else self.provider


def _dedupe(items: Iterable[Any]) -> List[Any]:
    out: List[Any] = []
    for item in items:
        if item and item not in out:
            out.append(item)
    return out


class SourceResolver:
    """Для операции возвращает упорядоченный список попыток; дубликаты убираются."""

    def __init__(self, config: AggregatorConfig, unlock: bool = True):
        self.config = config
        self.unlock = unlock

    def primary(self, preferred: Optional[str] = None) -> str:
        return _validate_server(preferred) or self.config.server

    def servers(self, preferred: Optional[str] = None) -> List[str]:
        return _dedupe([self.primary(preferred), self.config.server, *self.config.server_priority])

    def plan(self, operation: str, preferred: Optional[str] = None) -> List[Attempt]:
        primary = self.primary(preferred)
        if operation == "search":
            attempts = [Attempt("meting", primary), Attempt("gdstudio", primary)]
        elif operation == "info":
            attempts = [Attempt("meting", primary), Attempt("unlock")]
        elif operation == "media-url":
            attempts = [Attempt("meting", s) for s in self.servers(preferred)]
            attempts += [Attempt("gdstudio", primary), Attempt("unlock")]
        elif operation == "lyric":
            attempts = [Attempt("meting", primary), Attempt("gdstudio", primary), Attempt("unlock")]
        elif operation in ("playlist", "album", "artist"):
            attempts = [Attempt("meting", primary)]
        else:
            raise ValueError(f"unknown operation: {operation}")
        if not self.unlock:
            # без матчера unlock-шаг просто пропускается
            attempts = [a for a in attempts if a.provider != "unlock"]
        return _dedupe(attempts)

    @staticmethod
    def bitrate(server: Optional[str], quality: str) -> str:
        table = BITRATES.get(server or "", BITRATES["default"])
        return table.get(quality, table[DEFAULT_QUALITY])


def normalize_quality(quality: Any) -> str:
    name = _clean_text(quality).lower()
    return name if name in QUALITIES else DEFAULT_QUALITY


# --- Фасад ------------------------------------------------------------------


@dataclass(frozen=True)
class ItemRef:
    id: Optional[str] = None
    source: Optional[str] = None
    lyric_id: Optional[str] = None
    title: Optional[str] = None


def _item_ref(item: Any) -> ItemRef:
    """Трек/альбом/плейлист из нашего датакласса, host-словаря ({id, _source, ...}) или голого id."""
    if isinstance(item, (Track, Album, Playlist)):
        return ItemRef(item.id, item.source, getattr(item, "lyric_id", None), item.title)
    if isinstance(item, Artist):
        return ItemRef(item.id, item.source, None, item.name)
    if isinstance(item, dict):
        source = _pick_text(item, ("_source", "source", "platform", "server")).lower()
        return ItemRef(
            id=_pick_id(item, ("id",)),
            source=source or None,
            lyric_id=_pick_id(item, ("_lyric_id", "lyric_id")),
            title=_pick_text(item, ("title", "name")) or None,
        )
    if isinstance(item, (str, int)) and not isinstance(item, bool):
        return ItemRef(id=_clean_text(item) or None)
    return ItemRef()


def _first_normalized(entries: Iterable[Any], normalizer: Callable[..., Any], source: Optional[str]):
    for entry in entries or ():
        result = normalizer(entry, source)
        if result is not None:
            return result
    return None


# ключи, по которым запись из /album или /artist опознаётся как трек
_TRACK_SHAPE_KEYS = ("al", "album", "ALBUM", "dt", "DURATION", "interval")


def _is_track_entry(entry: Dict[str, Any]) -> bool:
    return any(entry.get(key) not in (None, "") for key in _TRACK_SHAPE_KEYS)


def _page_window(items: List[Any], page: int, size: int) -> Tuple[List[Any], bool]:
    start = (page - 1) * size
    window = items[start:start + size]
    return window, start + size >= len(items)


def _coerce_page(page: Any) -> int:
    return max(1, _to_int(page) or 1)


class MusicAggregator:
    """Публичные операции: search, get_music_info, get_media_source, get_lyric, плейлисты."""

    def __init__(self, config: Optional[AggregatorConfig] = None, session: Optional[requests.Session] = None,
                 matcher: Optional[UnlockMatcher] = None):
        self.config = config or AggregatorConfig.from_env()
        self.fetcher = JsonFetcher(session=session, timeout=self.config.timeout)
        self.meting = MetingClient(self.fetcher, self.config.meting_api_base)
        self.gdstudio = GDStudioClient(self.fetcher, self.config.gdstudio_api_base)
        self.unlock = UnlockClient(matcher, self.config.unm_sources, self.config.cookie)
        self.resolver = SourceResolver(self.config, unlock=matcher is not None)

    def _first_success(self, operation: str, attempts: List[Attempt],
                       handlers: Dict[str, Callable[[Optional[str]], Outcome]]) -> Outcome:
        reasons: List[str] = []
        for attempt in attempts:
            handler = handlers.get(attempt.provider)
            if handler is None:
                continue
            outcome = handler(attempt.server)
            if outcome.ok:
                logger.debug("%s: %s ok", operation, attempt.label)
                return outcome
            logger.debug("%s: %s failed: %s", operation, attempt.label, outcome.reason)
            reasons.append(f"{attempt.label}: {outcome.reason}")
        if reasons:
            logger.warning("%s: все источники недоступны (%s)", operation, "; ".join(reasons))
        return Outcome.failure("; ".join(reasons) or "no sources to try")

    # --- search ---

    def search(self, query: Any, page: Any = 1, search_type: str = "music") -> SearchResult:
        kind = SEARCH_TYPES.get(_clean_text(search_type).lower())
        if kind is None:
            logger.debug("search: тип %r не поддерживается", search_type)
            return SearchResult(is_end=True, data=[])
        keyword = _clean_text(query)
        if not keyword:
            return SearchResult(is_end=True, data=[], error="Invalid search query.")
        page = _coerce_page(page)
        size = self.config.page_size
        normalizer = NORMALIZERS[kind]

        def from_meting(server: Optional[str]) -> Outcome:
            outcome = self.meting.search(keyword, server, size * page, kind)
            if not outcome.ok:
                return outcome
            window = outcome.value[(page - 1) * size:page * size]
            items = [i for i in (normalizer(entry, server) for entry in window) if i is not None]
            if not items:
                return Outcome.failure("no usable results")
            return Outcome.success(SearchResult(is_end=len(window) < size, data=items))

        def from_gdstudio(server: Optional[str]) -> Outcome:
            outcome = self.gdstudio.search(keyword, server, size, page)
            if not outcome.ok:
                return outcome
            items = [t for t in (normalize_track(entry, server) for entry in outcome.value) if t is not None]
            if not items:
                return Outcome.failure("no usable results")
            return Outcome.success(SearchResult(is_end=len(outcome.value) < size, data=items))

        handlers = {"meting": from_meting}
        if kind == "music":
            handlers["gdstudio"] = from_gdstudio
        outcome = self._first_success("search", self.resolver.plan("search"), handlers)
        if outcome.ok:
            return outcome.value
        return SearchResult(is_end=True, data=[], error=outcome.reason)

    # --- info ---

    def _placeholder_track(self, ref: ItemRef, title: str) -> Track:
        track_id = ref.id or "unknown"
        return Track(
            id=track_id,
            title=title,
            artist=UNKNOWN_ARTIST,
            album=UNKNOWN_ALBUM,
            artwork="",
            duration=0,
            source=self.resolver.primary(ref.source),
            lyric_id=ref.lyric_id or track_id,
        )

    def _resolve_artwork(self, track: Track, server: str) -> Track:
        if track.artwork or not track.pic_id:
            return track
        outcome = self.meting.picture(track.pic_id, server)
        if outcome.ok:
            url = _first_normalized(outcome.value, lambda entry, _s: _pick_url(entry, ("url", "pic")) or None, server)
            if url:
                return replace(track, artwork=url)
        logger.debug("picture %s@%s не получена: %s", track.pic_id, server, outcome.reason)
        return track

    def get_music_info(self, item: Any) -> Track:
        ref = _item_ref(item)
        if not ref.id:
            return self._placeholder_track(ref, "Error: Track ID missing")
        primary = self.resolver.primary(ref.source)

        def from_meting(server: Optional[str]) -> Outcome:
            outcome = self.meting.song(ref.id, server)
            if not outcome.ok:
                return outcome
            track = _first_normalized(outcome.value, normalize_track, server)
            if track is None:
                return Outcome.failure("song not found")
            return Outcome.success(self._resolve_artwork(track, server))

        def from_unlock(_server: Optional[str]) -> Outcome:
            outcome = self.unlock.match(ref.id)
            if not outcome.ok:
                return outcome
            data = dict(outcome.value)
            if not (data.get("name") or data.get("title") or data.get("url")):
                return Outcome.failure("match carried no metadata")
            # id и источник исходного трека, а не того, откуда матчер достал звук
            data.update({"id": ref.id, "source": primary})
            return Outcome.success(normalize_track(data, primary))

        handlers = {"meting": from_meting, "unlock": from_unlock}
        outcome = self._first_success("info", self.resolver.plan("info", ref.source), handlers)
        if outcome.ok:
            return outcome.value
        return self._placeholder_track(ref, ref.title or f"Track (ID: {ref.id})")

    # --- media url ---

    def get_media_source(self, item: Any, quality: Any = DEFAULT_QUALITY) -> Outcome:
        ref = _item_ref(item)
        if not ref.id:
            return Outcome.failure("Invalid musicItem input.")
        quality = normalize_quality(quality)
        primary = self.resolver.primary(ref.source)

        def from_meting(server: Optional[str]) -> Outcome:
            br = self.resolver.bitrate(server, quality)
            outcome = self.meting.url(ref.id, server, br)
            if not outcome.ok:
                return outcome
            entry = outcome.value[0]
            url = _unescape_url(entry.get("url"))
            if not _is_http_url(url):
                return Outcome.failure("no usable url")
            size = _to_int(entry.get("size")) or 0
            return Outcome.success(MediaSource(url, size, quality, _clean_text(entry.get("br")) or br, server))

        def from_gdstudio(server: Optional[str]) -> Outcome:
            br = self.resolver.bitrate(server, quality)
            outcome = self.gdstudio.url(ref.id, server, br)
            if not outcome.ok:
                return outcome
            url = _unescape_url(outcome.value.get("url")).split("?")[0]
            if not _is_http_url(url):
                return Outcome.failure("no usable url")
            size = _to_int(outcome.value.get("size")) or 0
            return Outcome.success(MediaSource(url, size, quality, _clean_text(outcome.value.get("br")) or br, server))

        def from_unlock(_server: Optional[str]) -> Outcome:
            outcome = self.unlock.match(ref.id)
            if not outcome.ok:
                return outcome
            url = _unescape_url(outcome.value.get("url")).split("?")[0]
            if not _is_http_url(url):
                return Outcome.failure("no usable url")
            size = _to_int(outcome.value.get("size")) or 0
            br = _clean_text(outcome.value.get("br")) or None
            return Outcome.success(MediaSource(url, size, quality, br, "unlock"))

        handlers = {"meting": from_meting, "gdstudio": from_gdstudio, "unlock": from_unlock}
        outcome = self._first_success("media-url", self.resolver.plan("media-url", primary), handlers)
        if not outcome.ok:
            return Outcome.failure(f"Failed to get media source: {outcome.reason}")
        media = outcome.value
        return Outcome.success(replace(media, url=apply_proxy(media.url, self.config.proxy_url)))

    # --- lyric ---

    def get_lyric(self, item: Any) -> LyricResult:
        ref = _item_ref(item)
        lyric_id = ref.lyric_id or ref.id
        if not lyric_id:
            return LyricResult(error="Invalid musicItem input.")

        def lyric_from(entry: Dict[str, Any], server: Optional[str]) -> Outcome:
            raw_lrc = _pick_text(entry, ("lyric", "lrc", "lyrics"))
            translate_lrc = _pick_text(entry, ("tlyric", "translation", "tlrc"))
            if not raw_lrc and not translate_lrc:
                return Outcome.failure("lyric not found")
            return Outcome.success(LyricResult(raw_lrc, translate_lrc, server))

        def from_meting(server: Optional[str]) -> Outcome:
            outcome = self.meting.lyric(lyric_id, server)
            return lyric_from(outcome.value[0], server) if outcome.ok else outcome

        def from_gdstudio(server: Optional[str]) -> Outcome:
            outcome = self.gdstudio.lyric(lyric_id, server)
            return lyric_from(outcome.value, server) if outcome.ok else outcome

        def from_unlock(_server: Optional[str]) -> Outcome:
            outcome = self.unlock.match(ref.id or lyric_id)
            return lyric_from(outcome.value, "unlock") if outcome.ok else outcome

        handlers = {"meting": from_meting, "gdstudio": from_gdstudio, "unlock": from_unlock}
        outcome = self._first_success("lyric", self.resolver.plan("lyric", ref.source), handlers)
        if outcome.ok:
            return outcome.value
        return LyricResult(error=f"Lyric not found: {outcome.reason}")

    # --- playlists ---

    def _resolve_target(self, url_or_id: Any, parser: Callable[[str], Optional[Tuple[str, str]]]
                        ) -> Optional[Tuple[str, str]]:
        text = _clean_text(url_or_id)
        if not text:
            return None
        if _BARE_ID_RE.match(text):
            return self.config.server, text
        if not _is_http_url(text):
            return None
        target = parser(text)
        if target:
            return target
        # короткие ссылки (163cn.tv, c6.y.qq.com, ...) раскрываем редиректом, затем og:url
        page = self.fetcher.get_page(text)
        if not page.ok:
            logger.debug("share-ссылка %s не раскрыта: %s", text, page.reason)
            return None
        final_url, og_tags = page.value
        return parser(final_url) or parser(og_tags.get("og:url", ""))

    def resolve_sheet_target(self, url_or_id: Any) -> Optional[Tuple[str, str]]:
        return self._resolve_target(url_or_id, parse_sheet_url)

    def resolve_song_target(self, url_or_id: Any) -> Optional[Tuple[str, str]]:
        return self._resolve_target(url_or_id, parse_song_url)

    def _fetch_playlist(self, playlist_id: str, source: Optional[str]) -> Outcome:
        def from_meting(server: Optional[str]) -> Outcome:
            outcome = self.meting.playlist(playlist_id, server)
            if not outcome.ok:
                return outcome
            playlist = _first_normalized(outcome.value, normalize_playlist, server)
            if playlist is None:
                return Outcome.failure("playlist not found")
            return Outcome.success(playlist)

        return self._first_success("playlist", self.resolver.plan("playlist", source), {"meting": from_meting})

    def get_playlist(self, id_or_url: Any) -> Outcome:
        target = self.resolve_sheet_target(id_or_url)
        if target is None:
            return Outcome.failure("Unsupported playlist URL or ID.")
        server, playlist_id = target
        return self._fetch_playlist(playlist_id, server)

    def import_music_sheet(self, url_or_id: Any) -> List[Track]:
        outcome = self.get_playlist(url_or_id)
        if not outcome.ok:
            logger.info("Импорт плейлиста %r не удался: %s", url_or_id, outcome.reason)
            return []
        return list(outcome.value.tracks)

    def _placeholder_playlist(self, ref: ItemRef) -> Playlist:
        sheet_id = ref.id or "unknown"
        return Playlist(
            id=sheet_id,
            title=f"Sheet (ID: {sheet_id}) Info Not Available",
            creator="",
            artwork="",
            description="",
            works_num=0,
            play_count=0,
            source=self.resolver.primary(ref.source),
        )

    def get_music_sheet_info(self, sheet: Any, page: Any = 1) -> SheetResult:
        ref = _item_ref(sheet)
        if not ref.id:
            return SheetResult(is_end=True, sheet=self._placeholder_playlist(ref), error="Invalid sheet ID.")
        outcome = self._fetch_playlist(ref.id, ref.source)
        if not outcome.ok:
            return SheetResult(is_end=True, sheet=self._placeholder_playlist(ref), error=outcome.reason)
        playlist = outcome.value
        window, is_end = _page_window(list(playlist.tracks), _coerce_page(page), SHEET_PAGE_SIZE)
        return SheetResult(is_end=is_end, sheet=playlist, music_list=window)

    def import_music_item(self, url_or_id: Any) -> Optional[Track]:
        target = self.resolve_song_target(url_or_id)
        if target is None:
            return None
        server, track_id = target
        return self.get_music_info({"id": track_id, "_source": server})

    # --- album / artist ---

    def _placeholder_album(self, ref: ItemRef) -> Album:
        album_id = ref.id or "unknown"
        return Album(
            id=album_id,
            title=f"Album (ID: {album_id}) Info Not Available",
            artist="",
            artwork="",
            description="",
            date="",
            works_num=0,
            source=self.resolver.primary(ref.source),
        )

    def _placeholder_artist(self, ref: ItemRef) -> Artist:
        artist_id = ref.id or "unknown"
        return Artist(
            id=artist_id,
            name=f"Artist (ID: {artist_id}) Info Not Available",
            avatar="",
            description="",
            works_num=0,
            fans=0,
            source=self.resolver.primary(ref.source),
        )

    def get_album_info(self, album: Any, page: Any = 1) -> AlbumResult:
        ref = _item_ref(album)
        if not ref.id:
            return AlbumResult(is_end=True, album=self._placeholder_album(ref), error="Invalid album ID.")

        def from_meting(server: Optional[str]) -> Outcome:
            outcome = self.meting.album(ref.id, server)
            if not outcome.ok:
                return outcome
            entries = outcome.value
            head = entries[0]
            # либо объект альбома (songs может не быть), либо сразу список треков
            if len(entries) == 1 and (_pick_list(head, ALBUM_FIELDS["tracks"]) is not None
                                      or not _is_track_entry(head)):
                result = normalize_album(dict(head, id=head.get("id") or ref.id), server)
            else:
                tracks = _normalize_tracks(entries, server)
                if not tracks:
                    return Outcome.failure("album not found")
                first = tracks[0]
                result = Album(
                    id=ref.id,
                    title=ref.title or first.album,
                    artist=first.artist,
                    artwork=first.artwork,
                    description="",
                    date="",
                    works_num=len(tracks),
                    source=server,
                    tracks=tracks,
                )
            return Outcome.success(result) if result else Outcome.failure("album not found")

        outcome = self._first_success("album", self.resolver.plan("album", ref.source), {"meting": from_meting})
        if not outcome.ok:
            return AlbumResult(is_end=True, album=self._placeholder_album(ref), error=outcome.reason)
        result = outcome.value
        window, is_end = _page_window(list(result.tracks), _coerce_page(page), SHEET_PAGE_SIZE)
        return AlbumResult(is_end=is_end, album=result, music_list=window)

    def get_artist_works(self, artist: Any, page: Any = 1, works_type: str = "music") -> ArtistWorksResult:
        ref = _item_ref(artist)
        works_type = _clean_text(works_type).lower()
        if not ref.id:
            return ArtistWorksResult(is_end=True, artist=self._placeholder_artist(ref), error="Invalid artist ID.")
        if works_type not in ("music", "album"):
            return ArtistWorksResult(is_end=True, artist=self._placeholder_artist(ref))

        def from_meting(server: Optional[str]) -> Outcome:
            outcome = self.meting.artist(ref.id, server)
            if not outcome.ok:
                return outcome
            entries = outcome.value
            head = entries[0]
            if len(entries) == 1 and (_pick_list(head, ARTIST_FIELDS["tracks"]) is not None
                                      or _pick_list(head, ARTIST_FIELDS["albums"]) is not None
                                      or not _is_track_entry(head)):
                result = normalize_artist(dict(head, id=head.get("id") or ref.id), server)
            else:
                tracks = _normalize_tracks(entries, server)
                if not tracks:
                    return Outcome.failure("artist not found")
                result = Artist(
                    id=ref.id,
                    name=ref.title or tracks[0].artist,
                    avatar="",
                    description="",
                    works_num=len(tracks),
                    fans=0,
                    source=server,
                    tracks=tracks,
                )
            return Outcome.success(result) if result else Outcome.failure("artist not found")

        outcome = self._first_success("artist", self.resolver.plan("artist", ref.source), {"meting": from_meting})
        if not outcome.ok:
            return ArtistWorksResult(is_end=True, artist=self._placeholder_artist(ref), error=outcome.reason)
        result = outcome.value
        works = list(result.tracks if works_type == "music" else result.albums)
        window, is_end = _page_window(works, _coerce_page(page), ARTIST_PAGE_SIZE)
        return ArtistWorksResult(is_end=is_end, artist=result, data=window)

    # --- share ---

    def share(self, item: Any, share_type: str = "music") -> Outcome:
        ref = _item_ref(item)
        share_type = _clean_text(share_type).lower()
        if not ref.id or share_type not in ("music", "album", "artist", "playlist"):
            return Outcome.failure("Invalid share item or type.")
        source = self.resolver.primary(ref.source)
        templates = SHARE_URL_TEMPLATES.get(source)
        if not templates:
            return Outcome.failure(f'Sharing is not implemented for "{source}".')
        url = templates[share_type].format(id=quote(ref.id, safe=""))
        return Outcome.success(ShareLink(url=url, title=ref.title or ref.id, source=source))

    get_track_info = get_music_info
    get_playable_url = get_media_source
    get_lyrics = get_lyric


# --- CLI --------------------------------------------------------------------


def _print_track(track: Track, indent: str = "  ") -> None:
    seconds = track.duration // 1000
    print(f"{indent}[{track.source}:{track.id}] {track.artist} - {track.title}"
          f" ({track.album}, {seconds // 60}:{seconds % 60:02d})")
    if track.artwork:
        print(f"{indent}  Обложка: {track.artwork}")


def _print_result(result: Any) -> None:
    if isinstance(result, Outcome):
        if not result.ok:
            print(f"Ошибка: {result.reason}")
            return
        result = result.value
    if isinstance(result, Track):
        _print_track(result)
    elif isinstance(result, MediaSource):
        print(f"  URL:      {result.url}")
        print(f"  Качество: {result.quality} (br={result.br}, источник {result.source})")
        print(f"  Размер:   {result.size}")
    elif isinstance(result, LyricResult):
        if result.error:
            print(f"Ошибка: {result.error}")
        print(result.raw_lrc)
        if result.translate_lrc:
            print("\nПеревод:")
            print(result.translate_lrc)
    elif isinstance(result, ShareLink):
        print(result.url)
    elif isinstance(result, Playlist):
        print(f"  Плейлист: {result.title} ({result.creator}), треков: {result.works_num}")
        for track in result.tracks:
            _print_track(track, indent="    ")
    elif isinstance(result, (SearchResult, ArtistWorksResult)):
        if result.error:
            print(f"Ошибка: {result.error}")
        for entry in result.data:
            if isinstance(entry, Track):
                _print_track(entry)
            else:
                print(f"  [{entry.source}:{entry.id}] {getattr(entry, 'title', None) or getattr(entry, 'name', '')}")
        print(f"  Конец выдачи: {result.is_end}")
    elif isinstance(result, AlbumResult):
        if result.error:
            print(f"Ошибка: {result.error}")
        print(f"  Альбом: {result.album.title} - {result.album.artist}")
        for track in result.music_list:
            _print_track(track, indent="    ")
    else:
        print(result)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Поиск и ссылки на треки через Meting / GDStudio API")
    parser.add_argument("--json", action="store_true", help="Вывести результат в JSON")
    parser.add_argument("--verbose", action="store_true", help="Логировать попытки по источникам")
    parser.add_argument("--source", type=str.lower, choices=SERVERS, help="Сервер (по умолчанию METING_SERVER)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("search", help="Поиск")
    p.add_argument("query")
    p.add_argument("--page", type=int, default=1)
    p.add_argument("--type", default="music", help="music | album | artist | sheet")
    p = sub.add_parser("info", help="Метаданные трека")
    p.add_argument("id")
    p = sub.add_parser("url", help="Ссылка на аудио")
    p.add_argument("id")
    p.add_argument("--quality", default=DEFAULT_QUALITY, choices=QUALITIES)
    p = sub.add_parser("lyric", help="Текст песни")
    p.add_argument("id")
    p = sub.add_parser("playlist", help="Плейлист по ссылке или id")
    p.add_argument("url_or_id")
    p = sub.add_parser("album", help="Альбом")
    p.add_argument("id")
    p.add_argument("--page", type=int, default=1)
    p = sub.add_parser("artist", help="Работы исполнителя")
    p.add_argument("id")
    p.add_argument("--page", type=int, default=1)
    p.add_argument("--type", default="music", help="music | album")
    p = sub.add_parser("share", help="Публичная ссылка")
    p.add_argument("id")
    p.add_argument("--type", default="music", help="music | album | artist | playlist")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _load_env_file()
    aggregator = MusicAggregator(AggregatorConfig.from_env())

    item = {"id": getattr(args, "id", None), "_source": args.source}
    if args.source and args.command in ("search", "playlist"):
        # у поиска и голого id плейлиста нет своего источника
        aggregator = MusicAggregator(aggregator.config.with_overrides(server=args.source))

    if args.command == "search":
        result = aggregator.search(args.query, args.page, args.type)
    elif args.command == "info":
        result = aggregator.get_music_info(item)
    elif args.command == "url":
        result = aggregator.get_media_source(item, args.quality)
    elif args.command == "lyric":
        result = aggregator.get_lyric(item)
    elif args.command == "playlist":
        result = aggregator.get_playlist(args.url_or_id)
    elif args.command == "album":
        result = aggregator.get_album_info(item, args.page)
    elif args.command == "artist":
        result = aggregator.get_artist_works(item, args.page, args.type)
    else:
        result = aggregator.share(item, args.type)

    if args.json:
        print(json.dumps(asdict(result), ensure_ascii=False, indent=2))
        return
    _print_result(result)


if __name__ == "__main__":
    main()
