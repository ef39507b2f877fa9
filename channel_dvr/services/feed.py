import logging
import re
import xml.etree.ElementTree as ET
from datetime import datetime
from typing import Optional

import httpx

from channel_dvr.config import Config
from channel_dvr.db.models import Video
from channel_dvr.services.errors import FetchError, NetworkError, ParseError

logger = logging.getLogger(__name__)

FEED_URL = "https://www.youtube.com/feeds/videos.xml?channel_id={channel_id}"
WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
THUMBNAIL_URL = "https://img.youtube.com/vi/{video_id}/hqdefault.jpg"

NAMESPACES = {
    "atom": "http://www.w3.org/2005/Atom",
    "yt": "http://www.youtube.com/xml/schemas/2015",
    "media": "http://search.yahoo.com/mrss/",
}

SHORTS_TITLE_PATTERNS = [
    re.compile(r"#shorts\b", re.IGNORECASE),
    re.compile(r"\bshorts\b", re.IGNORECASE),
    re.compile(r"^\s*shorts\s*:", re.IGNORECASE),
    re.compile(r"^\s*#\d+\s*$"),
]
SHORTS_URL_PATTERN = re.compile(r"/shorts/")


def extract_channel_id(value: str) -> Optional[str]:
    """Extract a channel id from a bare id or a /channel/ URL."""
    value = value.strip()
    match = re.search(r"youtube\.com/channel/(UC[A-Za-z0-9_-]{22})", value)
    if match:
        return match.group(1)
    if re.fullmatch(r"UC[A-Za-z0-9_-]{22}", value):
        return value
    return None


def extract_video_id(url: str) -> Optional[str]:
    """Extract video ID from various YouTube URL formats."""
    patterns = [
        r"(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/)([A-Za-z0-9_-]{11})",
        r"youtube\.com/shorts/([A-Za-z0-9_-]{11})",
    ]
    for pattern in patterns:
        match = re.search(pattern, url)
        if match:
            return match.group(1)
    return None


def thumbnail_url_for(video_id: str) -> str:
    return THUMBNAIL_URL.format(video_id=video_id)


def build_feed_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=Config.FEED_TIMEOUT_SECONDS,
        headers={"User-Agent": "channel-dvr/1.0"},
        follow_redirects=True,
    )


async def fetch_feed(channel_id: str, client: httpx.AsyncClient) -> str:
    """Fetch the raw feed document for a channel. No retries."""
    url = FEED_URL.format(channel_id=channel_id)
    try:
        response = await client.get(url)
    except httpx.HTTPError as e:
        raise NetworkError(f"Could not fetch feed for {channel_id}: {e}") from e

    if response.status_code != httpx.codes.OK:
        raise FetchError(response.status_code, response.reason_phrase)
    return response.text


def _is_short_video_id(video_id: str) -> bool:
    # Video ids carry no reliable signal for short-form content
    return False


def is_short(video: Video) -> bool:
    """Heuristic short-form check based on title and watch URL."""
    if any(pattern.search(video.title) for pattern in SHORTS_TITLE_PATTERNS):
        return True
    if SHORTS_URL_PATTERN.search(video.video_url):
        return True
    return _is_short_video_id(video.video_id)


def _text(element: ET.Element, path: str) -> str:
    found = element.find(path, NAMESPACES)
    if found is None or found.text is None:
        return ""
    return found.text.strip()


def _parse_published(value: str, video_id: str) -> datetime:
    if not value:
        raise ParseError(f"Entry {video_id} has no published timestamp")
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise ParseError(f"Entry {video_id} has an invalid timestamp: {value}") from e


def _parse_entry(entry: ET.Element) -> Optional[Video]:
    video_id = _text(entry, "yt:videoId")
    if not video_id:
        return None

    link = entry.find("atom:link[@rel='alternate']", NAMESPACES)
    if link is None:
        link = entry.find("atom:link", NAMESPACES)
    video_url = link.get("href") if link is not None and link.get("href") else WATCH_URL.format(video_id=video_id)

    thumbnail = entry.find("media:group/media:thumbnail", NAMESPACES)
    thumbnail_url = thumbnail.get("url") if thumbnail is not None else None

    return Video(
        id=None,
        video_id=video_id,
        channel_id=None,
        title=_text(entry, "atom:title"),
        description=_text(entry, "media:group/media:description"),
        published_at=_parse_published(_text(entry, "atom:published"), video_id),
        thumbnail_url=thumbnail_url or thumbnail_url_for(video_id),
        video_url=video_url,
    )


def parse_feed(document: str, filter_shorts: bool = False) -> list[Video]:
    """Parse a channel feed into candidate videos, keeping feed order.

    Any malformed document or entry raises ParseError; nothing partial is
    returned. Short-form candidates are dropped only when filter_shorts is set.
    """
    try:
        root = ET.fromstring(document)
    except ET.ParseError as e:
        raise ParseError(f"Malformed feed document: {e}") from e

    if root.tag != f"{{{NAMESPACES['atom']}}}feed":
        raise ParseError(f"Unexpected feed root element: {root.tag}")

    videos = []
    for entry in root.findall("atom:entry", NAMESPACES):
        video = _parse_entry(entry)
        if video is None:
            continue
        if filter_shorts and is_short(video):
            logger.debug(f"Skipping short: {video.title} ({video.video_id})")
            continue
        videos.append(video)

    return videos
