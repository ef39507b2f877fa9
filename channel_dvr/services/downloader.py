import logging
import re
from datetime import datetime, timezone
from typing import Optional, Tuple

import httpx

from channel_dvr.config import Config
from channel_dvr.db.models import Settings, Video
from channel_dvr.db.repositories import VideoRepository
from channel_dvr.services.errors import (
    BackendRejected,
    ConnectionRefused,
    DvrError,
    Timeout,
)
from channel_dvr.services.resolver import resolve_media_url

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 100
OUTPUT_EXTENSION = ".mp4"
ARIA2_RPC_ID = "channel-dvr"


def sanitize_name(text: str) -> str:
    """Keep letters, digits and spaces in any script; collapse spaces into underscores."""
    cleaned = "".join(ch for ch in text if ch.isalnum() or ch == " ")
    return re.sub(r" +", "_", cleaned.strip())


def build_name_prefix(channel_name: Optional[str], published_at: Optional[datetime]) -> Optional[str]:
    """`{channel}_{YYYYMMDDHHmmss}` from the publish time (UTC), not the clock."""
    if not channel_name or published_at is None:
        return None
    if published_at.tzinfo is not None:
        published_at = published_at.astimezone(timezone.utc)
    name = sanitize_name(channel_name) or "channel"
    return f"{name}_{published_at.strftime('%Y%m%d%H%M%S')}"


def build_output_filename(title: str, name_prefix: Optional[str] = None) -> str:
    title_part = sanitize_name(title)[:MAX_TITLE_LENGTH].rstrip("_") or "video"
    if name_prefix:
        return f"{name_prefix}_{title_part}{OUTPUT_EXTENSION}"
    return f"{title_part}{OUTPUT_EXTENSION}"


def _map_transport_error(backend: str, error: httpx.HTTPError) -> DvrError:
    if isinstance(error, httpx.TimeoutException):
        return Timeout(f"{backend} connection timed out. Check your settings.")
    if isinstance(error, httpx.ConnectError):
        return ConnectionRefused(
            f"{backend} connection refused. Make sure {backend} is running and accessible."
        )
    return BackendRejected(None, f"{backend} request failed: {error}")


class DownloadBackend:
    """A download target. `submit` returns (job_id, error)."""

    name = "backend"

    def __init__(self, settings: Settings, client: httpx.AsyncClient) -> None:
        self.settings = settings
        self.client = client

    async def submit(
        self, url: str, title: str, name_prefix: Optional[str] = None
    ) -> Tuple[Optional[str], Optional[DvrError]]:
        raise NotImplementedError


class MeTubeBackend(DownloadBackend):
    """Hands the watch URL straight to MeTube, which does its own resolving."""

    name = "MeTube"

    async def submit(
        self, url: str, title: str, name_prefix: Optional[str] = None
    ) -> Tuple[Optional[str], Optional[DvrError]]:
        payload = {
            "url": url,
            "quality": "best",
            "format": "any",
            "playlist_strict_mode": False,
            "auto_start": True,
        }
        if name_prefix:
            payload["custom_name_prefix"] = name_prefix

        endpoint = f"{self.settings.metube_url.rstrip('/')}/add"
        try:
            response = await self.client.post(
                endpoint, json=payload, timeout=Config.BACKEND_TIMEOUT_SECONDS
            )
        except httpx.HTTPError as e:
            logger.error(f"MeTube request failed for {url}: {e}")
            return None, _map_transport_error(self.name, e)

        if response.status_code != httpx.codes.OK:
            return None, BackendRejected(response.status_code, response.reason_phrase)
        return url, None


class Aria2Backend(DownloadBackend):
    """Resolves a direct media URL with yt-dlp, then queues it in aria2."""

    name = "aria2c"

    async def _call(self, method: str, params: list) -> Tuple[Optional[object], Optional[DvrError]]:
        request = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": ARIA2_RPC_ID,
        }
        try:
            response = await self.client.post(
                self.settings.aria2c_rpc_url,
                json=request,
                timeout=Config.BACKEND_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            logger.error(f"aria2c RPC {method} failed: {e}")
            return None, _map_transport_error(self.name, e)

        try:
            body = response.json()
        except ValueError:
            return None, BackendRejected(response.status_code, response.reason_phrase)

        if not isinstance(body, dict):
            return None, BackendRejected(response.status_code, response.reason_phrase)
        rpc_error = body.get("error")
        if rpc_error:
            if isinstance(rpc_error, dict):
                rpc_error = rpc_error.get("message", "unknown error")
            return None, BackendRejected(response.status_code, str(rpc_error))
        if response.status_code != httpx.codes.OK or "result" not in body:
            return None, BackendRejected(response.status_code, response.reason_phrase)
        return body["result"], None

    def build_options(self, title: str, name_prefix: Optional[str] = None) -> dict:
        options = {
            "dir": self.settings.download_folder,
            "out": build_output_filename(title, name_prefix),
            "continue": "true",
            "max-connection-per-server": "16",
            "split": "16",
        }
        if self.settings.username:
            options["http-user"] = self.settings.username
            options["http-passwd"] = self.settings.password
        return options

    async def submit(
        self, url: str, title: str, name_prefix: Optional[str] = None
    ) -> Tuple[Optional[str], Optional[DvrError]]:
        media_url, error = await resolve_media_url(url)
        if error:
            return None, error

        result, error = await self._call(
            "aria2.addUri", [[media_url], self.build_options(title, name_prefix)]
        )
        if error:
            return None, error
        return str(result), None

    async def get_version(self) -> Tuple[Optional[str], Optional[DvrError]]:
        result, error = await self._call("aria2.getVersion", [])
        if error:
            return None, error
        if not isinstance(result, dict):
            return None, BackendRejected(None, "aria2c returned no version information")
        return result.get("version"), None


BACKENDS = {
    "metube": MeTubeBackend,
    "aria2c": Aria2Backend,
}


def get_backend(settings: Settings, client: httpx.AsyncClient) -> DownloadBackend:
    try:
        backend_cls = BACKENDS[settings.download_backend]
    except KeyError:
        raise ValueError(f"Unknown download backend: {settings.download_backend}")
    return backend_cls(settings, client)


async def dispatch_video(
    video: Video, channel_name: Optional[str], backend: DownloadBackend
) -> Tuple[bool, Optional[DvrError]]:
    """Submit one stored video and record when the backend accepted it."""
    name_prefix = build_name_prefix(channel_name, video.published_at)
    job_id, error = await backend.submit(video.video_url, video.title, name_prefix)
    if error:
        error.video_title = video.title
        error.video_id = video.video_id
        logger.warning(f"Failed to dispatch {video.title} to {backend.name}: {error.message}")
        return False, error

    video.download_requested_at = VideoRepository.mark_download_requested(video.video_id)
    logger.info(f"Dispatched to {backend.name}: {video.title} (job {job_id})")
    return True, None
