import asyncio
import logging
from typing import Optional, Tuple

from channel_dvr.config import Config
from channel_dvr.services.errors import (
    DvrError,
    ResolutionError,
    ResolutionUnavailable,
    Timeout,
)

logger = logging.getLogger(__name__)

# Progressive (muxed) formats only: aria2 needs a single URL per job.
PREFERRED_FORMAT = "best[height>=1080][ext=mp4]/best[height>=1080]"
FALLBACK_FORMAT = "best[ext=mp4]/best"

VERSION_TIMEOUT_SECONDS = 10

UNAVAILABLE_MARKERS = (
    "video unavailable",
    "video is not available",
    "private video",
    "age-restricted",
    "confirm your age",
    "sign in to confirm",
    "in your country",
    "geo restriction",
)


def _build_args(url: str, format_selector: str) -> list[str]:
    return [
        Config.YTDLP_BINARY,
        "--get-url",
        "--format",
        format_selector,
        "--no-playlist",
        "--no-warnings",
        "--socket-timeout",
        str(Config.RESOLVER_SOCKET_TIMEOUT_SECONDS),
        "--extractor-args",
        "youtube:player_client=android",
        url,
    ]


def _is_unavailable(stderr_text: str) -> bool:
    lowered = stderr_text.lower()
    return any(marker in lowered for marker in UNAVAILABLE_MARKERS)


async def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        pass
    await process.wait()


async def _run_ytdlp(url: str, format_selector: str) -> Tuple[int, str, str]:
    """Run one yt-dlp attempt. Raises asyncio.TimeoutError after killing it."""
    process = await asyncio.create_subprocess_exec(
        *_build_args(url, format_selector),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(),
            timeout=Config.RESOLVER_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        await _kill(process)
        raise
    return (
        process.returncode,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )


def _first_url(stdout_text: str) -> Optional[str]:
    for line in stdout_text.strip().splitlines():
        if line.strip():
            return line.strip()
    return None


async def resolve_media_url(url: str) -> Tuple[Optional[str], Optional[DvrError]]:
    """Resolve a direct media URL for a watch URL. Returns (media_url, error).

    The preferred selector is tried first; a non-zero exit or empty output
    triggers exactly one retry with the looser fallback selector.
    """
    stderr_text = ""
    for format_selector in (PREFERRED_FORMAT, FALLBACK_FORMAT):
        try:
            returncode, stdout_text, stderr_text = await _run_ytdlp(url, format_selector)
        except asyncio.TimeoutError:
            logger.error(f"yt-dlp timeout after {Config.RESOLVER_TIMEOUT_SECONDS} seconds for {url}")
            return None, Timeout(
                f"Resolving the media URL took longer than {Config.RESOLVER_TIMEOUT_SECONDS} seconds."
            )
        except FileNotFoundError:
            logger.error(f"yt-dlp not found. Make sure '{Config.YTDLP_BINARY}' is installed and in PATH")
            return None, ResolutionError("yt-dlp is not installed.")

        media_url = _first_url(stdout_text) if returncode == 0 else None
        if media_url:
            return media_url, None

        if format_selector == PREFERRED_FORMAT:
            logger.info(f"No result for preferred format (exit {returncode}), retrying with fallback: {url}")
        else:
            logger.error(f"yt-dlp failed for {url} (exit {returncode}): {stderr_text[:200]}")

    if _is_unavailable(stderr_text):
        return None, ResolutionUnavailable(
            f"The video is not available for download: {stderr_text.strip()[:200]}"
        )
    return None, ResolutionError(
        f"No downloadable format found: {stderr_text.strip()[:200] or 'empty output'}"
    )


async def check_resolver() -> Tuple[Optional[str], Optional[DvrError]]:
    """Return the installed yt-dlp version. Returns (version, error)."""
    try:
        process = await asyncio.create_subprocess_exec(
            Config.YTDLP_BINARY,
            "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=VERSION_TIMEOUT_SECONDS)
    except FileNotFoundError:
        return None, ResolutionError("yt-dlp is not installed.")
    except asyncio.TimeoutError:
        await _kill(process)
        return None, Timeout("yt-dlp --version did not finish in time.")

    if process.returncode != 0:
        return None, ResolutionError(f"yt-dlp --version exited with {process.returncode}")
    return stdout.decode("utf-8").strip(), None
