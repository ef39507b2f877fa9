import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import httpx

from channel_dvr.config import Config
from channel_dvr.db.models import Channel, Settings
from channel_dvr.db.repositories import (
    ChannelRepository,
    SettingsRepository,
    VideoRepository,
)
from channel_dvr.services.downloader import DownloadBackend, dispatch_video, get_backend
from channel_dvr.services.errors import DvrError
from channel_dvr.services.feed import build_feed_client, fetch_feed, parse_feed

logger = logging.getLogger(__name__)


@dataclass
class ChannelError:
    channel_name: str
    message: str


@dataclass
class RunSummary:
    channels_checked: int = 0
    videos_found: int = 0
    new_videos: int = 0
    dispatched: int = 0
    errors: list[ChannelError] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def has_news(self) -> bool:
        return self.new_videos > 0 or bool(self.errors)


async def check_channel(
    channel: Channel,
    settings: Settings,
    client: httpx.AsyncClient,
    backend: DownloadBackend,
    summary: RunSummary,
) -> None:
    """Fetch, parse, store and dispatch one channel. Raises on fetch/parse/store failure."""
    document = await fetch_feed(channel.channel_id, client)
    candidates = parse_feed(document, filter_shorts=settings.filter_shorts)
    summary.videos_found += len(candidates)

    result = VideoRepository.save_new(candidates, channel)
    summary.new_videos += result.saved
    logger.info(
        f"{channel.name}: {len(candidates)} videos, "
        f"{result.saved} new, {result.skipped} already stored"
    )

    # Only what was just inserted gets dispatched, in feed order
    for video in result.inserted:
        try:
            accepted, error = await dispatch_video(video, channel.name, backend)
        except DvrError as e:
            logger.warning(f"Dispatch of {video.title} failed ({e.category}): {e.message}")
            summary.errors.append(ChannelError(channel.name, f"{video.title}: {e.category}"))
            continue
        except Exception as e:
            logger.exception(f"Unexpected error dispatching {video.title}")
            summary.errors.append(ChannelError(channel.name, f"{video.title}: {e}"))
            continue

        if accepted:
            summary.dispatched += 1
        else:
            summary.errors.append(ChannelError(channel.name, f"{video.title}: {error.category}"))


async def check_channels(
    channels: list[Channel],
    settings: Settings,
    client: httpx.AsyncClient,
    backend: DownloadBackend,
    delay: Optional[float] = None,
) -> RunSummary:
    """Walk channels one at a time; a failing channel never stops the batch."""
    if delay is None:
        delay = Config.CHANNEL_DELAY_SECONDS
    summary = RunSummary()

    for index, channel in enumerate(channels):
        logger.info(f"Checking channel: {channel.name}")
        summary.channels_checked += 1
        try:
            await check_channel(channel, settings, client, backend, summary)
        except DvrError as e:
            logger.warning(f"Channel {channel.name} failed ({e.category}): {e.message}")
            summary.errors.append(ChannelError(channel.name, e.message))
        except Exception as e:
            logger.exception(f"Unexpected error checking channel {channel.name}")
            summary.errors.append(ChannelError(channel.name, str(e)))

        if index < len(channels) - 1:
            await asyncio.sleep(delay)

    summary.finished_at = datetime.now(timezone.utc)
    return summary


async def run_check_pass(channels: Optional[list[Channel]] = None) -> RunSummary:
    """One full pass with settings read fresh from the database."""
    settings = SettingsRepository.get()
    if channels is None:
        channels = ChannelRepository.get_all()

    logger.info(f"Starting check of {len(channels)} channel(s) via {settings.download_backend}")
    async with build_feed_client() as client:
        backend = get_backend(settings, client)
        summary = await check_channels(channels, settings, client, backend)

    logger.info(
        f"Check completed: {summary.channels_checked} channels, "
        f"{summary.new_videos} new, {summary.dispatched} dispatched, "
        f"{len(summary.errors)} errors"
    )
    return summary


async def redispatch_video(video_id: str) -> tuple[bool, Optional[DvrError]]:
    """Send an already stored video to the backend again."""
    video = VideoRepository.get_by_video_id(video_id)
    if video is None:
        raise LookupError(f"Video not found: {video_id}")
    channel = ChannelRepository.get_by_id(video.channel_id)
    settings = SettingsRepository.get()

    async with build_feed_client() as client:
        backend = get_backend(settings, client)
        return await dispatch_video(video, channel.name if channel else None, backend)
