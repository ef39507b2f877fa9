import logging
import sqlite3

import httpx
from telegram import Update
from telegram.ext import ContextTypes

from channel_dvr.bot.formatters import (
    format_backend_check,
    format_channel_list,
    format_error,
    format_run_summary,
    format_settings,
    format_status,
    format_success,
    format_video_list,
    split_message,
)
from channel_dvr.bot.middleware import admin_only
from channel_dvr.config import DOWNLOAD_BACKENDS
from channel_dvr.db.models import Channel
from channel_dvr.db.repositories import (
    SETTINGS_FIELDS,
    ChannelRepository,
    SettingsRepository,
    VideoRepository,
)
from channel_dvr.services.checker import redispatch_video
from channel_dvr.services.downloader import Aria2Backend
from channel_dvr.services.errors import DvrError
from channel_dvr.services.feed import extract_channel_id, extract_video_id
from channel_dvr.services.resolver import check_resolver
from channel_dvr.services.scheduler import CheckScheduler

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "<b>🎬 Channel DVR</b>\n\n"
    "/channels - list tracked channels\n"
    "/add_channel &lt;id or URL&gt; &lt;name&gt; - track a channel\n"
    "/remove_channel &lt;id&gt; - stop tracking a channel\n"
    "/videos - recent videos\n"
    "/check [id] - check all channels or one now\n"
    "/download &lt;video id or URL&gt; - send a stored video to the downloader\n"
    "/scheduler_start, /scheduler_stop - control periodic checks\n"
    "/status - scheduler status\n"
    "/settings - show settings\n"
    "/set &lt;key&gt; &lt;value&gt; - change a setting\n"
    "/backend_check - test yt-dlp and aria2c"
)

BOOL_VALUES = {"on": True, "true": True, "1": True, "yes": True,
               "off": False, "false": False, "0": False, "no": False}


def get_scheduler(context: ContextTypes.DEFAULT_TYPE) -> CheckScheduler:
    return context.bot_data["scheduler"]


async def reply(update: Update, text: str) -> None:
    for part in split_message(text):
        await update.message.reply_text(part, parse_mode="HTML")


@admin_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start and /help."""
    await reply(update, HELP_TEXT)


@admin_only
async def cmd_channels(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    channels = ChannelRepository.get_all()
    counts = {channel.id: VideoRepository.count_by_channel(channel.id) for channel in channels}
    await reply(update, format_channel_list(channels, counts))


@admin_only
async def cmd_add_channel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /add_channel <channel id or URL> <name>."""
    if len(context.args) < 2:
        await reply(update, "Usage: /add_channel &lt;channel id or URL&gt; &lt;name&gt;")
        return

    channel_id = extract_channel_id(context.args[0])
    if not channel_id:
        await reply(update, format_error("That is not a channel id (UC...) or /channel/ URL."))
        return

    name = " ".join(context.args[1:])
    try:
        channel = ChannelRepository.create(Channel(id=None, channel_id=channel_id, name=name))
    except sqlite3.IntegrityError:
        existing = ChannelRepository.get_by_channel_id(channel_id)
        await reply(update, format_error(f"Channel already tracked: {existing.name if existing else channel_id}"))
        return

    logger.info(f"Channel added: {channel.name} ({channel.channel_id})")
    await reply(update, format_success(f"Channel added: {channel.name}"))


@admin_only
async def cmd_remove_channel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not context.args:
        await reply(update, "Usage: /remove_channel &lt;channel id&gt;")
        return

    channel_id = extract_channel_id(context.args[0]) or context.args[0]
    channel = ChannelRepository.get_by_channel_id(channel_id)
    if not channel:
        await reply(update, format_error("Channel not found."))
        return

    ChannelRepository.delete(channel_id)
    logger.info(f"Channel removed: {channel.name} ({channel.channel_id})")
    await reply(update, format_success(f"Channel removed: {channel.name}"))


@admin_only
async def cmd_videos(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await reply(update, format_video_list(VideoRepository.get_recent(limit=10)))


@admin_only
async def cmd_check(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /check [channel id]: run a pass now through the single-flight guard."""
    scheduler = get_scheduler(context)

    channels = None
    if context.args:
        channel = ChannelRepository.get_by_channel_id(context.args[0])
        if not channel:
            await reply(update, format_error("Channel not found."))
            return
        channels = [channel]

    if scheduler.is_checking:
        await reply(update, format_error("A check is already running. Try again later."))
        return

    await update.message.reply_text("🔄 Checking for new videos...")
    summary = await scheduler.run_check(channels, trigger="manual", notify=False)
    if summary is None:
        await reply(update, format_error("A check is already running. Try again later."))
        return
    await reply(update, format_run_summary(summary))


@admin_only
async def cmd_download(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not context.args:
        await reply(update, "Usage: /download &lt;video id or URL&gt;")
        return

    video_id = extract_video_id(context.args[0]) or context.args[0]
    try:
        accepted, error = await redispatch_video(video_id)
    except LookupError:
        await reply(update, format_error("Video not found."))
        return
    except DvrError as e:
        await reply(update, e.to_admin_message())
        return

    if error:
        await reply(update, error.to_admin_message())
        return
    await reply(update, format_success("Sent to the downloader."))


@admin_only
async def cmd_scheduler_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if get_scheduler(context).start():
        await reply(update, format_success("Scheduler started."))
    else:
        await reply(update, format_error("Scheduler is already running."))


@admin_only
async def cmd_scheduler_stop(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if get_scheduler(context).stop():
        await reply(update, format_success("Scheduler stopped."))
    else:
        await reply(update, format_error("Scheduler is not running."))


@admin_only
async def cmd_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    status = get_scheduler(context).status()
    await reply(update, format_status(status, len(ChannelRepository.get_all())))


@admin_only
async def cmd_settings(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await reply(update, format_settings(SettingsRepository.get()))


@admin_only
async def cmd_set(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /set <key> <value>."""
    if len(context.args) < 2 or context.args[0] not in SETTINGS_FIELDS:
        await reply(update, f"Usage: /set &lt;key&gt; &lt;value&gt;\nKeys: {', '.join(SETTINGS_FIELDS)}")
        return

    key = context.args[0]
    value = " ".join(context.args[1:])

    if key == "filter_shorts":
        if value.lower() not in BOOL_VALUES:
            await reply(update, format_error("filter_shorts must be on or off."))
            return
        value = BOOL_VALUES[value.lower()]
    elif key == "download_backend" and value not in DOWNLOAD_BACKENDS:
        await reply(update, format_error(f"download_backend must be one of {', '.join(DOWNLOAD_BACKENDS)}."))
        return

    settings = SettingsRepository.update(**{key: value})
    logger.info(f"Setting updated: {key}")
    await reply(update, format_settings(settings))


@admin_only
async def cmd_backend_check(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    resolver_version, resolver_error = await check_resolver()

    aria2_version = aria2_error = None
    settings = SettingsRepository.get()
    if settings.download_backend == "aria2c":
        async with httpx.AsyncClient() as client:
            version, error = await Aria2Backend(settings, client).get_version()
        aria2_version = version
        aria2_error = error.message if error else None

    await reply(
        update,
        format_backend_check(
            resolver_version,
            resolver_error.message if resolver_error else None,
            aria2_version,
            aria2_error,
        ),
    )
