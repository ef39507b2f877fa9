from typing import Optional

from channel_dvr.db.models import Channel, Settings, Video
from channel_dvr.services.checker import RunSummary
from channel_dvr.services.scheduler import SchedulerStatus

TELEGRAM_MAX_LENGTH = 4096


def escape_html(text: str) -> str:
    """Escape only necessary HTML special characters for Telegram."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def split_message(text: str, max_length: int = TELEGRAM_MAX_LENGTH) -> list[str]:
    """Split a long message on line boundaries."""
    if len(text) <= max_length:
        return [text]

    parts = []
    current = ""
    for line in text.split("\n"):
        if len(current) + len(line) + 1 > max_length and current:
            parts.append(current.rstrip("\n"))
            current = ""
        current += line[:max_length] + "\n"

    if current.strip():
        parts.append(current.rstrip("\n"))
    return parts


def _format_time(value) -> str:
    if value is None:
        return "never"
    return value.strftime("%Y-%m-%d %H:%M")


def format_channel_list(channels: list[Channel], video_counts: Optional[dict[int, int]] = None) -> str:
    """Format channel list message with HTML."""
    if not channels:
        return "No channels are being tracked."

    video_counts = video_counts or {}
    lines = ["<b>📺 Tracked channels</b>\n"]
    for i, channel in enumerate(channels, 1):
        count = video_counts.get(channel.id)
        suffix = f" ({count} videos)" if count is not None else ""
        lines.append(f"{i}. {escape_html(channel.name)}{suffix}")
        lines.append(f"   <code>{channel.channel_id}</code>")
    return "\n".join(lines)


def format_video_list(videos: list[tuple[Video, str]]) -> str:
    if not videos:
        return "No videos found yet."

    lines = ["<b>🎬 Recent videos</b>\n"]
    for video, channel_name in videos:
        state = "⬇️" if video.download_requested_at else "⏳"
        lines.append(
            f"{state} <b>{escape_html(video.title)}</b>\n"
            f"   {escape_html(channel_name)} · {_format_time(video.published_at)}\n"
            f"   <code>{video.video_id}</code>"
        )
    return "\n".join(lines)


def format_run_summary(summary: RunSummary) -> str:
    lines = [
        "<b>🔄 Channel check finished</b>\n",
        f"Channels checked: {summary.channels_checked}",
        f"Videos in feeds: {summary.videos_found}",
        f"New videos: {summary.new_videos}",
        f"Sent to downloader: {summary.dispatched}",
    ]
    if summary.errors:
        lines.append(f"\n<b>⚠️ Errors ({len(summary.errors)})</b>")
        for error in summary.errors:
            lines.append(f"• {escape_html(error.channel_name)}: {escape_html(error.message)}")
    return "\n".join(lines)


def format_status(status: SchedulerStatus, channel_count: int) -> str:
    """Format status message with HTML."""
    state = "▶️ active" if status.is_active else "⏸ stopped"
    running = "yes" if status.is_checking else "no"
    last = status.last_summary

    text = (
        f"<b>📊 Scheduler status</b>\n\n"
        f"Scheduler: {state}\n"
        f"Check running: {running}\n"
        f"Interval: every {status.interval_minutes:g} minutes\n"
        f"Last check: {_format_time(status.last_run_at)}\n"
        f"Tracked channels: {channel_count}"
    )
    if last is not None:
        text += (
            f"\nLast result: {last.new_videos} new, {last.dispatched} sent, "
            f"{len(last.errors)} errors"
        )
    return text


def format_settings(settings: Settings) -> str:
    password = "••••" if settings.password else "(none)"
    return (
        "<b>⚙️ Settings</b>\n\n"
        f"download_backend: <code>{settings.download_backend}</code>\n"
        f"metube_url: <code>{escape_html(settings.metube_url)}</code>\n"
        f"aria2c_ip: <code>{escape_html(settings.aria2c_ip)}</code>\n"
        f"aria2c_port: <code>{escape_html(settings.aria2c_port)}</code>\n"
        f"download_folder: <code>{escape_html(settings.download_folder)}</code>\n"
        f"username: <code>{escape_html(settings.username) or '(none)'}</code>\n"
        f"password: {password}\n"
        f"filter_shorts: <code>{'on' if settings.filter_shorts else 'off'}</code>"
    )


def format_backend_check(
    resolver_version: Optional[str],
    resolver_error: Optional[str],
    aria2_version: Optional[str] = None,
    aria2_error: Optional[str] = None,
) -> str:
    lines = ["<b>🩺 Backend check</b>\n"]
    if resolver_version:
        lines.append(f"✅ yt-dlp {escape_html(resolver_version)}")
    else:
        lines.append(f"❌ yt-dlp: {escape_html(resolver_error or 'unknown error')}")
    if aria2_version:
        lines.append(f"✅ aria2c {escape_html(aria2_version)}")
    elif aria2_error:
        lines.append(f"❌ aria2c: {escape_html(aria2_error)}")
    return "\n".join(lines)


def format_error(message: str) -> str:
    """Format error message."""
    return f"❌ {escape_html(message)}"


def format_success(message: str) -> str:
    """Format success message."""
    return f"✅ {escape_html(message)}"
