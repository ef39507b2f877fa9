import logging
import sys

from telegram.ext import Application, CommandHandler

from channel_dvr.bot.formatters import format_run_summary
from channel_dvr.bot.handlers import (
    cmd_add_channel,
    cmd_backend_check,
    cmd_channels,
    cmd_check,
    cmd_download,
    cmd_remove_channel,
    cmd_scheduler_start,
    cmd_scheduler_stop,
    cmd_set,
    cmd_settings,
    cmd_start,
    cmd_status,
    cmd_videos,
)
from channel_dvr.config import Config
from channel_dvr.db.database import init_db
from channel_dvr.services.checker import RunSummary
from channel_dvr.services.scheduler import CheckScheduler

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
)
# Every feed request would otherwise be logged at INFO
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

COMMANDS = {
    "start": cmd_start,
    "help": cmd_start,
    "channels": cmd_channels,
    "add_channel": cmd_add_channel,
    "remove_channel": cmd_remove_channel,
    "videos": cmd_videos,
    "check": cmd_check,
    "download": cmd_download,
    "scheduler_start": cmd_scheduler_start,
    "scheduler_stop": cmd_scheduler_stop,
    "status": cmd_status,
    "settings": cmd_settings,
    "set": cmd_set,
    "backend_check": cmd_backend_check,
}


def build_notifier(application: Application):
    async def notify_admin(summary: RunSummary) -> None:
        await application.bot.send_message(
            chat_id=Config.ADMIN_CHAT_ID,
            text=format_run_summary(summary),
            parse_mode="HTML",
        )

    return notify_admin


def main() -> None:
    """Run the DVR bot."""
    errors = Config.validate()
    if errors:
        for error in errors:
            logger.error(error)
        sys.exit(1)

    init_db()
    logger.info("Database initialized")

    application = Application.builder().token(Config.TELEGRAM_BOT_TOKEN).build()

    for command, handler in COMMANDS.items():
        application.add_handler(CommandHandler(command, handler))

    scheduler = CheckScheduler(application.job_queue, notifier=build_notifier(application))
    application.bot_data["scheduler"] = scheduler
    if Config.AUTOSTART_SCHEDULER:
        scheduler.start()

    logger.info("Bot starting...")
    application.run_polling()


if __name__ == "__main__":
    main()
