import functools
import logging
from typing import Callable

from telegram import Update
from telegram.ext import ContextTypes

from channel_dvr.config import Config

logger = logging.getLogger(__name__)


def admin_only(func: Callable):
    """Only let the configured admin chat drive the DVR."""

    @functools.wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE):
        chat_id = update.effective_chat.id if update.effective_chat else None

        if chat_id != Config.ADMIN_CHAT_ID:
            logger.warning(f"Ignoring /{func.__name__} from chat {chat_id}")
            return None

        return await func(update, context)

    return wrapper
