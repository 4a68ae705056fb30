from telegram import Update
from telegram.ext import ContextTypes

from worklogbot import config

OWNER_CHAT_ID_KEY = "owner_chat_id"


def is_owner(user_id: int) -> bool:
    return config.OWNER_USER_ID <= 0 or user_id == config.OWNER_USER_ID


async def ensure_owner(update: Update, context: ContextTypes.DEFAULT_TYPE, logger) -> bool:
    user = update.effective_user
    chat = update.effective_chat
    if not user or not chat:
        return False

    if not is_owner(user.id):
        logger.info("BLOCKED_ACCESS user=%s reason=not_owner", user.id)
        if update.effective_message:
            await update.effective_message.reply_text("Этот бот ведёт учёт только для своего владельца.")
        return False

    # сюда уходят уведомления об автостарте/автостопе
    context.application.bot_data[OWNER_CHAT_ID_KEY] = chat.id
    return True
