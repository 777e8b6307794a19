import logging
from telegram import Update
from telegram.ext import ContextTypes

logger = logging.getLogger(__name__)


async def on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    # PTB recommends not raising; just log it
    logger.error(
        "Unhandled exception while handling update=%r",
        update,
        exc_info=context.error,
    )
    if isinstance(update, Update) and update.effective_chat:
        try:
            await update.effective_chat.send_message(
                "⚠️ Something went wrong. Please try again."
            )
        except Exception as e:
            logger.warning("on_error: could not notify chat: %s", e)
