# clubgate_app/decorators.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from functools import wraps

from telegram.constants import ParseMode
from telegram.error import TelegramError

from .bot import texts
from .bot.runtime import is_admin

log = logging.getLogger(__name__)


async def _deny(update, text: str) -> None:
    if update.callback_query:
        await update.callback_query.answer(text, show_alert=True)
    elif update.effective_message:
        await update.effective_message.reply_text(text)


def admin_required(handler):
    @wraps(handler)
    async def wrapper(update, context, *args, **kwargs):
        user = update.effective_user
        if user is None or not is_admin(context, user.id):
            log.warning("admin action %s refused for %s", handler.__name__, user.id if user else None)
            await _deny(update, texts.NO_ACCESS)
            return None
        return await handler(update, context, *args, **kwargs)
    return wrapper


def reply_on_error(handler):
    """Logs whatever the handler raises and answers the user with a neutral message."""
    @wraps(handler)
    async def wrapper(update, context, *args, **kwargs):
        try:
            return await handler(update, context, *args, **kwargs)
        except Exception:
            log.exception("handler %s failed", handler.__name__)
            try:
                if update.callback_query:
                    await update.callback_query.answer()
                if update.effective_chat:
                    await context.bot.send_message(update.effective_chat.id, texts.GENERIC_ERROR,
                                                   parse_mode=ParseMode.HTML)
            except TelegramError:
                log.warning("could not deliver the error reply")
            return None
    return wrapper
