# clubgate_app/bot/application.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from . import admin, handlers, keyboards
from .runtime import FLASK_APP_KEY

log = logging.getLogger(__name__)


async def on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    log.error("update %s raised", getattr(update, "update_id", None), exc_info=context.error)


def _pattern(action: str, with_arg: bool = False) -> str:
    return rf"^{action}:.+$" if with_arg else rf"^{action}$"


def register_handlers(application: Application) -> None:
    application.add_handler(CommandHandler("start", handlers.start))

    routes = [
        (keyboards.CHOOSE, True, handlers.choose_payment),
        (keyboards.CONFIRM, True, handlers.confirm_payment),
        (keyboards.CANCEL, True, handlers.cancel_payment),
        (keyboards.CHECK, True, handlers.check_payment),
        (keyboards.OFFER, False, handlers.show_offer),
        (keyboards.MYSUB, False, handlers.my_subscription),
        (keyboards.TOGGLE_RENEW, False, handlers.toggle_renew),
        (keyboards.BACK, False, handlers.back_to_start),
        (keyboards.ADMIN_PANEL, False, admin.admin_panel),
        (keyboards.ADMIN_USERS, False, admin.admin_users),
        (keyboards.ADMIN_CHECK, False, admin.admin_check),
        (keyboards.ADMIN_STATS, False, admin.admin_stats),
        (keyboards.ADMIN_EXIT, False, admin.admin_exit),
        (keyboards.ADMIN_REGRANT, True, admin.admin_regrant),
    ]
    for action, with_arg, callback in routes:
        application.add_handler(CallbackQueryHandler(callback, pattern=_pattern(action, with_arg)))

    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handlers.on_text))
    application.add_error_handler(on_error)


def build_application(flask_app) -> Application:
    application = ApplicationBuilder().token(flask_app.config["TELEGRAM_BOT_TOKEN"]).build()
    application.bot_data[FLASK_APP_KEY] = flask_app
    register_handlers(application)
    return application


def run_polling(flask_app) -> None:
    """Blocks until the process is stopped."""
    application = build_application(flask_app)
    log.info("bot polling started")
    application.run_polling(allowed_updates=Update.ALL_TYPES)
