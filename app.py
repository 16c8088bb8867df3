# app.py
# -*- coding: utf-8 -*-
"""Process entry point: webhook server in a background thread, Telegram long polling in the main thread."""
import logging
import sys
import threading

from sqlalchemy.exc import SQLAlchemyError
from telegram.error import TelegramError

from config import Config
from clubgate_app import create_app
from clubgate_app.bot.application import run_polling
from clubgate_app.extensions import ping_database

log = logging.getLogger("clubgate")


def check_database(app) -> None:
    with app.app_context():
        try:
            ping_database()
        except SQLAlchemyError:
            log.exception("database is not reachable, exiting")
            sys.exit(1)
    log.info("database connection ok")


def check_chat(app) -> None:
    try:
        info = app.extensions["gateway"].describe()
    except (TelegramError, TimeoutError) as exc:
        log.warning("community chat %s is not reachable: %s", app.config["CHANNEL_ID"], exc)
        return
    log.info("bot @%s in %s chat %s (%s): %s",
             info["bot"], info["chat_type"], info["chat_id"], info["title"], info["bot_status"])


def serve_webhooks(app) -> threading.Thread:
    thread = threading.Thread(
        target=app.run,
        kwargs={"host": "0.0.0.0", "port": app.config["PORT"], "use_reloader": False, "threaded": True},
        name="webhooks",
        daemon=True,
    )
    thread.start()
    log.info("webhook server listening on port %s", app.config["PORT"])
    return thread


def main() -> None:
    logging.basicConfig(
        level=Config.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    app = create_app()
    check_database(app)
    check_chat(app)
    serve_webhooks(app)
    run_polling(app)


if __name__ == "__main__":
    main()
