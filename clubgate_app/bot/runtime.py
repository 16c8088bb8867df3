# clubgate_app/bot/runtime.py
# -*- coding: utf-8 -*-
"""Bridges async bot handlers to the synchronous Flask-side services."""
from __future__ import annotations

import asyncio

FLASK_APP_KEY = "flask_app"


def flask_app(context):
    return context.application.bot_data[FLASK_APP_KEY]


def service(context, name: str):
    return flask_app(context).extensions[name]


def is_admin(context, user_id: int) -> bool:
    return user_id in (flask_app(context).config.get("ADMINS") or [])


async def run_sync(context, fn, *args, **kwargs):
    """Runs fn on a worker thread inside a fresh app context; the event loop never blocks on I/O."""
    app = flask_app(context)

    def call():
        with app.app_context():
            return fn(*args, **kwargs)

    return await asyncio.to_thread(call)
