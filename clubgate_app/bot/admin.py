# clubgate_app/bot/admin.py
# -*- coding: utf-8 -*-
"""Admin panel: latest payments, statistics, user lookup, access re-grant."""
from __future__ import annotations

from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import ContextTypes

from ..decorators import admin_required, reply_on_error
from ..errors import NotFound
from ..models.conversation import AWAITING_ADMIN_QUERY
from ..models.payment import COMPLETED
from . import keyboards, texts
from .runtime import run_sync, service

RECENT_LIMIT = 10


async def _edit(update: Update, text: str, reply_markup=None) -> None:
    await update.callback_query.edit_message_text(text, parse_mode=ParseMode.HTML, reply_markup=reply_markup)


@reply_on_error
@admin_required
async def admin_panel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.callback_query.answer()
    await run_sync(context, service(context, "conversations").clear, update.effective_user.id)
    await _edit(update, texts.ADMIN_PANEL, keyboards.admin_panel())


@reply_on_error
@admin_required
async def admin_users(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.callback_query.answer()
    payments = await run_sync(context, service(context, "store").recent, RECENT_LIMIT)
    text = "\n".join(texts.admin_payment_line(p) for p in payments) or texts.ADMIN_USER_NOT_FOUND
    await _edit(update, text, keyboards.admin_back())


@reply_on_error
@admin_required
async def admin_stats(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.callback_query.answer()
    stats = await run_sync(context, service(context, "store").stats)
    await _edit(update, texts.admin_stats(stats), keyboards.admin_back())


@reply_on_error
@admin_required
async def admin_check(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.callback_query.answer()
    await run_sync(context, service(context, "conversations").set, update.effective_user.id, AWAITING_ADMIN_QUERY)
    await _edit(update, texts.ADMIN_ASK_USER, keyboards.admin_back())


@reply_on_error
@admin_required
async def admin_exit(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.callback_query.answer()
    await run_sync(context, service(context, "conversations").clear, update.effective_user.id)
    await _edit(update, texts.ADMIN_EXIT)


def _lookup(store, user_id: int):
    payment = store.latest_for_user(user_id)
    if payment is None:
        return None
    completed = store.latest_for_user(user_id, status=COMPLETED)
    return payment, store.get_subscription(user_id), completed is not None


@admin_required
async def lookup_user(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Answer to the "enter user id" prompt."""
    message = update.effective_message
    await run_sync(context, service(context, "conversations").clear, update.effective_user.id)
    try:
        user_id = int((message.text or "").strip())
    except ValueError:
        await message.reply_text(texts.ADMIN_USER_NOT_FOUND, reply_markup=keyboards.admin_back())
        return
    found = await run_sync(context, _lookup, service(context, "store"), user_id)
    if found is None:
        await message.reply_text(texts.ADMIN_USER_NOT_FOUND, reply_markup=keyboards.admin_back())
        return
    payment, sub, has_completed = found
    await message.reply_text(
        texts.admin_user_card(payment, sub),
        parse_mode=ParseMode.HTML,
        reply_markup=keyboards.admin_back(user_id if has_completed else None),
    )


@reply_on_error
@admin_required
async def admin_regrant(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    _, arg = keyboards.parse_callback(query.data)
    try:
        result = await run_sync(context, service(context, "engine").retry_access, int(arg))
    except (NotFound, TypeError, ValueError):
        await query.answer(texts.ADMIN_USER_NOT_FOUND, show_alert=True)
        return
    await query.answer()
    await _edit(update, texts.admin_regrant_result(int(arg), result.outcome.kind, result.outcome.reason),
                keyboards.admin_back())
