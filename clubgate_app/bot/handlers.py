# clubgate_app/bot/handlers.py
# -*- coding: utf-8 -*-
"""User-facing bot flow: /start, method choice, confirm, check, cancel, subscription info."""
from __future__ import annotations

import logging
import re

from telegram import Update
from telegram.constants import ParseMode
from telegram.error import TelegramError
from telegram.ext import ContextTypes

from ..decorators import reply_on_error
from ..errors import AlreadyMember, EmailRequired, InvalidTransition, NotFound, ProviderError
from ..models.conversation import AWAITING_ADMIN_QUERY, AWAITING_EMAIL
from ..models.payment import PENDING
from ..services.clock import utcnow
from ..services.reconciliation import (
    ACTION_COMPLETED,
    ACTION_DUPLICATE,
    ACTION_EXPIRED,
    ACTION_FAILED,
    ACTION_IGNORED,
    ACTION_UNAVAILABLE,
    ACTION_WAITING,
)
from . import keyboards, texts
from .admin import lookup_user
from .runtime import flask_app, is_admin, run_sync, service

log = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_RE.match((value or "").strip()))


async def _edit(update: Update, text: str, reply_markup=None) -> None:
    await update.callback_query.edit_message_text(text, parse_mode=ParseMode.HTML, reply_markup=reply_markup)


async def _start_screen(update: Update, context: ContextTypes.DEFAULT_TYPE, edit: bool = False) -> None:
    user_id = update.effective_user.id
    app = flask_app(context)
    support_url = app.config.get("SUPPORT_URL")
    if await run_sync(context, service(context, "granter").is_member, user_id):
        text, markup = texts.ALREADY_MEMBER, keyboards.member_menu(support_url)
    else:
        text = texts.welcome(app.config["SUBSCRIPTION_PRICE"], app.config["SUBSCRIPTION_CURRENCY"])
        markup = keyboards.start_menu(service(context, "providers").methods(), support_url)
    if edit:
        await _edit(update, text, markup)
    else:
        await update.effective_message.reply_text(text, parse_mode=ParseMode.HTML, reply_markup=markup)


@reply_on_error
async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user_id = update.effective_user.id
    await run_sync(context, service(context, "conversations").clear, user_id)
    if is_admin(context, user_id):
        await update.effective_message.reply_text(texts.ADMIN_WELCOME, reply_markup=keyboards.admin_entry())
    await _start_screen(update, context)


@reply_on_error
async def back_to_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.callback_query.answer()
    await _start_screen(update, context, edit=True)


@reply_on_error
async def choose_payment(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    _, method = keyboards.parse_callback(query.data)
    user = update.effective_user
    engine = service(context, "engine")
    try:
        payment = await run_sync(context, engine.start_payment, user.id, method,
                                 username=user.username, first_name=user.first_name, last_name=user.last_name)
    except AlreadyMember:
        await query.answer()
        await _edit(update, texts.ALREADY_MEMBER, keyboards.member_menu(flask_app(context).config.get("SUPPORT_URL")))
        return
    await query.answer()
    cfg = flask_app(context).config
    await _edit(update, texts.payment_summary(method, cfg["SUBSCRIPTION_PRICE"], cfg["SUBSCRIPTION_CURRENCY"]),
                keyboards.confirm_menu(payment.id))


async def _send_payment_link(update: Update, payment, edit: bool = True) -> None:
    markup = keyboards.pay_menu(payment.id, payment.payment_url)
    if edit:
        await _edit(update, texts.PAYMENT_LINK, markup)
    else:
        await update.effective_message.reply_text(texts.PAYMENT_LINK, parse_mode=ParseMode.HTML, reply_markup=markup)


@reply_on_error
async def confirm_payment(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    _, payment_id = keyboards.parse_callback(query.data)
    user_id = update.effective_user.id

    if await run_sync(context, service(context, "granter").is_member, user_id):
        await query.answer()
        await _edit(update, texts.ALREADY_MEMBER)
        return

    await query.answer()
    await _edit(update, texts.CREATING_PAYMENT)
    try:
        payment = await run_sync(context, service(context, "engine").confirm_payment, payment_id, user_id)
    except EmailRequired:
        await run_sync(context, service(context, "conversations").set, user_id, AWAITING_EMAIL,
                       {"payment_id": payment_id})
        await _edit(update, texts.ASK_EMAIL)
        return
    except (NotFound, InvalidTransition):
        await _edit(update, texts.PAYMENT_NOT_FOUND)
        return
    except ProviderError:
        await _edit(update, texts.PAYMENT_CREATE_FAILED)
        return
    await _send_payment_link(update, payment)


@reply_on_error
async def cancel_payment(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    _, payment_id = keyboards.parse_callback(query.data)
    try:
        await run_sync(context, service(context, "engine").cancel_payment, payment_id, update.effective_user.id)
    except (NotFound, InvalidTransition):
        await query.answer(texts.PAYMENT_NOT_FOUND, show_alert=True)
        return
    await query.answer()
    await _edit(update, texts.PAYMENT_CANCELLED)


@reply_on_error
async def check_payment(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    _, payment_id = keyboards.parse_callback(query.data)
    try:
        result = await run_sync(context, service(context, "engine").check_payment, payment_id,
                                update.effective_user.id)
    except NotFound:
        await query.answer(texts.PAYMENT_NOT_FOUND, show_alert=True)
        return
    await query.answer()

    if result.action in (ACTION_COMPLETED, ACTION_DUPLICATE):
        # the access message itself goes out through the notifier
        await _edit(update, texts.PAYMENT_CONFIRMED)
    elif result.action == ACTION_WAITING:
        await _edit(update, texts.PAYMENT_PENDING, keyboards.pay_menu(payment_id, result.payment.payment_url))
    elif result.action == ACTION_UNAVAILABLE:
        await _edit(update, texts.PROVIDER_UNAVAILABLE, keyboards.check_menu(payment_id))
    elif result.action == ACTION_EXPIRED:
        await _edit(update, texts.PAYMENT_EXPIRED)
    elif result.action == ACTION_FAILED:
        await _edit(update, texts.PAYMENT_FAILED)
    elif result.action == ACTION_IGNORED and result.payment.status == PENDING:
        # charge not created yet; send the user back to the confirm step
        await _edit(update, texts.PAYMENT_NOT_CONFIRMED, keyboards.confirm_menu(payment_id))
    else:
        await _edit(update, texts.PAYMENT_NOT_FOUND)


@reply_on_error
async def show_offer(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.callback_query.answer()
    path = flask_app(context).config.get("OFFER_PATH")
    try:
        with open(path, "rb") as fh:
            await update.effective_message.reply_document(fh)
    except (OSError, TypeError, TelegramError) as exc:
        log.error("offer document %s not sent: %s", path, exc)
        await update.effective_message.reply_text(texts.OFFER_UNAVAILABLE)


@reply_on_error
async def my_subscription(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.callback_query.answer()
    sub = await run_sync(context, service(context, "engine").subscription_for, update.effective_user.id)
    if sub is None:
        await _edit(update, texts.NO_SUBSCRIPTION)
        return
    await _edit(update, texts.subscription_info(sub, utcnow()), keyboards.subscription_menu(sub.auto_renew))


@reply_on_error
async def toggle_renew(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        sub = await run_sync(context, service(context, "engine").toggle_auto_renew, update.effective_user.id)
    except NotFound:
        await update.callback_query.answer(texts.NO_SUBSCRIPTION, show_alert=True)
        return
    await update.callback_query.answer()
    await _edit(update, texts.subscription_info(sub, utcnow()), keyboards.subscription_menu(sub.auto_renew))


@reply_on_error
async def on_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Free text is only meaningful while a conversation waits for input."""
    user_id = update.effective_user.id
    conversations = service(context, "conversations")
    conv = await run_sync(context, conversations.get, user_id)
    if conv.expired:
        await update.effective_message.reply_text(texts.CONVERSATION_EXPIRED)
        return
    if conv.state == AWAITING_EMAIL:
        await _receive_email(update, context, conv.payload.get("payment_id"))
    elif conv.state == AWAITING_ADMIN_QUERY and is_admin(context, user_id):
        await lookup_user(update, context)


async def _receive_email(update: Update, context: ContextTypes.DEFAULT_TYPE, payment_id: str) -> None:
    user_id = update.effective_user.id
    email = (update.effective_message.text or "").strip()
    if not is_valid_email(email):
        await update.effective_message.reply_text(texts.BAD_EMAIL)
        return
    await run_sync(context, service(context, "conversations").clear, user_id)
    try:
        payment = await run_sync(context, service(context, "engine").confirm_payment, payment_id, user_id, email)
    except (NotFound, InvalidTransition):
        await update.effective_message.reply_text(texts.PAYMENT_NOT_FOUND)
        return
    except ProviderError:
        await update.effective_message.reply_text(texts.PAYMENT_CREATE_FAILED, parse_mode=ParseMode.HTML)
        return
    await _send_payment_link(update, payment, edit=False)
