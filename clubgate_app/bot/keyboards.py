# clubgate_app/bot/keyboards.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from typing import Iterable, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from .texts import METHOD_LABELS

# callback_data prefixes
CHOOSE = "choose_payment"
CONFIRM = "confirm_pay"
CANCEL = "cancel_pay"
CHECK = "check_payment"
OFFER = "show_offer"
MYSUB = "mysub"
TOGGLE_RENEW = "toggle_renew"
BACK = "back_to_start"
ADMIN_PANEL = "admin_panel"
ADMIN_USERS = "admin_users"
ADMIN_CHECK = "admin_check"
ADMIN_STATS = "admin_stats"
ADMIN_EXIT = "admin_exit"
ADMIN_REGRANT = "admin_regrant"


def _support(support_url: Optional[str]):
    if support_url:
        return [[InlineKeyboardButton("💬 Техподдержка", url=support_url)]]
    return []


def start_menu(methods: Iterable[str], support_url: Optional[str] = None) -> InlineKeyboardMarkup:
    rows = [[InlineKeyboardButton(METHOD_LABELS.get(m, m), callback_data=f"{CHOOSE}:{m}")] for m in methods]
    rows.append([InlineKeyboardButton("📃 Оферта", callback_data=OFFER)])
    rows += _support(support_url)
    return InlineKeyboardMarkup(rows)


def member_menu(support_url: Optional[str] = None) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[InlineKeyboardButton("📌 Моя подписка", callback_data=MYSUB)]] + _support(support_url))


def confirm_menu(payment_id: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("✅ Подтвердить оплату", callback_data=f"{CONFIRM}:{payment_id}")],
        [InlineKeyboardButton("❌ Отменить", callback_data=f"{CANCEL}:{payment_id}")],
    ])


def pay_menu(payment_id: str, url: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("🌐 Перейти к оплате", url=url)],
        [InlineKeyboardButton("🔄 Проверить оплату", callback_data=f"{CHECK}:{payment_id}")],
        [InlineKeyboardButton("❌ Отменить", callback_data=f"{CANCEL}:{payment_id}")],
    ])


def check_menu(payment_id: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("🔄 Проверить оплату", callback_data=f"{CHECK}:{payment_id}")],
    ])


def subscription_menu(auto_renew: bool) -> InlineKeyboardMarkup:
    label = "⏸ Отключить автопродление" if auto_renew else "▶️ Включить автопродление"
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(label, callback_data=TOGGLE_RENEW)],
        [InlineKeyboardButton("⬅️ Назад", callback_data=BACK)],
    ])


def renew_menu() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[InlineKeyboardButton("💳 Оплатить подписку", callback_data=BACK)]])


def admin_entry() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[InlineKeyboardButton("🚀 Войти в админку", callback_data=ADMIN_PANEL)]])


def admin_panel() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("👥 Последние платежи", callback_data=ADMIN_USERS)],
        [InlineKeyboardButton("🔍 Проверить пользователя", callback_data=ADMIN_CHECK)],
        [InlineKeyboardButton("📊 Статистика", callback_data=ADMIN_STATS)],
        [InlineKeyboardButton("⬅️ Выйти", callback_data=ADMIN_EXIT)],
    ])


def admin_back(regrant_user: Optional[int] = None) -> InlineKeyboardMarkup:
    rows = []
    if regrant_user is not None:
        rows.append([InlineKeyboardButton("🔑 Выдать доступ повторно", callback_data=f"{ADMIN_REGRANT}:{regrant_user}")])
    rows.append([InlineKeyboardButton("⬅️ Назад в админку", callback_data=ADMIN_PANEL)])
    return InlineKeyboardMarkup(rows)


def parse_callback(data: str) -> tuple[str, Optional[str]]:
    """'confirm_pay:abc_1_42' -> ('confirm_pay', 'abc_1_42')."""
    action, _, arg = (data or "").partition(":")
    return action, (arg or None)
