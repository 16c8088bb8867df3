# clubgate_app/services/notifications.py
# -*- coding: utf-8 -*-
"""Outbound messages to users and admins. Delivery failures are logged, never raised."""
from __future__ import annotations

import logging
from html import escape
from typing import Iterable, Optional

from telegram.error import TelegramError

from ..bot import keyboards, texts

log = logging.getLogger(__name__)


class Notifier:

    def __init__(self, gateway, admin_ids: Iterable[int] = (), support_url: Optional[str] = None):
        self.gateway = gateway
        self.admin_ids = list(admin_ids)
        self.support_url = support_url

    def _send(self, chat_id, text: str, reply_markup=None) -> bool:
        try:
            self.gateway.send_message(chat_id, text, reply_markup=reply_markup, parse_mode="HTML")
            return True
        except TelegramError as exc:
            log.warning("message to %s not delivered: %s", chat_id, exc)
            return False

    def payment_completed(self, user_id: int, outcome) -> bool:
        markup = None if outcome.ok else keyboards.member_menu(self.support_url)
        return self._send(user_id, texts.access_message(outcome.kind, outcome.invite_link), markup)

    def payment_expired(self, user_id: int) -> bool:
        return self._send(user_id, texts.PAYMENT_EXPIRED)

    def renewal_failed(self, user_id: int) -> bool:
        return self._send(user_id, texts.RENEWAL_FAILED, keyboards.renew_menu())

    def admin_alert(self, text: str) -> int:
        """Sends to every configured admin; returns how many got it."""
        delivered = 0
        for admin_id in self.admin_ids:
            if self._send(admin_id, f"🔔 {escape(text)}"):
                delivered += 1
        return delivered
