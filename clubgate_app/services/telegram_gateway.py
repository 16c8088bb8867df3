# clubgate_app/services/telegram_gateway.py
# -*- coding: utf-8 -*-
"""
Synchronous access to the community chat for code that runs on Flask worker
threads and on the scheduler thread.

python-telegram-bot's ``Bot`` is async and bound to the loop it was
initialised on, so the gateway owns one private event loop running in a
daemon thread and submits every call to it with
``asyncio.run_coroutine_threadsafe``.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Optional

from telegram import Bot
from telegram.error import BadRequest

log = logging.getLogger(__name__)

MEMBER_STATUSES = ("administrator", "member", "restricted")
OWNER_STATUS = "creator"
BANNED_STATUS = "kicked"

# BadRequest descriptions that mean "no such member" rather than a failure
_NOT_A_MEMBER = ("user not found", "participant_id_invalid", "member not found")
# BadRequest descriptions that mean invite links don't exist for this chat
_NO_INVITE_LINKS = ("supergroup and channel chats only", "method is available only", "chat_type")


class InviteLinkUnsupported(Exception):
    """The community chat type has no invite-link capability."""


def _value(status) -> str:
    return getattr(status, "value", status)


class TelegramGateway:

    def __init__(self, token: str, chat_id, timeout: float = 30.0):
        self.token = token
        self.chat_id = chat_id
        self.timeout = timeout
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._bot: Optional[Bot] = None

    # ---------------- loop plumbing ----------------
    def _ensure_started(self) -> None:
        with self._lock:
            if self._loop is not None:
                return
            loop = asyncio.new_event_loop()
            threading.Thread(target=loop.run_forever, name="telegram-gateway", daemon=True).start()
            bot = Bot(self.token)
            asyncio.run_coroutine_threadsafe(bot.initialize(), loop).result(self.timeout)
            self._loop, self._bot = loop, bot

    def _run(self, factory):
        self._ensure_started()
        future = asyncio.run_coroutine_threadsafe(factory(self._bot), self._loop)
        return future.result(self.timeout)

    def close(self) -> None:
        with self._lock:
            if self._loop is None:
                return
            try:
                asyncio.run_coroutine_threadsafe(self._bot.shutdown(), self._loop).result(self.timeout)
            finally:
                self._loop.call_soon_threadsafe(self._loop.stop)
                self._loop, self._bot = None, None

    # ---------------- community chat ----------------
    def member_status(self, user_id: int) -> Optional[str]:
        """creator/administrator/member/restricted/left/kicked, or None when unknown to the chat."""
        try:
            member = self._run(lambda bot: bot.get_chat_member(self.chat_id, user_id))
        except BadRequest as exc:
            if any(s in str(exc).lower() for s in _NOT_A_MEMBER):
                return None
            raise
        status = _value(member.status)
        # restricted users may have left the chat already
        if status == "restricted" and not getattr(member, "is_member", True):
            return "left"
        return status

    def create_invite_link(self, member_limit: int = 1) -> str:
        try:
            link = self._run(lambda bot: bot.create_chat_invite_link(
                self.chat_id, member_limit=member_limit, creates_join_request=False))
        except BadRequest as exc:
            if any(s in str(exc).lower() for s in _NO_INVITE_LINKS):
                raise InviteLinkUnsupported(str(exc)) from exc
            raise
        return link.invite_link

    def unban(self, user_id: int) -> None:
        self._run(lambda bot: bot.unban_chat_member(self.chat_id, user_id, only_if_banned=True))

    def send_message(self, chat_id, text: str, reply_markup=None, parse_mode: Optional[str] = None) -> None:
        self._run(lambda bot: bot.send_message(
            chat_id=chat_id, text=text, reply_markup=reply_markup, parse_mode=parse_mode))

    def describe(self) -> dict:
        """Bot identity, chat info and the bot's own status in the chat (startup check)."""
        async def _describe(bot: Bot):
            me = await bot.get_me()
            chat = await bot.get_chat(self.chat_id)
            member = await bot.get_chat_member(self.chat_id, me.id)
            return {
                "bot": me.username,
                "chat_id": chat.id,
                "chat_type": _value(chat.type),
                "title": chat.title,
                "bot_status": _value(member.status),
            }
        return self._run(_describe)
