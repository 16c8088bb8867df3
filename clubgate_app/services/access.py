# clubgate_app/services/access.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from telegram.error import TelegramError

from ..errors import AccessGrantFailure
from ..models.payment import (
    ACCESS_ALREADY_MEMBER,
    ACCESS_FAILED,
    ACCESS_GRANTED,
    ACCESS_GRANTED_NO_LINK,
    ACCESS_OWNER,
)
from .telegram_gateway import BANNED_STATUS, MEMBER_STATUSES, OWNER_STATUS, InviteLinkUnsupported

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessOutcome:
    kind: str
    invite_link: Optional[str] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind != ACCESS_FAILED

    @classmethod
    def already_member(cls):
        return cls(ACCESS_ALREADY_MEMBER)

    @classmethod
    def owner(cls):
        return cls(ACCESS_OWNER)

    @classmethod
    def granted(cls, invite_link: str):
        return cls(ACCESS_GRANTED, invite_link=invite_link)

    @classmethod
    def granted_no_link(cls):
        return cls(ACCESS_GRANTED_NO_LINK)

    @classmethod
    def failed(cls, reason: str):
        return cls(ACCESS_FAILED, reason=reason)


def _not_banned(exc: Exception) -> bool:
    text = str(exc).lower()
    return "not banned" in text or "user is not a member" in text or "can't remove chat owner" in text


class AccessGranter:
    """Idempotently lets a paying user into the community chat."""

    def __init__(self, gateway):
        self.gateway = gateway

    def _status(self, user_id: int) -> Optional[str]:
        try:
            return self.gateway.member_status(user_id)
        except TelegramError as exc:
            log.warning("membership lookup failed for %s: %s", user_id, exc)
            return None

    def is_member(self, user_id: int) -> bool:
        return self._status(user_id) in (OWNER_STATUS, *MEMBER_STATUSES)

    def grant(self, user_id: int) -> AccessOutcome:
        status = self._status(user_id)
        if status == OWNER_STATUS:
            return AccessOutcome.owner()
        if status in MEMBER_STATUSES:
            return AccessOutcome.already_member()
        try:
            link = self._invite_link(user_id)
            if status == BANNED_STATUS or link is None:
                self._restore(user_id, fatal=link is None)
        except AccessGrantFailure as exc:
            log.error("access for %s failed: %s", user_id, exc)
            return AccessOutcome.failed(str(exc))
        return AccessOutcome.granted(link) if link else AccessOutcome.granted_no_link()

    def _invite_link(self, user_id: int) -> Optional[str]:
        try:
            return self.gateway.create_invite_link(member_limit=1)
        except InviteLinkUnsupported as exc:
            log.info("no invite links for this chat, restoring membership directly: %s", exc)
            return None
        except TelegramError as exc:
            raise AccessGrantFailure(f"invite link: {exc}") from exc

    def _restore(self, user_id: int, fatal: bool) -> None:
        """Lifts a ban; without an invite link this is the only way back in."""
        try:
            self.gateway.unban(user_id)
        except TelegramError as exc:
            if _not_banned(exc):
                return
            log.warning("unban of %s failed: %s", user_id, exc)
            if fatal:
                raise AccessGrantFailure(f"restore membership: {exc}") from exc
