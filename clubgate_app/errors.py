# clubgate_app/errors.py
# -*- coding: utf-8 -*-
from __future__ import annotations


class ClubgateError(Exception):
    """Base class for every error the payment flow raises on purpose."""


class AuthenticationFailure(ClubgateError):
    """Inbound notification failed signature verification."""


class NotFound(ClubgateError):
    """Unknown payment, charge or subscription reference."""


class DuplicateKey(ClubgateError):
    """A record with the same primary key already exists."""


class InvalidTransition(ClubgateError):
    """Requested status change is not allowed from the current status."""

    def __init__(self, payment_id: str, current: str, wanted: str):
        super().__init__(f"{payment_id}: {current} -> {wanted} is not allowed")
        self.payment_id = payment_id
        self.current = current
        self.wanted = wanted


class ProviderError(ClubgateError):
    """Base for failures talking to a payment provider."""

    retryable = False

    def __init__(self, provider: str, message: str):
        super().__init__(f"[{provider}] {message}")
        self.provider = provider


class ProviderUnavailable(ProviderError):
    """Network error or 5xx. Safe to retry on the next poll or sweep."""

    retryable = True


class ProviderRejected(ProviderError):
    """4xx / invalid parameters. Terminal for this attempt."""


class AccessGrantFailure(ClubgateError):
    """Membership platform error after a successful payment."""


class AlreadyMember(ClubgateError):
    """User already has access; no payment is needed."""


class EmailRequired(ClubgateError):
    """Provider needs an email for the fiscal receipt before the charge can be created."""

    def __init__(self, payment_id: str):
        super().__init__(f"{payment_id}: email required")
        self.payment_id = payment_id
