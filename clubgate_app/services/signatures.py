# clubgate_app/services/signatures.py
# -*- coding: utf-8 -*-
"""
Inbound notification authenticity.

Two schemes are supported:

* Robokassa: MD5 over ``OutSum:InvId:Password2[:key=value...]`` where the
  custom parameters are sorted by key and joined by ``:``. Which custom
  parameters participate is configurable (``all`` or only the ones carrying
  the ``Shp_`` prefix); deployments disagree on this. Compared
  case-insensitively.
* Event signature (crypto webhook): hex HMAC-SHA256 of ``"{event}.{object_id}"``
  keyed with the shop secret. Compared byte for byte.

Every comparison goes through ``hmac.compare_digest``.
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Mapping, Optional

PARAMS_ALL = "all"
PARAMS_PREFIXED = "prefixed"
PARAM_MODES = (PARAMS_ALL, PARAMS_PREFIXED)

# never part of the signed parameter set
EXCLUDED_PARAMS = frozenset({"signaturevalue", "crc", "signature"})


def filter_custom_params(params: Optional[Mapping[str, object]], mode: str = PARAMS_ALL,
                         prefix: str = "Shp_") -> dict:
    if mode not in PARAM_MODES:
        raise ValueError(f"unknown signature parameter mode: {mode!r}")
    out = {}
    for key, value in (params or {}).items():
        if key.lower() in EXCLUDED_PARAMS:
            continue
        if mode == PARAMS_PREFIXED and not key.lower().startswith(prefix.lower()):
            continue
        out[key] = value
    return out


def md5_signature(parts, params: Optional[Mapping[str, object]] = None) -> str:
    base = ":".join(str(p) for p in parts)
    if params:
        base += ":" + ":".join(f"{key}={params[key]}" for key in sorted(params))
    return hashlib.md5(base.encode("utf-8")).hexdigest()


def equals_ignore_case(expected: str, declared: str) -> bool:
    return hmac.compare_digest(expected.lower().encode("utf-8"), (declared or "").lower().encode("utf-8"))


def equals_exact(expected: str, declared: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), (declared or "").encode("utf-8"))


class RobokassaSignature:
    def __init__(self, login: str, password1: str, password2: str,
                 params_mode: str = PARAMS_ALL, prefix: str = "Shp_"):
        if params_mode not in PARAM_MODES:
            raise ValueError(f"unknown signature parameter mode: {params_mode!r}")
        self.login = login
        self.password1 = password1
        self.password2 = password2
        self.params_mode = params_mode
        self.prefix = prefix

    def _params(self, params):
        return filter_custom_params(params, self.params_mode, self.prefix)

    def payment(self, out_sum: str, inv_id: str, params=None, receipt: Optional[str] = None) -> str:
        """Signature for the redirect URL (MerchantLogin:OutSum:InvId[:Receipt]:Password1)."""
        parts = [self.login, out_sum, inv_id]
        if receipt:
            parts.append(receipt)
        parts.append(self.password1)
        return md5_signature(parts, self._params(params))

    def result(self, out_sum: str, inv_id: str, params=None) -> str:
        """Signature the provider puts on a result notification."""
        return md5_signature([out_sum, inv_id, self.password2], self._params(params))

    def verify_result(self, out_sum: str, inv_id: str, declared: str, params=None) -> bool:
        if not out_sum or not inv_id or not declared:
            return False
        return equals_ignore_case(self.result(out_sum, inv_id, params), declared)

    def op_state(self, inv_id: str) -> str:
        return md5_signature([self.login, inv_id, self.password2])

    def recurring(self, out_sum: str, inv_id: str) -> str:
        return md5_signature([self.login, out_sum, inv_id, self.password1])


def event_signature(event: str, object_id: str, secret: str) -> str:
    message = f"{event}.{object_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_event_signature(event: str, object_id: str, declared: Optional[str], secret: str) -> bool:
    if not declared or not secret or not object_id:
        return False
    return equals_exact(event_signature(event, object_id, secret), declared)
