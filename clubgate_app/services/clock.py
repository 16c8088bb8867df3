# clubgate_app/services/clock.py
from __future__ import annotations
from datetime import datetime, timezone

from dateutil.relativedelta import relativedelta


def utcnow() -> datetime:
    """Naive UTC, same convention as the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def one_month_from(moment: datetime) -> datetime:
    # Jan 31 -> Feb 28/29, never spills into March
    return moment + relativedelta(months=1)
