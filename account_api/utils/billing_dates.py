"""Calendar arithmetic for billing periods."""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from account_api.schemas.subscription import PlanType


def add_months(moment: datetime, months: int) -> datetime:
    """Shift ``moment`` by calendar months, clamping the day to the target month.

    Examples:
        >>> add_months(datetime(2026, 1, 31), 1)
        datetime.datetime(2026, 2, 28, 0, 0)
        >>> add_months(datetime(2024, 2, 29), 12)
        datetime.datetime(2025, 2, 28, 0, 0)
    """

    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def next_billing_date(plan_type: PlanType, now: datetime) -> datetime:
    """End of the period that starts at ``now`` for ``plan_type``.

    Free plans have no billing period, so ``now`` is returned unchanged.
    """

    if plan_type == PlanType.PRO_MONTHLY:
        return add_months(now, 1)
    if plan_type == PlanType.PRO_YEARLY:
        return add_months(now, 12)
    return now


def add_grace_period(moment: datetime, days: int = 3) -> datetime:
    return moment + timedelta(days=days)
