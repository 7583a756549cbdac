"""Scheduled pay date for commission submissions.

Pay weeks run Sunday through Saturday in the pay timezone. Anything
submitted before the week's cutoff (Tuesday 3 PM MST by default) is paid
that week's Friday; anything later rolls to the following Friday.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

from commission_engine.config import PayDateRules


def _days_from_sunday(weekday: int) -> int:
    """Convert a Monday-based weekday to an offset from Sunday."""
    return (weekday + 1) % 7


def calculate_scheduled_pay_date(moment: datetime, rules: PayDateRules | None = None) -> date:
    """Return the Friday on which a submission made at ``moment`` is paid.

    Naive datetimes are treated as UTC.
    """
    rules = rules or PayDateRules()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)

    pay_tz = timezone(timedelta(hours=rules.utc_offset_hours))
    local = moment.astimezone(pay_tz)

    week_start = local.date() - timedelta(days=_days_from_sunday(local.weekday()))
    cutoff = datetime.combine(
        week_start + timedelta(days=_days_from_sunday(rules.cutoff_weekday)),
        time(hour=rules.cutoff_hour),
        tzinfo=pay_tz,
    )
    pay_date = week_start + timedelta(days=_days_from_sunday(rules.pay_weekday))

    if local >= cutoff:
        pay_date += timedelta(days=7)
    return pay_date


def format_pay_date(value: date) -> str:
    """Long form, e.g. 'Friday, February 27, 2026'."""
    return f"{value.strftime('%A, %B')} {value.day}, {value.year}"
