from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from planner.models.reminder import RecurrenceEnum


def _shift(value: datetime, recurrence: RecurrenceEnum, count: int) -> datetime:
    """
    Move `value` by `count` recurrence periods.

    Months are added with `relativedelta`, which clamps the day to the last valid day of the target month.
    """
    if recurrence == RecurrenceEnum.DAILY:
        return value + timedelta(days=count)
    if recurrence == RecurrenceEnum.WEEKLY:
        return value + timedelta(weeks=count)
    if recurrence == RecurrenceEnum.MONTHLY:
        return value + relativedelta(months=count)
    raise ValueError(f"Reminder with recurrence {recurrence.value} does not repeat")


def advance(value: datetime, recurrence: RecurrenceEnum) -> datetime:
    """
    Get the occurrence following `value`.

    Raises `ValueError` for non-recurring reminders.
    """
    return _shift(value, recurrence, 1)


def next_occurrence(
    value: datetime,
    recurrence: RecurrenceEnum,
    now: datetime,
) -> datetime:
    """
    Get the first occurrence of the series started at `value` which is strictly after `now`.

    Occurrences are always computed from `value`, never from the previous occurrence, so a monthly reminder on the 31st comes back to the 31st after a short month. Missed occurrences in between are skipped.

    Raises `ValueError` for non-recurring reminders.
    """
    count = 1
    # Jump close to the target for long backlogs, the loop below corrects the estimate
    if recurrence == RecurrenceEnum.DAILY:
        count = max(1, (now - value).days)
    elif recurrence == RecurrenceEnum.WEEKLY:
        count = max(1, (now - value).days // 7)
    elif recurrence == RecurrenceEnum.MONTHLY:
        count = max(1, (now.year - value.year) * 12 + now.month - value.month - 1)

    occurrence = _shift(value, recurrence, count)
    while occurrence <= now:
        count += 1
        occurrence = _shift(value, recurrence, count)
    return occurrence
