"""Due-status and rescheduling logic for reminders."""

import logging
import uuid
from dataclasses import replace
from datetime import date, datetime
from typing import Optional, Union

from dateutil.relativedelta import relativedelta

from .reminder import Reminder, REMINDER_TYPES
from .status import Status
from .vehicle import Vehicle

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime, str]


def parse_local_date(value: DateLike) -> date:
    """
    Parse a date as a local calendar date.

    "2024-01-01" is January 1st wherever the caller is; it is never read
    as UTC midnight. Datetimes and datetime strings are cut to their date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value.strip()[:10])


def normalize_date(value: Optional[DateLike], required: bool = False) -> Optional[str]:
    """
    Canonical YYYY-MM-DD form of a stored date field.

    Blank means unset. Raises ValueError for anything that is not a
    calendar date, or for a blank value when required.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValueError("Date is required")
        return None
    try:
        return parse_local_date(value).isoformat()
    except ValueError as e:
        raise ValueError(f"Invalid date '{value}': {e}") from e


def calc_due_miles(odometer: Optional[int], interval: Optional[int]) -> Optional[int]:
    """Calculate next due odometer: odometer + interval."""
    if interval is None or odometer is None:
        return None
    return odometer + interval


def calc_due_date(last_date: Optional[date], interval_months: Optional[int]) -> Optional[date]:
    """Calculate next due date: last + interval calendar months."""
    if interval_months is None or last_date is None:
        return None
    return last_date + relativedelta(months=int(interval_months))


def time_due(reminder: Reminder, now: DateLike) -> bool:
    """True when the reminder has a due date on or before today."""
    if not reminder.due_date:
        return False
    return parse_local_date(reminder.due_date) <= parse_local_date(now)


def mileage_due(reminder: Reminder, vehicle: Vehicle) -> bool:
    """True when the odometer has reached the due mileage. Unknown odometer is never due."""
    if reminder.due_mileage is None or vehicle.current_odometer is None:
        return False
    return vehicle.current_odometer >= reminder.due_mileage


def is_due(reminder: Reminder, vehicle: Vehicle, now: DateLike) -> bool:
    """
    Decide whether a reminder is due.

    - time: due date reached
    - mileage: due odometer reached
    - both: whichever comes first (either condition, never both required)
    """
    if not reminder.is_active:
        return False
    if reminder.type == "time":
        return time_due(reminder, now)
    if reminder.type == "mileage":
        return mileage_due(reminder, vehicle)
    if reminder.type == "both":
        return time_due(reminder, now) or mileage_due(reminder, vehicle)
    return False


def reminder_status(reminder: Reminder, vehicle: Vehicle, now: DateLike) -> Status:
    """Group a reminder into DUE, UPCOMING or INACTIVE."""
    if not reminder.is_active:
        return Status.INACTIVE
    if is_due(reminder, vehicle, now):
        return Status.DUE
    return Status.UPCOMING


def schedule_next(reminder: Reminder, vehicle: Vehicle, completion_date: DateLike) -> Reminder:
    """
    Return the reminder rescheduled after being marked complete.

    The date axis moves to completion + interval months. The mileage axis
    is anchored to the odometer at completion, not to the old due mileage,
    so driving less than expected does not pull the next service earlier.
    An axis without an interval is cleared.
    """
    completed = parse_local_date(completion_date)
    odometer = vehicle.current_odometer

    next_date = None
    if reminder.uses_time:
        due = calc_due_date(completed, reminder.interval_months)
        next_date = due.isoformat() if due else None

    next_miles = None
    if reminder.uses_mileage:
        next_miles = calc_due_miles(odometer, reminder.interval_miles)
        if odometer is None and reminder.interval_miles is not None:
            logger.warning(
                "Odometer unknown for vehicle %s; mileage axis of reminder %s not rescheduled",
                vehicle.id,
                reminder.id,
            )

    return replace(
        reminder,
        due_date=next_date,
        due_mileage=next_miles,
        last_completed=completed.isoformat(),
        last_completed_odometer=odometer,
    )


def initial_due_mileage(vehicle: Vehicle, offset: int) -> int:
    """Turn a relative "due in N units" into an absolute odometer threshold."""
    return (vehicle.current_odometer or 0) + offset


def new_reminder(
    vehicle: Vehicle,
    title: str,
    type: str = "time",
    due_date: Optional[DateLike] = None,
    due_in: Optional[int] = None,
    interval_months: Optional[int] = None,
    interval_miles: Optional[int] = None,
    reminder_id: Optional[str] = None,
) -> Reminder:
    """
    Build a reminder as entered by a user.

    ``due_in`` is relative to the vehicle's current odometer. Fields not
    used by ``type`` are dropped.
    """
    if type not in REMINDER_TYPES:
        raise ValueError(f"Unknown reminder type '{type}' (expected one of {', '.join(REMINDER_TYPES)})")

    uses_time = type != "mileage"
    uses_mileage = type != "time"
    return Reminder(
        id=reminder_id or str(uuid.uuid4()),
        vehicle_id=vehicle.id,
        title=title,
        type=type,
        due_date=normalize_date(due_date) if uses_time else None,
        due_mileage=initial_due_mileage(vehicle, due_in) if uses_mileage and due_in is not None else None,
        interval_months=interval_months if uses_time else None,
        interval_miles=interval_miles if uses_mileage else None,
        is_active=True,
    )
