"""Reminder class for time and mileage based maintenance reminders."""

from dataclasses import dataclass
from typing import Optional

REMINDER_TYPES = ("time", "mileage", "both")


@dataclass
class Reminder:
    """
    A maintenance reminder for one vehicle.

    type "time" uses only the date fields, "mileage" only the odometer
    fields. "both" is due when either one is met (whichever comes first).
    """

    id: str
    vehicle_id: str
    title: str
    type: str = "time"
    due_date: Optional[str] = None
    due_mileage: Optional[int] = None
    interval_months: Optional[int] = None
    interval_miles: Optional[int] = None
    last_completed: Optional[str] = None
    last_completed_odometer: Optional[int] = None
    is_active: bool = True

    @property
    def uses_time(self) -> bool:
        return self.type in ("time", "both")

    @property
    def uses_mileage(self) -> bool:
        return self.type in ("mileage", "both")
