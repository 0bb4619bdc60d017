"""Status enum for reminder urgency."""

from enum import Enum


class Status(Enum):
    """Reminder status categories. Lower value = more urgent."""

    DUE = 1
    UPCOMING = 2
    INACTIVE = 3  # Reminder switched off
