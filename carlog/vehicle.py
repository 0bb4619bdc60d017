"""Vehicle dataclass - the aggregate root for services and reminders."""

from dataclasses import dataclass
from typing import Optional

ODOMETER_UNITS = ("miles", "km")


@dataclass
class Vehicle:
    """Vehicle identification and odometer state."""

    id: str
    make: str
    model: str
    year: int
    vin: Optional[str] = None
    odometer_unit: str = "miles"
    current_odometer: Optional[int] = None  # None = unknown
    is_archived: bool = False

    @property
    def name(self) -> str:
        """Human-readable vehicle name."""
        return f"{self.year} {self.make} {self.model}"

    @property
    def odometer_known(self) -> bool:
        return self.current_odometer is not None
