"""ServiceEntry and Receipt classes for maintenance records."""

from dataclasses import dataclass, field
from typing import List, Optional

SERVICE_CATEGORIES = (
    "Oil Change",
    "Tires",
    "Brakes",
    "Engine",
    "Transmission",
    "Battery",
    "Filters",
    "Fluids",
    "Inspection",
    "Repair",
    "Other",
)


@dataclass
class Receipt:
    """A file attached to a service entry."""

    id: str
    name: str
    mime_type: str = ""
    storage_path: Optional[str] = None
    data_url: str = ""  # Loaded on demand


@dataclass
class ServiceEntry:
    """A record of maintenance performed on one vehicle."""

    id: str
    vehicle_id: str
    date: str
    category: str = "Other"
    service_type: str = ""
    odometer: Optional[int] = None  # None = unknown
    notes: str = ""
    cost: Optional[float] = None  # None = unknown
    vendor: str = ""
    is_diy: bool = False
    receipts: List[Receipt] = field(default_factory=list)
