"""
Vehicle maintenance record keeping.

This package provides:
- Vehicle, ServiceEntry, Receipt, Reminder, Profile: the records
- Status: reminder urgency (DUE, UPCOMING, INACTIVE)
- is_due / schedule_next: reminder due-status and rescheduling
- Store: in-memory collections reconciled against a Backend
- LocalBackend: the local-only backend (keyed YAML files)
- import/export: CSV, PDF report, JSON backup
"""

from .status import Status
from .vehicle import Vehicle
from .service_entry import Receipt, ServiceEntry, SERVICE_CATEGORIES
from .reminder import Reminder
from .profile import Profile
from .calculations import (
    calc_due_date,
    calc_due_miles,
    initial_due_mileage,
    is_due,
    new_reminder,
    normalize_date,
    parse_local_date,
    reminder_status,
    schedule_next,
)
from .backends import Backend, ChangeEvent, LocalBackend
from .store import Store
from .config import Config
from .context import AppContext
from .errors import (
    BackendError,
    CarlogError,
    EmailDeliveryError,
    ImportValidationError,
    NotAuthenticatedError,
    NothingToExportError,
    ReceiptTooLargeError,
    RecordNotFoundError,
    SignatureVerificationError,
)

__all__ = [
    "Status",
    "Vehicle",
    "Receipt",
    "ServiceEntry",
    "SERVICE_CATEGORIES",
    "Reminder",
    "Profile",
    "calc_due_date",
    "calc_due_miles",
    "initial_due_mileage",
    "is_due",
    "new_reminder",
    "normalize_date",
    "parse_local_date",
    "reminder_status",
    "schedule_next",
    "Backend",
    "ChangeEvent",
    "LocalBackend",
    "Store",
    "Config",
    "AppContext",
    "BackendError",
    "CarlogError",
    "EmailDeliveryError",
    "ImportValidationError",
    "NotAuthenticatedError",
    "NothingToExportError",
    "ReceiptTooLargeError",
    "RecordNotFoundError",
    "SignatureVerificationError",
]
