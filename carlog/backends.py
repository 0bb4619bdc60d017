"""
Backend collaborators for carlog.

A Backend is the source of truth the store reconciles against: CRUD per
record kind scoped to the signed-in user, a change feed per table, object
storage for receipt files and the profile table used by billing.

LocalBackend is the local-only deployment mode. It keeps each collection
under a fixed key in a KeyValueStore directory and delivers change events
to subscribers in-process.
"""

import logging
import re
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from werkzeug.utils import secure_filename

from .errors import BackendError, NotAuthenticatedError, RecordNotFoundError
from .loader import (
    KeyValueStore,
    profile_from_dict,
    profile_to_dict,
    reminder_from_dict,
    reminder_to_dict,
    service_from_dict,
    service_to_dict,
    vehicle_from_dict,
    vehicle_to_dict,
)
from .profile import Profile
from .reminder import Reminder
from .service_entry import Receipt, ServiceEntry
from .vehicle import Vehicle

logger = logging.getLogger(__name__)

TABLES = ("vehicles", "services", "reminders")

STORAGE_KEYS = {
    "vehicles": "csb_vehicles",
    "services": "csb_services",
    "reminders": "csb_reminders",
}
SELECTED_VEHICLE_KEY = "lastSelectedVehicleId"
PROFILES_KEY = "csb_profiles"

RECEIPT_URL_EXPIRY = 3600  # seconds
USER_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


@dataclass
class ChangeEvent:
    """A row-level change delivered on a table's change feed."""

    table: str
    event: str  # INSERT, UPDATE or DELETE
    record_id: str


ChangeCallback = Callable[[ChangeEvent], None]


def _checked_user_id(user_id: Optional[str]) -> str:
    """Reject user ids that could not safely name a storage directory."""
    if not user_id or not USER_ID_PATTERN.fullmatch(user_id):
        raise NotAuthenticatedError(f"Invalid user id '{user_id}'")
    return user_id


class Subscription:
    """Handle returned by Backend.subscribe; call unsubscribe() to stop events."""

    def __init__(self, backend: "Backend", table: str, callback: ChangeCallback):
        self._backend = backend
        self.table = table
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._backend._remove_subscription(self)
            self.active = False


class Backend(ABC):
    """Contract every persistence collaborator implements."""

    def __init__(self, user_id: Optional[str] = None):
        self.user_id = _checked_user_id(user_id) if user_id else None
        self._subscriptions: List[Subscription] = []

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def sign_in(self, user_id: str) -> None:
        self.user_id = _checked_user_id(user_id)

    def sign_out(self) -> None:
        self.user_id = None

    def require_user(self) -> str:
        """Return the signed-in user id or raise NotAuthenticatedError."""
        if not self.user_id:
            raise NotAuthenticatedError()
        return _checked_user_id(self.user_id)

    # ------------------------------------------------------------------
    # Change feed
    # ------------------------------------------------------------------

    def subscribe(self, table: str, callback: ChangeCallback) -> Subscription:
        """Deliver every INSERT/UPDATE/DELETE on table to callback."""
        if table not in TABLES:
            raise ValueError(f"Unknown table '{table}'")
        sub = Subscription(self, table, callback)
        self._subscriptions.append(sub)
        return sub

    def _remove_subscription(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    def _notify(self, table: str, event: str, record_id: str) -> None:
        change = ChangeEvent(table, event, record_id)
        for sub in list(self._subscriptions):
            if sub.table == table:
                sub.callback(change)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_vehicles(self) -> List[Vehicle]: ...

    @abstractmethod
    async def create_vehicle(self, vehicle: Vehicle) -> Vehicle: ...

    @abstractmethod
    async def update_vehicle(self, vehicle_id: str, **changes: Any) -> Vehicle: ...

    @abstractmethod
    async def delete_vehicle(self, vehicle_id: str) -> None: ...

    @abstractmethod
    async def list_services(self) -> List[ServiceEntry]: ...

    @abstractmethod
    async def create_service(self, service: ServiceEntry) -> ServiceEntry: ...

    @abstractmethod
    async def update_service(self, service_id: str, **changes: Any) -> ServiceEntry: ...

    @abstractmethod
    async def delete_service(self, service_id: str) -> None: ...

    @abstractmethod
    async def list_reminders(self) -> List[Reminder]: ...

    @abstractmethod
    async def create_reminder(self, reminder: Reminder) -> Reminder: ...

    @abstractmethod
    async def update_reminder(self, reminder_id: str, **changes: Any) -> Reminder: ...

    @abstractmethod
    async def delete_reminder(self, reminder_id: str) -> None: ...

    # ------------------------------------------------------------------
    # Receipt storage
    # ------------------------------------------------------------------

    @abstractmethod
    async def upload_receipt(
        self, service_id: str, name: str, data: bytes, mime_type: str
    ) -> Receipt: ...

    @abstractmethod
    async def delete_receipts(self, storage_paths: List[str]) -> None: ...

    @abstractmethod
    async def receipt_url(self, storage_path: str, expires_in: int = RECEIPT_URL_EXPIRY) -> str: ...

    # ------------------------------------------------------------------
    # Preferences and profiles
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_preference(self, key: str) -> Optional[str]: ...

    @abstractmethod
    async def set_preference(self, key: str, value: Optional[str]) -> None: ...

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[Profile]: ...

    @abstractmethod
    async def update_profile(self, user_id: str, **changes: Any) -> Profile: ...

    @abstractmethod
    async def find_profile_by_customer(self, customer_id: str) -> Optional[Profile]: ...


def _apply_changes(record, changes: Dict[str, Any], kind: str):
    """Return a copy of record with changes applied; ids are never changed."""
    allowed = {f.name for f in fields(record)} - {"id"}
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"Unknown {kind} field(s): {', '.join(sorted(unknown))}")
    return replace(record, **changes)


class LocalBackend(Backend):
    """
    Backend over a local directory.

    Layout:
      <root>/<user_id>/csb_vehicles.yaml      vehicles, newest first
      <root>/<user_id>/csb_services.yaml      services, newest date first
      <root>/<user_id>/csb_reminders.yaml     reminders, newest first
      <root>/<user_id>/lastSelectedVehicleId.yaml
      <root>/csb_profiles.yaml                profiles for all users
      <root>/receipts/<user>/<service>/<ts>_<name>
    """

    def __init__(
        self,
        root: Union[str, Path],
        user_id: Optional[str] = None,
        secret_key: str = "dev-secret-key-change-in-prod",
        base_url: str = "",
    ):
        super().__init__(user_id)
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self._shared = KeyValueStore(self.root)
        self._signer = URLSafeTimedSerializer(secret_key, salt="carlog-receipt")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _user_store(self) -> KeyValueStore:
        return KeyValueStore(self.root / self.require_user())

    def _load(self, table: str) -> List[Dict[str, Any]]:
        return self._user_store().get(STORAGE_KEYS[table], [])

    def _save(self, table: str, rows: List[Dict[str, Any]]) -> None:
        self._user_store().set(STORAGE_KEYS[table], rows)

    def _receipt_root(self) -> Path:
        return self.root / "receipts"

    def _find(self, rows: List[Dict[str, Any]], record_id: str, kind: str) -> int:
        for index, row in enumerate(rows):
            if row["id"] == record_id:
                return index
        raise RecordNotFoundError(kind, record_id)

    # ------------------------------------------------------------------
    # Vehicles
    # ------------------------------------------------------------------

    async def list_vehicles(self) -> List[Vehicle]:
        return [vehicle_from_dict(row) for row in self._load("vehicles")]

    async def create_vehicle(self, vehicle: Vehicle) -> Vehicle:
        rows = self._load("vehicles")
        created = replace(vehicle, id=str(uuid.uuid4()))
        rows.insert(0, vehicle_to_dict(created))
        self._save("vehicles", rows)
        logger.info("Vehicle created %s (%s)", created.id[:8], created.name)
        self._notify("vehicles", "INSERT", created.id)
        return created

    async def update_vehicle(self, vehicle_id: str, **changes: Any) -> Vehicle:
        rows = self._load("vehicles")
        index = self._find(rows, vehicle_id, "Vehicle")
        updated = _apply_changes(vehicle_from_dict(rows[index]), changes, "vehicle")
        rows[index] = vehicle_to_dict(updated)
        self._save("vehicles", rows)
        self._notify("vehicles", "UPDATE", vehicle_id)
        return updated

    async def delete_vehicle(self, vehicle_id: str) -> None:
        """Delete a vehicle and cascade to its services, receipts and reminders."""
        rows = self._load("vehicles")
        index = self._find(rows, vehicle_id, "Vehicle")
        del rows[index]

        services = self._load("services")
        doomed = [s for s in services if s["vehicleId"] == vehicle_id]
        reminders = self._load("reminders")
        kept_reminders = [r for r in reminders if r["vehicleId"] != vehicle_id]

        self._save("vehicles", rows)
        self._save("services", [s for s in services if s["vehicleId"] != vehicle_id])
        self._save("reminders", kept_reminders)
        await self._remove_receipt_files(
            [r["storagePath"] for s in doomed for r in s.get("receipts") or [] if r.get("storagePath")],
            f"vehicle {vehicle_id[:8]}",
        )
        logger.info(
            "Vehicle deleted %s with %d service(s) and %d reminder(s)",
            vehicle_id[:8],
            len(doomed),
            len(reminders) - len(kept_reminders),
        )
        self._notify("vehicles", "DELETE", vehicle_id)

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    async def list_services(self) -> List[ServiceEntry]:
        services = [service_from_dict(row) for row in self._load("services")]
        return sorted(services, key=lambda s: s.date, reverse=True)

    async def create_service(self, service: ServiceEntry) -> ServiceEntry:
        self._find(self._load("vehicles"), service.vehicle_id, "Vehicle")
        rows = self._load("services")
        created = replace(service, id=str(uuid.uuid4()), receipts=[])
        rows.insert(0, service_to_dict(created))
        self._save("services", rows)
        self._notify("services", "INSERT", created.id)
        return created

    async def update_service(self, service_id: str, **changes: Any) -> ServiceEntry:
        rows = self._load("services")
        index = self._find(rows, service_id, "Service")
        updated = _apply_changes(service_from_dict(rows[index]), changes, "service")
        rows[index] = service_to_dict(updated)
        self._save("services", rows)
        self._notify("services", "UPDATE", service_id)
        return updated

    async def delete_service(self, service_id: str) -> None:
        rows = self._load("services")
        index = self._find(rows, service_id, "Service")
        paths = [r["storagePath"] for r in rows[index].get("receipts") or [] if r.get("storagePath")]
        del rows[index]
        self._save("services", rows)
        await self._remove_receipt_files(paths, f"service {service_id[:8]}")
        self._notify("services", "DELETE", service_id)

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    async def list_reminders(self) -> List[Reminder]:
        return [reminder_from_dict(row) for row in self._load("reminders")]

    async def create_reminder(self, reminder: Reminder) -> Reminder:
        self._find(self._load("vehicles"), reminder.vehicle_id, "Vehicle")
        rows = self._load("reminders")
        created = replace(reminder, id=str(uuid.uuid4()))
        rows.insert(0, reminder_to_dict(created))
        self._save("reminders", rows)
        self._notify("reminders", "INSERT", created.id)
        return created

    async def update_reminder(self, reminder_id: str, **changes: Any) -> Reminder:
        rows = self._load("reminders")
        index = self._find(rows, reminder_id, "Reminder")
        updated = _apply_changes(reminder_from_dict(rows[index]), changes, "reminder")
        rows[index] = reminder_to_dict(updated)
        self._save("reminders", rows)
        self._notify("reminders", "UPDATE", reminder_id)
        return updated

    async def delete_reminder(self, reminder_id: str) -> None:
        rows = self._load("reminders")
        index = self._find(rows, reminder_id, "Reminder")
        del rows[index]
        self._save("reminders", rows)
        self._notify("reminders", "DELETE", reminder_id)

    # ------------------------------------------------------------------
    # Receipts
    # ------------------------------------------------------------------

    def _receipt_file(self, storage_path: str) -> Path:
        """Absolute path of a stored receipt; refuses paths outside the receipt root."""
        root = self._receipt_root().resolve()
        full = (root / storage_path).resolve()
        if root not in full.parents:
            raise BackendError(f"Receipt path outside storage: {storage_path}")
        return full

    async def upload_receipt(
        self, service_id: str, name: str, data: bytes, mime_type: str
    ) -> Receipt:
        """Store a receipt file and attach it to the service."""
        user_id = self.require_user()
        rows = self._load("services")
        index = self._find(rows, service_id, "Service")

        filename = secure_filename(name) or "receipt"
        storage_path = f"{user_id}/{service_id}/{int(time.time() * 1000)}_{filename}"
        full = self._receipt_file(storage_path)
        try:
            full.parent.mkdir(parents=True, exist_ok=True)
            full.write_bytes(data)
        except OSError as e:
            raise BackendError(f"Failed to upload receipt {name}: {e}") from e

        receipt = Receipt(
            id=str(uuid.uuid4()), name=name, mime_type=mime_type, storage_path=storage_path
        )
        service = service_from_dict(rows[index])
        service.receipts.append(receipt)
        rows[index] = service_to_dict(service)
        self._save("services", rows)
        self._notify("services", "UPDATE", service_id)
        return receipt

    async def delete_receipts(self, storage_paths: List[str]) -> None:
        for path in storage_paths:
            full = self._receipt_file(path)
            if full.exists():
                full.unlink()

    async def _remove_receipt_files(self, storage_paths: List[str], owner: str) -> None:
        """Receipt cleanup after the rows are gone; failures are logged, rows stay deleted."""
        try:
            await self.delete_receipts(storage_paths)
        except (OSError, BackendError) as e:
            logger.error("Failed to delete receipt files for %s: %s", owner, e)

    async def receipt_url(self, storage_path: str, expires_in: int = RECEIPT_URL_EXPIRY) -> str:
        """Signed, time-limited URL for a stored receipt."""
        self.require_user()
        token = self._signer.dumps({"path": storage_path, "ttl": expires_in})
        return f"{self.base_url}/receipts/{token}"

    def open_receipt(self, token: str) -> Path:
        """
        Resolve a signed receipt token to the stored file.

        Raises BackendError when the token is forged, expired or the file
        is gone.
        """
        try:
            payload = self._signer.loads(token)
            self._signer.loads(token, max_age=payload.get("ttl", RECEIPT_URL_EXPIRY))
        except SignatureExpired as e:
            raise BackendError("Receipt link expired") from e
        except BadSignature as e:
            raise BackendError("Invalid receipt link") from e

        full = self._receipt_file(payload["path"])
        if not full.exists():
            raise BackendError("Receipt not found")
        return full

    # ------------------------------------------------------------------
    # Preferences and profiles
    # ------------------------------------------------------------------

    async def get_preference(self, key: str) -> Optional[str]:
        return self._user_store().get(key)

    async def set_preference(self, key: str, value: Optional[str]) -> None:
        if value is None:
            self._user_store().remove(key)
        else:
            self._user_store().set(key, value)

    def _profiles(self) -> List[Dict[str, Any]]:
        return self._shared.get(PROFILES_KEY, [])

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        for row in self._profiles():
            if row["id"] == user_id:
                return profile_from_dict(row)
        return None

    async def update_profile(self, user_id: str, **changes: Any) -> Profile:
        """Update a profile, creating it on first write."""
        rows = self._profiles()
        for index, row in enumerate(rows):
            if row["id"] == user_id:
                profile = _apply_changes(profile_from_dict(row), changes, "profile")
                rows[index] = profile_to_dict(profile)
                break
        else:
            profile = _apply_changes(Profile(id=user_id), changes, "profile")
            rows.append(profile_to_dict(profile))
        self._shared.set(PROFILES_KEY, rows)
        return profile

    async def find_profile_by_customer(self, customer_id: str) -> Optional[Profile]:
        for row in self._profiles():
            if row.get("stripeCustomerId") == customer_id:
                return profile_from_dict(row)
        return None

    def clear_all(self) -> None:
        """Remove the signed-in user's collections and selection."""
        store = self._user_store()
        for key in STORAGE_KEYS.values():
            store.remove(key)
        store.remove(SELECTED_VEHICLE_KEY)
