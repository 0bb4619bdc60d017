"""YAML persistence and dict conversion for carlog records."""

from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .profile import Profile
from .reminder import Reminder
from .service_entry import Receipt, ServiceEntry
from .vehicle import Vehicle

# =============================================================================
# Record <-> dict (camelCase keys, optional fields omitted when None)
# =============================================================================


def vehicle_to_dict(vehicle: Vehicle) -> Dict[str, Any]:
    """Serialize a Vehicle to the stored dict format."""
    d: Dict[str, Any] = {
        "id": vehicle.id,
        "make": vehicle.make,
        "model": vehicle.model,
        "year": vehicle.year,
        "odometerUnit": vehicle.odometer_unit,
        "currentOdometer": vehicle.current_odometer,
        "isArchived": vehicle.is_archived,
    }
    if vehicle.vin:
        d["vin"] = vehicle.vin
    return d


def vehicle_from_dict(dct: Dict[str, Any]) -> Vehicle:
    return Vehicle(
        id=dct["id"],
        make=dct["make"],
        model=dct["model"],
        year=dct["year"],
        vin=dct.get("vin") or None,
        odometer_unit=dct.get("odometerUnit") or "miles",
        current_odometer=dct.get("currentOdometer"),
        is_archived=bool(dct.get("isArchived", False)),
    )


def receipt_to_dict(receipt: Receipt) -> Dict[str, Any]:
    d: Dict[str, Any] = {
        "id": receipt.id,
        "name": receipt.name,
        "type": receipt.mime_type,
        "dataUrl": receipt.data_url,
    }
    if receipt.storage_path is not None:
        d["storagePath"] = receipt.storage_path
    return d


def receipt_from_dict(dct: Dict[str, Any]) -> Receipt:
    return Receipt(
        id=dct["id"],
        name=dct["name"],
        mime_type=dct.get("type") or "",
        storage_path=dct.get("storagePath"),
        data_url=dct.get("dataUrl") or "",
    )


def service_to_dict(service: ServiceEntry) -> Dict[str, Any]:
    """Serialize a ServiceEntry (receipts included) to the stored dict format."""
    return {
        "id": service.id,
        "vehicleId": service.vehicle_id,
        "date": service.date,
        "odometer": service.odometer,
        "category": service.category,
        "serviceType": service.service_type,
        "notes": service.notes,
        "cost": service.cost,
        "vendor": service.vendor,
        "isDIY": service.is_diy,
        "receipts": [receipt_to_dict(r) for r in service.receipts],
    }


def service_from_dict(dct: Dict[str, Any]) -> ServiceEntry:
    return ServiceEntry(
        id=dct["id"],
        vehicle_id=dct["vehicleId"],
        date=dct["date"],
        odometer=dct.get("odometer"),
        category=dct.get("category") or "Other",
        service_type=dct.get("serviceType") or "",
        notes=dct.get("notes") or "",
        cost=dct.get("cost"),
        vendor=dct.get("vendor") or "",
        is_diy=bool(dct.get("isDIY", False)),
        receipts=[receipt_from_dict(r) for r in dct.get("receipts") or []],
    )


def reminder_to_dict(reminder: Reminder) -> Dict[str, Any]:
    """Serialize a Reminder to the stored dict format."""
    d: Dict[str, Any] = {
        "id": reminder.id,
        "vehicleId": reminder.vehicle_id,
        "title": reminder.title,
        "type": reminder.type,
    }
    if reminder.due_date is not None:
        d["dueDate"] = reminder.due_date
    if reminder.due_mileage is not None:
        d["dueMileage"] = reminder.due_mileage
    if reminder.interval_months is not None:
        d["intervalMonths"] = reminder.interval_months
    if reminder.interval_miles is not None:
        d["intervalMiles"] = reminder.interval_miles
    if reminder.last_completed is not None:
        d["lastCompleted"] = reminder.last_completed
    if reminder.last_completed_odometer is not None:
        d["lastCompletedOdometer"] = reminder.last_completed_odometer
    d["isActive"] = reminder.is_active
    return d


def reminder_from_dict(dct: Dict[str, Any]) -> Reminder:
    return Reminder(
        id=dct["id"],
        vehicle_id=dct["vehicleId"],
        title=dct["title"],
        type=dct.get("type") or "time",
        due_date=dct.get("dueDate") or None,
        due_mileage=dct.get("dueMileage"),
        interval_months=dct.get("intervalMonths"),
        interval_miles=dct.get("intervalMiles"),
        last_completed=dct.get("lastCompleted") or None,
        last_completed_odometer=dct.get("lastCompletedOdometer"),
        is_active=bool(dct.get("isActive", True)),
    )


def profile_to_dict(profile: Profile) -> Dict[str, Any]:
    d: Dict[str, Any] = {"id": profile.id, "subscriptionStatus": profile.subscription_status}
    if profile.email is not None:
        d["email"] = profile.email
    if profile.stripe_customer_id is not None:
        d["stripeCustomerId"] = profile.stripe_customer_id
    return d


def profile_from_dict(dct: Dict[str, Any]) -> Profile:
    return Profile(
        id=dct["id"],
        email=dct.get("email"),
        subscription_status=dct.get("subscriptionStatus") or "free",
        stripe_customer_id=dct.get("stripeCustomerId"),
    )


# =============================================================================
# Keyed YAML files
# =============================================================================


class KeyValueStore:
    """
    Directory of independently keyed values, one YAML file per key.

    The local-only counterpart of browser storage: each collection is
    read and written whole under a fixed key name.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        return self.root / f"{key}.yaml"

    def get(self, key: str, default: Any = None) -> Any:
        """Load the value stored under key, or default if there is none."""
        path = self.path_for(key)
        if not path.exists():
            return default
        with open(path, "r") as fp:
            data = yaml.load(fp, Loader=yaml.SafeLoader)
        return default if data is None else data

    def set(self, key: str, value: Any) -> None:
        """Replace the value stored under key."""
        self.root.mkdir(parents=True, exist_ok=True)
        with open(self.path_for(key), "w") as fp:
            yaml.dump(
                value,
                fp,
                default_flow_style=False,
                allow_unicode=True,
                sort_keys=False,
                width=120,
            )

    def remove(self, key: str) -> None:
        path = self.path_for(key)
        if path.exists():
            path.unlink()


def load_yaml_file(filename: Union[str, Path]) -> Optional[Any]:
    """Load any YAML (or JSON) document from disk."""
    with open(filename, "r") as fp:
        return yaml.load(fp, Loader=yaml.SafeLoader)
