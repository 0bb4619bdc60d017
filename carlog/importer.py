"""Restore records from a JSON backup."""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Union

from jsonschema import Draft7Validator
from jsonschema.exceptions import best_match

from .calculations import normalize_date
from .errors import ImportValidationError
from .loader import load_yaml_file, reminder_from_dict, service_from_dict, vehicle_from_dict
from .receipts import MAX_RECEIPT_BYTES, ReceiptFile
from .store import Store

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.yaml"
COLLECTIONS = ("vehicles", "services", "reminders")
DATE_KEYS = {"services": ("date",), "reminders": ("dueDate", "lastCompleted")}


@dataclass
class ImportResult:
    """Counts of records created by an import."""

    vehicles: int = 0
    services: int = 0
    reminders: int = 0
    skipped: int = 0  # services/reminders whose vehicle was not in the file


@lru_cache(maxsize=1)
def load_schema() -> dict:
    """Load the backup JSON schema."""
    return load_yaml_file(SCHEMA_PATH)


def parse_backup(payload: Union[str, bytes, Dict[str, Any]]) -> Dict[str, Any]:
    """
    Decode and validate a backup payload.

    Raises ImportValidationError naming the first problem found; nothing
    is created for an invalid file.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise ImportValidationError(f"not valid JSON ({e})") from e

    if isinstance(payload, dict) and not any(k in payload for k in COLLECTIONS):
        raise ImportValidationError("must contain vehicles, services or reminders")

    error = best_match(Draft7Validator(load_schema()).iter_errors(payload))
    if error is not None:
        where = ".".join(str(p) for p in error.absolute_path)
        raise ImportValidationError(f"{error.message} at {where}" if where else error.message)

    for collection, keys in DATE_KEYS.items():
        for index, row in enumerate(payload.get(collection) or []):
            for key in keys:
                try:
                    normalize_date(row.get(key))
                except ValueError as e:
                    raise ImportValidationError(f"{e} at {collection}.{index}.{key}") from e
    return payload


def _receipt_files(row: Dict[str, Any]) -> List[ReceiptFile]:
    """Receipts embedded as data: URLs; references without data are dropped."""
    files = []
    for receipt in row.get("receipts") or []:
        data_url = receipt.get("dataUrl") or ""
        if not data_url.startswith("data:") or "," not in data_url:
            continue
        header, encoded = data_url.split(",", 1)
        try:
            data = base64.b64decode(encoded) if header.endswith(";base64") else encoded.encode()
        except (binascii.Error, ValueError):
            logger.warning("Skipping receipt %s: undecodable data", receipt["name"])
            continue
        if len(data) > MAX_RECEIPT_BYTES:
            logger.warning("Skipping receipt %s: over the size limit", receipt["name"])
            continue
        mime_type = receipt.get("type") or header[5:].split(";")[0] or "application/octet-stream"
        files.append(ReceiptFile(receipt["name"], data, mime_type))
    return files


async def import_backup(
    store: Store, payload: Union[str, bytes, Dict[str, Any]]
) -> ImportResult:
    """
    Re-create a backup's records through the store.

    Vehicles are created first and get new ids; services and reminders
    are then created against the new id of their vehicle. Entries whose
    vehicle is not part of the file are skipped.
    """
    backup = parse_backup(payload)
    result = ImportResult()
    id_map: Dict[str, str] = {}

    for row in backup.get("vehicles") or []:
        created = await store.add_vehicle(vehicle_from_dict(row))
        id_map[row["id"]] = created.id
        result.vehicles += 1

    for row in backup.get("services") or []:
        new_vehicle_id = id_map.get(row["vehicleId"])
        if new_vehicle_id is None:
            result.skipped += 1
            continue
        service = service_from_dict({**row, "receipts": []})
        await store.add_service(replace(service, vehicle_id=new_vehicle_id), _receipt_files(row))
        result.services += 1

    for row in backup.get("reminders") or []:
        new_vehicle_id = id_map.get(row["vehicleId"])
        if new_vehicle_id is None:
            result.skipped += 1
            continue
        await store.add_reminder(replace(reminder_from_dict(row), vehicle_id=new_vehicle_id))
        result.reminders += 1

    logger.info(
        "Imported %d vehicle(s), %d service(s), %d reminder(s); skipped %d",
        result.vehicles,
        result.services,
        result.reminders,
        result.skipped,
    )
    return result
