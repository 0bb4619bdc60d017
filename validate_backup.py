#!/usr/bin/env python3
"""Validate backup JSON files against the import schema."""
import sys
from pathlib import Path

from carlog.errors import ImportValidationError
from carlog.importer import parse_backup


def validate_backup_file(filepath: Path) -> list[str]:
    """Validate a single backup file. Returns list of errors."""
    errors = []
    try:
        backup = parse_backup(Path(filepath).read_bytes())
    except ImportValidationError as e:
        errors.append(f"Schema validation error: {e.reason}")
    except OSError as e:
        errors.append(f"Error: {e}")
    else:
        vehicle_ids = {v["id"] for v in backup.get("vehicles") or []}
        orphans = [
            row["id"]
            for kind in ("services", "reminders")
            for row in backup.get(kind) or []
            if row["vehicleId"] not in vehicle_ids
        ]
        if orphans:
            errors.append(f"Warning: {len(orphans)} entr{'y' if len(orphans) == 1 else 'ies'} "
                          "reference vehicles not in the file and will be skipped on import")
    return errors


def main(argv=None):
    """Validate every backup file named on the command line."""
    paths = [Path(p) for p in (sys.argv[1:] if argv is None else argv)]
    if not paths:
        print("Usage: validate_backup.py FILE [FILE ...]")
        return 1

    all_valid = True
    for filepath in paths:
        errors = validate_backup_file(filepath)
        if any(not e.startswith("Warning:") for e in errors):
            print(f"FAIL: {filepath.name}")
            all_valid = False
        else:
            print(f"OK: {filepath.name}")
        for error in errors:
            print(f"  {error}")

    return 0 if all_valid else 1


if __name__ == "__main__":
    sys.exit(main())
