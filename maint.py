#!/usr/bin/env python3
"""
Unified CLI for vehicle maintenance record keeping.

Commands:
  vehicles         - List vehicles
  add-vehicle      - Register a vehicle
  select           - Choose the vehicle other commands default to
  update-odometer  - Update the current odometer reading
  archive/restore  - Hide a vehicle from active lists, or bring it back
  delete-vehicle   - Delete a vehicle with its services and reminders
  history          - View service history
  log              - Add a service entry (with receipts)
  delete-service   - Delete a service entry
  reminders        - Show due and upcoming reminders
  remind           - Add a reminder
  complete         - Mark a reminder done and reschedule it
  delete-reminder  - Delete a reminder
  export-csv       - Export service history as CSV
  export-pdf       - Export the service history report as PDF
  backup           - Write a JSON backup of everything
  import           - Restore a JSON backup
  notify           - Email due reminders
  register         - Set the account email (sends the welcome email)
  clear-data       - Delete all local data
"""

import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path
from typing import List, Optional, Sequence

from tabulate import tabulate

from carlog import (
    AppContext,
    CarlogError,
    Config,
    LocalBackend,
    Reminder,
    ServiceEntry,
    SERVICE_CATEGORIES,
    Store,
    Vehicle,
    new_reminder,
    normalize_date,
)
from carlog.exporter import (
    backup_filename,
    build_backup,
    dump_backup,
    export_filename,
    services_to_csv,
    services_to_pdf,
)
from carlog.importer import import_backup
from carlog.logging_config import setup_logging
from carlog.receipts import ReceiptFile
from carlog.vehicle import ODOMETER_UNITS

logger = logging.getLogger("maint")

# =============================================================================
# Formatting helpers
# =============================================================================


def format_odometer(value: Optional[int], unit: str = "") -> str:
    """Format an odometer reading for display."""
    if value is None:
        return "Unknown"
    return f"{value:,} {unit}".strip()


def format_cost(cost: Optional[float]) -> str:
    """Format cost for display."""
    return f"${cost:,.2f}" if cost is not None else "-"


def format_interval(reminder: Reminder, unit: str) -> str:
    """Format a reminder's repeat interval (e.g., '6 mo / 5,000 miles')."""
    parts = []
    if reminder.interval_months:
        parts.append(f"{reminder.interval_months} mo")
    if reminder.interval_miles:
        parts.append(f"{reminder.interval_miles:,} {unit}")
    return " / ".join(parts) if parts else "-"


def truncate(text: Optional[str], max_len: int = 30) -> str:
    """Truncate text with ellipsis if too long."""
    if not text:
        return "-"
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def short_id(record_id: str) -> str:
    return record_id[:8]


def make_vehicle_table(vehicles: List[Vehicle], selected_id: Optional[str]) -> List[List[str]]:
    """Convert vehicles to table rows."""
    rows = []
    for vehicle in vehicles:
        rows.append(
            [
                "*" if vehicle.id == selected_id else "",
                short_id(vehicle.id),
                vehicle.name,
                vehicle.vin or "-",
                format_odometer(vehicle.current_odometer, vehicle.odometer_unit),
                "archived" if vehicle.is_archived else "",
            ]
        )
    return rows


def make_history_table(services: List[ServiceEntry], vehicle: Vehicle) -> List[List[str]]:
    """Convert service entries to table rows."""
    rows = []
    for service in services:
        rows.append(
            [
                short_id(service.id),
                service.date,
                format_odometer(service.odometer, vehicle.odometer_unit),
                service.category,
                truncate(service.service_type, 25),
                "DIY" if service.is_diy else service.vendor or "-",
                format_cost(service.cost),
                str(len(service.receipts)) if service.receipts else "-",
                truncate(service.notes),
            ]
        )
    return rows


def make_reminder_table(reminders: List[Reminder], vehicle: Vehicle) -> List[List[str]]:
    """Convert reminders to table rows."""
    rows = []
    for reminder in reminders:
        last_done = "-"
        if reminder.last_completed:
            last_done = reminder.last_completed
            if reminder.last_completed_odometer is not None:
                last_done += f" @ {reminder.last_completed_odometer:,}"
        rows.append(
            [
                short_id(reminder.id),
                reminder.title,
                reminder.type,
                reminder.due_date or "-",
                format_odometer(reminder.due_mileage, vehicle.odometer_unit)
                if reminder.due_mileage is not None
                else "-",
                format_interval(reminder, vehicle.odometer_unit),
                last_done,
            ]
        )
    return rows


# =============================================================================
# Lookup helpers
# =============================================================================


def resolve(records: Sequence, prefix: str, kind: str):
    """Find a record by full id or unique id prefix."""
    matches = [r for r in records if r.id == prefix] or [
        r for r in records if r.id.startswith(prefix)
    ]
    if not matches:
        raise CarlogError(f"Unknown {kind} '{prefix}'")
    if len(matches) > 1:
        raise CarlogError(f"Ambiguous {kind} id '{prefix}' ({len(matches)} matches)")
    return matches[0]


def pick_vehicle(store: Store, prefix: Optional[str]) -> Vehicle:
    """The vehicle named by --vehicle, else the selected one."""
    if prefix:
        return resolve(store.vehicles, prefix, "vehicle")
    if store.selected_vehicle is None:
        raise CarlogError("No vehicle selected. Add one with add-vehicle or pass --vehicle")
    return store.selected_vehicle


def confirm(prompt: str, assume_yes: bool) -> bool:
    """Ask before destructive operations unless --yes was given."""
    if assume_yes:
        return True
    answer = input(f"{prompt} [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def print_vehicle_header(vehicle: Vehicle) -> None:
    print(f"Vehicle: {vehicle.name}")
    print(f"Current odometer: {format_odometer(vehicle.current_odometer, vehicle.odometer_unit)}")


# =============================================================================
# Vehicle commands
# =============================================================================


async def cmd_vehicles(store: Store, args) -> int:
    """List vehicles."""
    vehicles = store.vehicles if args.all else store.active_vehicles
    if not vehicles:
        print("No vehicles found.")
        return 0
    headers = ["", "ID", "Vehicle", "VIN", "Odometer", ""]
    print(tabulate(make_vehicle_table(vehicles, store.selected_vehicle_id), headers=headers, tablefmt="simple"))
    return 0


async def cmd_add_vehicle(store: Store, args) -> int:
    """Register a vehicle."""
    vehicle = await store.add_vehicle(
        Vehicle(
            id="",
            make=args.make,
            model=args.model,
            year=args.year,
            vin=args.vin,
            odometer_unit=args.unit,
            current_odometer=args.odometer,
        )
    )
    if store.selected_vehicle_id is None:
        await store.select_vehicle(vehicle.id)
    print(f"Added {vehicle.name} ({short_id(vehicle.id)}).")
    return 0


async def cmd_select(store: Store, args) -> int:
    vehicle = resolve(store.active_vehicles, args.vehicle, "vehicle")
    await store.select_vehicle(vehicle.id)
    print(f"Selected {vehicle.name}.")
    return 0


async def cmd_update_odometer(store: Store, args) -> int:
    """Update current odometer reading."""
    vehicle = pick_vehicle(store, args.vehicle)
    new_value = None if args.unknown else args.odometer
    if new_value is None and not args.unknown:
        print("Error: give an odometer reading or --unknown")
        return 1

    print_vehicle_header(vehicle)
    print(f"New odometer:     {format_odometer(new_value, vehicle.odometer_unit)}")
    print()

    if args.dry_run:
        print("(dry run - no changes made)")
        return 0

    await store.update_odometer(vehicle.id, new_value)
    print("Odometer updated.")
    return 0


async def cmd_archive(store: Store, args) -> int:
    vehicle = resolve(store.vehicles, args.vehicle, "vehicle")
    archived = args.command == "archive"
    await store.archive_vehicle(vehicle.id, archived)
    print(f"{'Archived' if archived else 'Restored'} {vehicle.name}.")
    return 0


async def cmd_delete_vehicle(store: Store, args) -> int:
    vehicle = resolve(store.vehicles, args.vehicle, "vehicle")
    services = len(store.services_for(vehicle.id))
    reminders = len(store.reminders_for(vehicle.id))
    prompt = f"Delete {vehicle.name} with {services} service(s) and {reminders} reminder(s)?"
    if not confirm(prompt, args.yes):
        print("Cancelled.")
        return 1
    await store.delete_vehicle(vehicle.id)
    print(f"Deleted {vehicle.name}.")
    return 0


# =============================================================================
# Service commands
# =============================================================================


async def cmd_history(store: Store, args) -> int:
    """View service history."""
    vehicle = pick_vehicle(store, args.vehicle)
    entries = sorted(store.services_for(vehicle.id), key=lambda s: s.date, reverse=not args.asc)

    if args.category:
        entries = [e for e in entries if e.category.lower() == args.category.lower()]
    if args.since:
        entries = [e for e in entries if e.date >= args.since]

    total_cost = sum(e.cost for e in entries if e.cost is not None)

    print_vehicle_header(vehicle)
    print(f"Total services: {len(store.services_for(vehicle.id))}")
    if args.category or args.since:
        print(f"Showing: {len(entries)} (filtered)")
    if total_cost > 0:
        print(f"Total cost: ${total_cost:,.2f}")
    print()

    if not entries:
        print("No service entries found.")
        return 0

    headers = ["ID", "Date", "Odometer", "Category", "Service", "By", "Cost", "Receipts", "Notes"]
    print(tabulate(make_history_table(entries, vehicle), headers=headers, tablefmt="simple"))
    return 0


async def cmd_log(store: Store, args) -> int:
    """Add a new service entry."""
    vehicle = pick_vehicle(store, args.vehicle)

    category = next((c for c in SERVICE_CATEGORIES if c.lower() == args.category.lower()), None)
    if category is None:
        print(f"Error: Unknown category '{args.category}'")
        print("\nAvailable categories:")
        for c in SERVICE_CATEGORIES:
            print(f"  {c}")
        return 1

    entry = ServiceEntry(
        id="",
        vehicle_id=vehicle.id,
        date=args.date or date.today().isoformat(),
        category=category,
        service_type=args.type or category,
        odometer=args.odometer,
        notes=args.notes or "",
        cost=args.cost,
        vendor=args.vendor or "",
        is_diy=args.diy,
    )
    files = [ReceiptFile.from_path(p) for p in args.receipt or []]

    print(f"Adding service entry to {vehicle.name}:")
    print(f"  Service:  {entry.service_type} ({entry.category})")
    print(f"  Date:     {entry.date}")
    print(f"  Odometer: {format_odometer(entry.odometer, vehicle.odometer_unit)}")
    print(f"  By:       {'DIY' if entry.is_diy else entry.vendor or '-'}")
    if entry.cost is not None:
        print(f"  Cost:     {format_cost(entry.cost)}")
    if entry.notes:
        print(f"  Notes:    {entry.notes}")
    if files:
        print(f"  Receipts: {', '.join(f.name for f in files)}")
    print()

    if args.dry_run:
        print("(dry run - no changes made)")
        return 0

    _, report = await store.add_service(entry, files)
    print("Entry saved.")
    if report.failed:
        print(f"Warning: {len(report.failed)} receipt(s) failed to upload: {', '.join(report.failed)}")
    return 0


async def cmd_delete_service(store: Store, args) -> int:
    service = resolve(store.services, args.service, "service")
    if not confirm(f"Delete {service.service_type} on {service.date}?", args.yes):
        print("Cancelled.")
        return 1
    await store.delete_service(service.id)
    print("Service entry deleted.")
    return 0


# =============================================================================
# Reminder commands
# =============================================================================


async def cmd_reminders(store: Store, args) -> int:
    """Show due and upcoming reminders."""
    vehicle = pick_vehicle(store, args.vehicle)
    now = args.date or date.today()
    due = store.due_reminders(vehicle.id, now)
    upcoming = store.upcoming_reminders(vehicle.id, now)

    print_vehicle_header(vehicle)
    print()

    headers = ["ID", "Reminder", "Type", "Due (date)", "Due (odometer)", "Repeats", "Last Done"]
    if due:
        print("DUE:")
        print(tabulate(make_reminder_table(due, vehicle), headers=headers, tablefmt="simple"))
        print()
    if upcoming:
        print("UPCOMING:")
        print(tabulate(make_reminder_table(upcoming, vehicle), headers=headers, tablefmt="simple"))
        print()
    if not due and not upcoming:
        print("No reminders set.")
    return 0


async def cmd_remind(store: Store, args) -> int:
    """Add a reminder."""
    vehicle = pick_vehicle(store, args.vehicle)
    if args.type != "mileage" and not args.due_date:
        print("Error: --due-date is required for time reminders")
        return 1
    if args.type != "time" and args.due_in is None:
        print("Error: --due-in is required for mileage reminders")
        return 1

    reminder = await store.add_reminder(
        new_reminder(
            vehicle,
            args.title,
            type=args.type,
            due_date=args.due_date,
            due_in=args.due_in,
            interval_months=args.every_months,
            interval_miles=args.every_miles,
        )
    )
    print(f"Reminder '{reminder.title}' added ({short_id(reminder.id)}).")
    return 0


async def cmd_complete(store: Store, args) -> int:
    """Mark a reminder complete and reschedule it."""
    reminder = resolve(store.reminders, args.reminder, "reminder")
    updated = await store.complete_reminder(reminder.id, args.date)
    vehicle = store.get_vehicle(updated.vehicle_id)
    print(f"Completed '{updated.title}'.")
    next_due = [
        updated.due_date,
        format_odometer(updated.due_mileage, vehicle.odometer_unit) if updated.due_mileage is not None else None,
    ]
    next_due = [n for n in next_due if n]
    print(f"Next due: {' or '.join(next_due) if next_due else '-'}")
    return 0


async def cmd_delete_reminder(store: Store, args) -> int:
    reminder = resolve(store.reminders, args.reminder, "reminder")
    if not confirm(f"Delete reminder '{reminder.title}'?", args.yes):
        print("Cancelled.")
        return 1
    await store.delete_reminder(reminder.id)
    print("Reminder deleted.")
    return 0


async def cmd_notify(store: Store, args, context: AppContext) -> int:
    """Email every due reminder of every active vehicle."""
    sent = 0
    for vehicle in store.active_vehicles:
        for reminder in store.due_reminders(vehicle.id):
            context.mailer.send(
                args.to,
                "reminder",
                title=reminder.title,
                vehicle=vehicle.name,
                due_date=reminder.due_date,
                due_mileage=format_odometer(reminder.due_mileage, vehicle.odometer_unit)
                if reminder.due_mileage is not None
                else None,
            )
            sent += 1
    print(f"Sent {sent} reminder email(s).")
    return 0


async def cmd_register(store: Store, args, context: AppContext) -> int:
    """Set the account email; the first one gets a welcome email."""
    profile = await context.register(args.email, args.name)
    print(f"Account email set to {profile.email}.")
    return 0


# =============================================================================
# Export / import commands
# =============================================================================


async def cmd_export(store: Store, args) -> int:
    vehicle = pick_vehicle(store, args.vehicle)
    if args.command == "export-csv":
        output = Path(args.output or export_filename(vehicle, "csv"))
        output.write_text(services_to_csv(vehicle, store.services))
    else:
        output = Path(args.output or export_filename(vehicle, "pdf"))
        output.write_bytes(services_to_pdf(vehicle, store.services))
    print(f"Exported {len(store.services_for(vehicle.id))} service(s) to {output}")
    return 0


async def cmd_backup(store: Store, args) -> int:
    output = Path(args.output or backup_filename())
    output.write_text(dump_backup(build_backup(store.vehicles, store.services, store.reminders)))
    print(
        f"Backed up {len(store.vehicles)} vehicle(s), {len(store.services)} service(s), "
        f"{len(store.reminders)} reminder(s) to {output}"
    )
    return 0


async def cmd_import(store: Store, args) -> int:
    result = await import_backup(store, args.file.read_bytes())
    print(
        f"Imported {result.vehicles} vehicle(s), {result.services} service(s), "
        f"{result.reminders} reminder(s)."
    )
    if result.skipped:
        print(f"Skipped {result.skipped} entr{'y' if result.skipped == 1 else 'ies'} for vehicles not in the file.")
    return 0


async def cmd_clear_data(store: Store, args) -> int:
    """Remove every vehicle, service and reminder of the current user."""
    if not isinstance(store.backend, LocalBackend):
        print("Error: clear-data is only available for local data")
        return 1
    prompt = (
        f"Delete all data ({len(store.vehicles)} vehicle(s), {len(store.services)} service(s), "
        f"{len(store.reminders)} reminder(s))?"
    )
    if not confirm(prompt, args.yes):
        print("Cancelled.")
        return 1
    store.backend.clear_all()
    await store.reconcile()
    print("All data cleared.")
    return 0


# =============================================================================
# Main
# =============================================================================

def date_arg(value: str) -> str:
    """argparse type for YYYY-MM-DD dates."""
    try:
        return normalize_date(value, required=True)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


COMMANDS = {
    "vehicles": cmd_vehicles,
    "add-vehicle": cmd_add_vehicle,
    "select": cmd_select,
    "update-odometer": cmd_update_odometer,
    "archive": cmd_archive,
    "restore": cmd_archive,
    "delete-vehicle": cmd_delete_vehicle,
    "history": cmd_history,
    "log": cmd_log,
    "delete-service": cmd_delete_service,
    "reminders": cmd_reminders,
    "remind": cmd_remind,
    "complete": cmd_complete,
    "delete-reminder": cmd_delete_reminder,
    "export-csv": cmd_export,
    "export-pdf": cmd_export,
    "backup": cmd_backup,
    "import": cmd_import,
    "clear-data": cmd_clear_data,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Vehicle maintenance record keeper",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s add-vehicle Subaru BRZ 2015 --odometer 58000
  %(prog)s log --category "Oil Change" --odometer 58200 --cost 45 --diy
  %(prog)s remind "Oil change" --type both --due-date 2025-06-01 --due-in 5000 \\
      --every-months 6 --every-miles 5000
  %(prog)s reminders
  %(prog)s complete 1a2b3c4d
  %(prog)s export-pdf -o brz.pdf
  %(prog)s backup
""",
    )
    parser.add_argument("--config", type=Path, help="Path to a YAML config file")
    parser.add_argument("--data-dir", type=str, help="Data directory (overrides config)")
    parser.add_argument("--user", type=str, help="User id to act as (overrides config)")
    parser.add_argument("--log-level", type=str, help="Logging level (e.g., DEBUG)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    vehicles_parser = subparsers.add_parser("vehicles", help="List vehicles")
    vehicles_parser.add_argument("--all", action="store_true", help="Include archived vehicles")

    add_parser = subparsers.add_parser("add-vehicle", help="Register a vehicle")
    add_parser.add_argument("make", type=str)
    add_parser.add_argument("model", type=str)
    add_parser.add_argument("year", type=int)
    add_parser.add_argument("--vin", type=str)
    add_parser.add_argument("--unit", choices=ODOMETER_UNITS, default="miles")
    add_parser.add_argument("--odometer", type=int, help="Current odometer reading")

    select_parser = subparsers.add_parser("select", help="Choose the default vehicle")
    select_parser.add_argument("vehicle", type=str, help="Vehicle id (or prefix)")

    odo_parser = subparsers.add_parser("update-odometer", help="Update current odometer reading")
    odo_parser.add_argument("odometer", type=int, nargs="?", help="Current odometer reading")
    odo_parser.add_argument("--unknown", action="store_true", help="Mark the odometer as unknown")
    odo_parser.add_argument("--vehicle", type=str)
    odo_parser.add_argument("--dry-run", action="store_true", help="Show what would be updated without saving")

    for name, help_text in (("archive", "Archive a vehicle"), ("restore", "Restore an archived vehicle")):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("vehicle", type=str, help="Vehicle id (or prefix)")

    del_vehicle_parser = subparsers.add_parser(
        "delete-vehicle", help="Delete a vehicle with all its services and reminders"
    )
    del_vehicle_parser.add_argument("vehicle", type=str, help="Vehicle id (or prefix)")
    del_vehicle_parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    history_parser = subparsers.add_parser("history", help="View service history")
    history_parser.add_argument("--vehicle", type=str)
    history_parser.add_argument("--category", type=str, help="Only this category (e.g., 'Brakes')")
    history_parser.add_argument("--since", type=date_arg, help="Show only entries since date (YYYY-MM-DD)")
    history_parser.add_argument("--asc", action="store_true", help="Sort oldest first")

    log_parser = subparsers.add_parser("log", help="Add a service entry")
    log_parser.add_argument("--vehicle", type=str)
    log_parser.add_argument(
        "--category", type=str, default="Other", help=f"One of: {', '.join(SERVICE_CATEGORIES)}"
    )
    log_parser.add_argument("--type", type=str, help="Service performed (default: the category)")
    log_parser.add_argument("--date", type=date_arg, help="Service date in YYYY-MM-DD format (default: today)")
    log_parser.add_argument("--odometer", type=int, help="Odometer at time of service")
    log_parser.add_argument("--cost", type=float, help="Cost of service")
    log_parser.add_argument("--vendor", type=str, help="Shop that did the work")
    log_parser.add_argument("--diy", action="store_true", help="Work done yourself")
    log_parser.add_argument("--notes", type=str)
    log_parser.add_argument("--receipt", type=Path, action="append", help="Receipt file (repeatable, max 5MB)")
    log_parser.add_argument("--dry-run", action="store_true", help="Show what would be added without saving")

    del_service_parser = subparsers.add_parser("delete-service", help="Delete a service entry")
    del_service_parser.add_argument("service", type=str, help="Service id (or prefix)")
    del_service_parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    reminders_parser = subparsers.add_parser("reminders", help="Show due and upcoming reminders")
    reminders_parser.add_argument("--vehicle", type=str)
    reminders_parser.add_argument("--date", type=date_arg, help="Evaluate as of this date (default: today)")

    remind_parser = subparsers.add_parser("remind", help="Add a reminder")
    remind_parser.add_argument("title", type=str)
    remind_parser.add_argument("--vehicle", type=str)
    remind_parser.add_argument("--type", choices=["time", "mileage", "both"], default="time")
    remind_parser.add_argument("--due-date", type=date_arg, help="Due date (YYYY-MM-DD)")
    remind_parser.add_argument("--due-in", type=int, help="Due in this many miles/km from now")
    remind_parser.add_argument("--every-months", type=int, help="Repeat interval in months")
    remind_parser.add_argument("--every-miles", type=int, help="Repeat interval in miles/km")

    complete_parser = subparsers.add_parser("complete", help="Mark a reminder done and reschedule it")
    complete_parser.add_argument("reminder", type=str, help="Reminder id (or prefix)")
    complete_parser.add_argument("--date", type=date_arg, help="Completion date (default: today)")

    del_reminder_parser = subparsers.add_parser("delete-reminder", help="Delete a reminder")
    del_reminder_parser.add_argument("reminder", type=str, help="Reminder id (or prefix)")
    del_reminder_parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    for name, help_text in (
        ("export-csv", "Export service history as CSV"),
        ("export-pdf", "Export the service history report as PDF"),
    ):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("--vehicle", type=str)
        p.add_argument("-o", "--output", type=str, help="Output file")

    backup_parser = subparsers.add_parser("backup", help="Write a JSON backup of everything")
    backup_parser.add_argument("-o", "--output", type=str, help="Output file")

    import_parser = subparsers.add_parser("import", help="Restore a JSON backup")
    import_parser.add_argument("file", type=Path)

    notify_parser = subparsers.add_parser("notify", help="Email due reminders")
    notify_parser.add_argument("--to", type=str, required=True, help="Recipient address")

    register_parser = subparsers.add_parser("register", help="Set the account email")
    register_parser.add_argument("email", type=str, help="Email address")
    register_parser.add_argument("--name", type=str, help="Name used in the welcome email")

    clear_parser = subparsers.add_parser("clear-data", help="Delete all local data for the user")
    clear_parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    return parser


async def run(args, context: AppContext) -> int:
    async with context.session(args.user) as store:
        if store.error is not None:
            print(f"Error: could not load data: {store.error}")
            return 1
        if args.command == "notify":
            return await cmd_notify(store, args, context)
        if args.command == "register":
            return await cmd_register(store, args, context)
        return await COMMANDS[args.command](store, args)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = Config.load(args.config)
    except (OSError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    if args.data_dir:
        config.data_dir = args.data_dir
    setup_logging(args.log_level or config.log_level)

    if args.command == "import" and not args.file.exists():
        print(f"Error: File not found: {args.file}")
        return 1

    try:
        return asyncio.run(run(args, AppContext(config)))
    except (CarlogError, ValueError, OSError) as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main() or 0)
