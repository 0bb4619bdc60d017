"""CSV, PDF report and JSON backup exports."""

import csv
import io
import json
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from .calculations import parse_local_date
from .errors import NothingToExportError
from .loader import reminder_to_dict, service_to_dict, vehicle_to_dict
from .reminder import Reminder
from .service_entry import ServiceEntry
from .vehicle import Vehicle

CSV_HEADERS = [
    "Date",
    "Odometer",
    "Category",
    "Service Type",
    "Cost",
    "Vendor",
    "DIY",
    "Notes",
    "Receipts",
]

# Page geometry in millimetres, measured from the top-left corner
PAGE_WIDTH = 210
PAGE_HEIGHT = 297
MARGIN = 20
BOTTOM_LIMIT = PAGE_HEIGHT - 40


# =============================================================================
# Formatting helpers
# =============================================================================


def format_odometer(odometer: Optional[int]) -> str:
    """Odometer for exports; unknown renders as 'Unknown'."""
    return str(odometer) if odometer is not None else "Unknown"


def format_cost(cost: Optional[float]) -> str:
    """Cost for exports; unknown renders as '0.00' (unlike odometer)."""
    return f"{cost:.2f}" if cost is not None else "0.00"


def format_long_date(d: date) -> str:
    """'March 1, 2024'"""
    return f"{d:%B} {d.day}, {d.year}"


def format_short_date(d: date) -> str:
    """'Mar 1, 2024'"""
    return f"{d:%b} {d.day}, {d.year}"


def export_filename(vehicle: Vehicle, extension: str) -> str:
    return f"{vehicle.year}-{vehicle.make}-{vehicle.model}-service-history.{extension}"


def backup_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"car-service-binder-backup-{today.isoformat()}.json"


def _vehicle_services(vehicle: Vehicle, services: List[ServiceEntry]) -> List[ServiceEntry]:
    selected = [s for s in services if s.vehicle_id == vehicle.id]
    if not selected:
        raise NothingToExportError("No service history to export")
    return selected


# =============================================================================
# CSV
# =============================================================================


def make_csv_rows(services: List[ServiceEntry]) -> List[List[str]]:
    """Convert service entries to CSV rows, in the given order."""
    rows = []
    for service in services:
        rows.append(
            [
                service.date,
                format_odometer(service.odometer),
                service.category,
                service.service_type,
                format_cost(service.cost),
                service.vendor or "",
                "Yes" if service.is_diy else "No",
                service.notes,
                str(len(service.receipts)),
            ]
        )
    return rows


def services_to_csv(vehicle: Vehicle, services: List[ServiceEntry]) -> str:
    """
    CSV of one vehicle's service history.

    Header row first, every field quoted. Raises NothingToExportError when
    the vehicle has no services.
    """
    selected = _vehicle_services(vehicle, services)
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    writer.writerows(make_csv_rows(selected))
    return buffer.getvalue().rstrip("\n")


# =============================================================================
# PDF report
# =============================================================================


@dataclass
class Line:
    """One positioned line of text on a report page (millimetres from top-left)."""

    x: float
    y: float
    text: str
    size: int = 10
    bold: bool = False
    centered: bool = False


def layout_report(
    vehicle: Vehicle, services: List[ServiceEntry], generated: Optional[date] = None
) -> List[List[Line]]:
    """
    Lay out the service history report as pages of lines.

    Sections in order: title, vehicle identification, summary totals,
    then services newest first. A new page starts whenever the cursor
    passes the bottom limit before an entry.
    """
    selected = _vehicle_services(vehicle, services)
    generated = generated or date.today()
    center = PAGE_WIDTH / 2
    pages: List[List[Line]] = [[]]
    y = MARGIN

    def add(text, x=MARGIN, size=10, bold=False, centered=False):
        pages[-1].append(Line(x, y, text, size, bold, centered))

    add("Service History Report", center, size=20, centered=True)
    y += 15
    add(vehicle.name, center, size=12, centered=True)
    y += 7
    if vehicle.vin:
        add(f"VIN: {vehicle.vin}", center, centered=True)
        y += 7
    odometer = f"{vehicle.current_odometer:,}" if vehicle.current_odometer is not None else "Not set"
    add(f"Current Odometer: {odometer} {vehicle.odometer_unit}", center, centered=True)
    y += 10
    add(f"Generated: {format_long_date(generated)}", center, centered=True)
    y += 15

    add("Summary", size=14)
    y += 8
    total_cost = sum(s.cost or 0 for s in selected)
    add(f"Total Service Entries: {len(selected)}")
    y += 6
    add(f"Total Cost: ${total_cost:.2f}")
    y += 6
    add(f"DIY Services: {sum(1 for s in selected if s.is_diy)}")
    y += 12

    add("Service History", size=14)
    y += 10

    max_width = (PAGE_WIDTH - 2 * MARGIN) * mm
    for service in sorted(selected, key=lambda s: s.date, reverse=True):
        if y > BOTTOM_LIMIT:
            pages.append([])
            y = MARGIN

        odometer_text = (
            f"{service.odometer:,} {vehicle.odometer_unit}" if service.odometer is not None else "Unknown"
        )
        add(f"{format_short_date(parse_local_date(service.date))} - {odometer_text}", size=9, bold=True)
        y += 5
        add(f"{service.service_type} ({service.category})", size=9)
        y += 5
        performer = "DIY" if service.is_diy else service.vendor or "N/A"
        add(f"Cost: ${format_cost(service.cost)} | {performer}", size=9)
        y += 5
        if service.notes:
            for text in simpleSplit(f"Notes: {service.notes}", "Helvetica", 9, max_width):
                add(text, size=9)
                y += 5
        if service.receipts:
            add(f"Receipts: {len(service.receipts)} attached", size=9)
            y += 5
        y += 5

    return pages


def render_report_pdf(pages: List[List[Line]]) -> bytes:
    """Draw laid-out pages into a PDF document."""
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    page_height = A4[1]
    for page in pages:
        for line in page:
            pdf.setFont("Helvetica-Bold" if line.bold else "Helvetica", line.size)
            x = line.x * mm
            y = page_height - line.y * mm
            if line.centered:
                pdf.drawCentredString(x, y, line.text)
            else:
                pdf.drawString(x, y, line.text)
        pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def services_to_pdf(
    vehicle: Vehicle, services: List[ServiceEntry], generated: Optional[date] = None
) -> bytes:
    return render_report_pdf(layout_report(vehicle, services, generated))


# =============================================================================
# JSON backup
# =============================================================================


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_backup(
    vehicles: List[Vehicle],
    services: List[ServiceEntry],
    reminders: List[Reminder],
    export_date: Optional[str] = None,
) -> Dict[str, Any]:
    """The backup envelope: {vehicles, services, reminders, exportDate}."""
    return {
        "vehicles": [vehicle_to_dict(v) for v in vehicles],
        "services": [service_to_dict(s) for s in services],
        "reminders": [reminder_to_dict(r) for r in reminders],
        "exportDate": export_date or _iso_now(),
    }


def dump_backup(backup: Dict[str, Any]) -> str:
    return json.dumps(backup, indent=2)
