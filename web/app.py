"""Flask JSON application for vehicle maintenance record keeping."""

import asyncio
import base64
import os
from dataclasses import fields
from datetime import date
from pathlib import Path

from flask import Flask, Response, jsonify, redirect, request, send_file

# Add parent directory to path for package imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from carlog import (
    AppContext,
    BackendError,
    CarlogError,
    Config,
    EmailDeliveryError,
    ImportValidationError,
    LocalBackend,
    NotAuthenticatedError,
    NothingToExportError,
    ReceiptTooLargeError,
    RecordNotFoundError,
    SignatureVerificationError,
    Status,
    new_reminder,
    reminder_status,
)
from carlog.billing import checkout_url, portal_url
from carlog.exporter import (
    backup_filename,
    build_backup,
    dump_backup,
    export_filename,
    services_to_csv,
    services_to_pdf,
)
from carlog.importer import import_backup
from carlog.loader import (
    reminder_from_dict,
    reminder_to_dict,
    service_from_dict,
    service_to_dict,
    vehicle_from_dict,
    vehicle_to_dict,
)
from carlog.logging_config import setup_logging
from carlog.receipts import ReceiptFile, guess_mime_type

app = Flask(__name__)
app.secret_key = os.environ.get("SECRET_KEY", "dev-secret-key-change-in-prod")
app.config["CARLOG"] = Config.load(os.environ.get("CARLOG_CONFIG"))
app.config["CARLOG_MAILER"] = None

ERROR_STATUS = [
    (NotAuthenticatedError, 401),
    (RecordNotFoundError, 404),
    (NothingToExportError, 404),
    (ImportValidationError, 400),
    (ReceiptTooLargeError, 413),
    (SignatureVerificationError, 400),
    (BackendError, 502),
    (EmailDeliveryError, 502),
    (CarlogError, 400),
]


def get_context() -> AppContext:
    """A fresh context per request, built from the app's config."""
    return AppContext(app.config["CARLOG"], mailer=app.config["CARLOG_MAILER"])


def current_user():
    return request.headers.get("X-User-Id") or app.config["CARLOG"].user_id


def run_session(fn, *args):
    """Run fn(store, context, *args) inside a store session for the requesting user."""

    async def go():
        context = get_context()
        async with context.session(current_user()) as store:
            if store.error is not None:
                raise store.error
            return await fn(store, context, *args)

    return asyncio.run(go())


def record_fields(record):
    return {f.name: getattr(record, f.name) for f in fields(record) if f.name != "id"}


def merged(current, body, to_dict, from_dict):
    """Apply the request body's camelCase keys on top of an existing record."""
    return from_dict({**to_dict(current), **body, "id": current.id})


@app.errorhandler(CarlogError)
def handle_carlog_error(error):
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            break
    response = jsonify({"error": str(error)})
    response.status_code = status
    return response


@app.errorhandler(ValueError)
def handle_value_error(error):
    response = jsonify({"error": str(error)})
    response.status_code = 400
    return response


@app.errorhandler(KeyError)
def handle_missing_field(error):
    response = jsonify({"error": f"Missing field {error}"})
    response.status_code = 400
    return response


def reminder_json(reminder, vehicle):
    d = reminder_to_dict(reminder)
    d["status"] = reminder_status(reminder, vehicle, date.today()).name.lower()
    return d


# =============================================================================
# Vehicles
# =============================================================================


@app.route("/api/vehicles", methods=["GET"])
def list_vehicles():
    """All vehicles, with the selected one flagged."""
    include_archived = request.args.get("all", "").lower() == "true"

    async def go(store, context):
        vehicles = store.vehicles if include_archived else store.active_vehicles
        return {
            "vehicles": [vehicle_to_dict(v) for v in vehicles],
            "selectedVehicleId": store.selected_vehicle_id,
        }

    return jsonify(run_session(go))


@app.route("/api/vehicles", methods=["POST"])
def create_vehicle():
    body = request.get_json(silent=True) or {}

    async def go(store, context):
        vehicle = await store.add_vehicle(vehicle_from_dict({**body, "id": ""}))
        if store.selected_vehicle_id is None:
            await store.select_vehicle(vehicle.id)
        return vehicle_to_dict(vehicle)

    return jsonify(run_session(go)), 201


@app.route("/api/vehicles/<vehicle_id>", methods=["GET"])
def get_vehicle(vehicle_id: str):
    async def go(store, context):
        vehicle = store.get_vehicle(vehicle_id)
        return {
            **vehicle_to_dict(vehicle),
            "serviceCount": len(store.services_for(vehicle_id)),
            "dueReminders": len(store.due_reminders(vehicle_id)),
        }

    return jsonify(run_session(go))


@app.route("/api/vehicles/<vehicle_id>", methods=["PATCH"])
def update_vehicle(vehicle_id: str):
    body = request.get_json(silent=True) or {}

    async def go(store, context):
        updated = merged(store.get_vehicle(vehicle_id), body, vehicle_to_dict, vehicle_from_dict)
        vehicle = await store.update_vehicle(vehicle_id, **record_fields(updated))
        return vehicle_to_dict(vehicle)

    return jsonify(run_session(go))


@app.route("/api/vehicles/<vehicle_id>/odometer", methods=["POST"])
def update_odometer(vehicle_id: str):
    """Set the current odometer; null marks it unknown."""
    body = request.get_json(silent=True) or {}
    odometer = body.get("odometer")
    if odometer is not None:
        odometer = int(odometer)

    async def go(store, context):
        return vehicle_to_dict(await store.update_odometer(vehicle_id, odometer))

    return jsonify(run_session(go))


@app.route("/api/vehicles/<vehicle_id>/archive", methods=["POST"])
def archive_vehicle(vehicle_id: str):
    archived = (request.get_json(silent=True) or {}).get("archived", True)

    async def go(store, context):
        return vehicle_to_dict(await store.archive_vehicle(vehicle_id, bool(archived)))

    return jsonify(run_session(go))


@app.route("/api/vehicles/<vehicle_id>", methods=["DELETE"])
def delete_vehicle(vehicle_id: str):
    """Delete a vehicle together with its services and reminders."""

    async def go(store, context):
        await store.delete_vehicle(vehicle_id)

    run_session(go)
    return "", 204


@app.route("/api/selection", methods=["PUT"])
def select_vehicle():
    vehicle_id = (request.get_json(silent=True) or {}).get("vehicleId")

    async def go(store, context):
        await store.select_vehicle(vehicle_id)
        return {"selectedVehicleId": store.selected_vehicle_id}

    return jsonify(run_session(go))


# =============================================================================
# Services
# =============================================================================


def _uploaded_files():
    """Receipts sent as multipart files or as base64 entries in a JSON body."""
    files = [
        ReceiptFile(f.filename, f.read(), f.mimetype or guess_mime_type(f.filename))
        for f in request.files.getlist("receipts")
    ]
    body = request.get_json(silent=True) or {}
    for entry in body.get("receiptFiles") or []:
        files.append(
            ReceiptFile(
                entry["name"],
                base64.b64decode(entry["data"]),
                entry.get("type") or guess_mime_type(entry["name"]),
            )
        )
    return files


def _service_body():
    if request.is_json:
        return dict(request.get_json(silent=True) or {})
    body = dict(request.form)
    for key in ("odometer",):
        if body.get(key):
            body[key] = int(body[key])
    if body.get("cost"):
        body["cost"] = float(body["cost"])
    body["isDIY"] = str(body.get("isDIY", "")).lower() in ("true", "1", "on")
    return body


@app.route("/api/vehicles/<vehicle_id>/services", methods=["GET"])
def list_services(vehicle_id: str):
    async def go(store, context):
        store.get_vehicle(vehicle_id)
        return {"services": [service_to_dict(s) for s in store.services_for(vehicle_id)]}

    return jsonify(run_session(go))


@app.route("/api/vehicles/<vehicle_id>/services", methods=["POST"])
def create_service(vehicle_id: str):
    """Log a service entry; receipts that fail to upload are reported, not fatal."""
    body = _service_body()
    body.pop("receiptFiles", None)
    files = _uploaded_files()

    async def go(store, context):
        service = service_from_dict({**body, "id": "", "vehicleId": vehicle_id, "receipts": []})
        created, report = await store.add_service(service, files)
        return {**service_to_dict(created), "failedReceipts": report.failed}

    return jsonify(run_session(go)), 201


@app.route("/api/services/<service_id>", methods=["PATCH"])
def update_service(service_id: str):
    body = _service_body()

    async def go(store, context):
        current = next((s for s in store.services if s.id == service_id), None)
        if current is None:
            raise RecordNotFoundError("Service", service_id)
        updated = merged(current, body, service_to_dict, service_from_dict)
        changes = record_fields(updated)
        changes.pop("receipts")
        return service_to_dict(await store.update_service(service_id, **changes))

    return jsonify(run_session(go))


@app.route("/api/services/<service_id>", methods=["DELETE"])
def delete_service(service_id: str):
    async def go(store, context):
        await store.delete_service(service_id)

    run_session(go)
    return "", 204


@app.route("/api/services/<service_id>/receipts", methods=["GET"])
def receipt_links(service_id: str):
    """Signed, time-limited download links for a service's receipts."""

    async def go(store, context):
        service = next((s for s in store.services if s.id == service_id), None)
        if service is None:
            raise RecordNotFoundError("Service", service_id)
        expiry = context.config.receipt_url_expiry
        links = []
        for receipt in service.receipts:
            if receipt.storage_path:
                url = await store.backend.receipt_url(receipt.storage_path, expiry)
                links.append({"id": receipt.id, "name": receipt.name, "url": url})
        return {"receipts": links}

    return jsonify(run_session(go))


@app.route("/receipts/<token>")
def download_receipt(token: str):
    backend = get_context().backend
    if not isinstance(backend, LocalBackend):
        return jsonify({"error": "Receipt downloads are served by the storage backend"}), 404
    return send_file(backend.open_receipt(token))


# =============================================================================
# Reminders
# =============================================================================


@app.route("/api/vehicles/<vehicle_id>/reminders", methods=["GET"])
def list_reminders(vehicle_id: str):
    """Reminders split into due and upcoming, like the dashboard."""

    async def go(store, context):
        vehicle = store.get_vehicle(vehicle_id)
        due, upcoming, inactive = [], [], []
        for reminder in store.reminders_for(vehicle_id):
            status = reminder_status(reminder, vehicle, date.today())
            target = {Status.DUE: due, Status.UPCOMING: upcoming}.get(status, inactive)
            target.append(reminder_json(reminder, vehicle))
        return {"due": due, "upcoming": upcoming, "inactive": inactive}

    return jsonify(run_session(go))


@app.route("/api/vehicles/<vehicle_id>/reminders", methods=["POST"])
def create_reminder(vehicle_id: str):
    """Create a reminder; dueIn is relative to the current odometer."""
    body = request.get_json(silent=True) or {}

    async def go(store, context):
        vehicle = store.get_vehicle(vehicle_id)
        reminder = new_reminder(
            vehicle,
            body["title"],
            type=body.get("type", "time"),
            due_date=body.get("dueDate"),
            due_in=body.get("dueIn"),
            interval_months=body.get("intervalMonths"),
            interval_miles=body.get("intervalMiles"),
        )
        created = await store.add_reminder(reminder)
        return reminder_json(created, vehicle)

    return jsonify(run_session(go)), 201


@app.route("/api/reminders/<reminder_id>", methods=["PATCH"])
def update_reminder(reminder_id: str):
    body = request.get_json(silent=True) or {}

    async def go(store, context):
        current = store.get_reminder(reminder_id)
        updated = merged(current, body, reminder_to_dict, reminder_from_dict)
        reminder = await store.update_reminder(reminder_id, **record_fields(updated))
        return reminder_json(reminder, store.get_vehicle(reminder.vehicle_id))

    return jsonify(run_session(go))


@app.route("/api/reminders/<reminder_id>/complete", methods=["POST"])
def complete_reminder(reminder_id: str):
    completion_date = (request.get_json(silent=True) or {}).get("date")

    async def go(store, context):
        reminder = await store.complete_reminder(reminder_id, completion_date)
        return reminder_json(reminder, store.get_vehicle(reminder.vehicle_id))

    return jsonify(run_session(go))


@app.route("/api/reminders/<reminder_id>", methods=["DELETE"])
def delete_reminder(reminder_id: str):
    async def go(store, context):
        await store.delete_reminder(reminder_id)

    run_session(go)
    return "", 204


# =============================================================================
# Import / export
# =============================================================================


def _attachment(body, mimetype: str, filename: str) -> Response:
    return Response(
        body,
        mimetype=mimetype,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.route("/api/vehicles/<vehicle_id>/export.csv")
def export_csv(vehicle_id: str):
    async def go(store, context):
        vehicle = store.get_vehicle(vehicle_id)
        return services_to_csv(vehicle, store.services), export_filename(vehicle, "csv")

    body, filename = run_session(go)
    return _attachment(body, "text/csv", filename)


@app.route("/api/vehicles/<vehicle_id>/export.pdf")
def export_pdf(vehicle_id: str):
    async def go(store, context):
        vehicle = store.get_vehicle(vehicle_id)
        return services_to_pdf(vehicle, store.services), export_filename(vehicle, "pdf")

    body, filename = run_session(go)
    return _attachment(body, "application/pdf", filename)


@app.route("/api/backup")
def export_backup():
    async def go(store, context):
        return dump_backup(build_backup(store.vehicles, store.services, store.reminders))

    return _attachment(run_session(go), "application/json", backup_filename())


@app.route("/api/import", methods=["POST"])
def import_data():
    """Restore a backup sent as the request body or as an uploaded 'file'."""
    upload = request.files.get("file")
    payload = upload.read() if upload else request.get_data()

    async def go(store, context):
        result = await import_backup(store, payload)
        return {
            "vehicles": result.vehicles,
            "services": result.services,
            "reminders": result.reminders,
            "skipped": result.skipped,
        }

    return jsonify(run_session(go))


# =============================================================================
# Profile
# =============================================================================


@app.route("/api/profile", methods=["PUT"])
def register_profile():
    """Set the account email; the first one triggers the welcome email."""
    body = request.get_json(silent=True) or {}

    async def go(store, context):
        profile = await context.register(body["email"], body.get("name"))
        return {
            "id": profile.id,
            "email": profile.email,
            "subscriptionStatus": profile.subscription_status,
        }

    return jsonify(run_session(go))


# =============================================================================
# Billing
# =============================================================================


@app.route("/billing/checkout/<price_key>")
def billing_checkout(price_key: str):
    config = app.config["CARLOG"]
    if not config.checkout_url:
        return jsonify({"error": "Checkout is not configured"}), 503
    return redirect(checkout_url(config.checkout_url, price_key, current_user()))


@app.route("/billing/portal")
def billing_portal():
    config = app.config["CARLOG"]
    if not config.portal_url:
        return jsonify({"error": "Billing portal is not configured"}), 503

    async def go():
        profile = await get_context().backend.get_profile(current_user())
        return profile.stripe_customer_id if profile else None

    customer_id = asyncio.run(go())
    if not customer_id:
        return jsonify({"error": "No subscription found"}), 404
    return redirect(portal_url(config.portal_url, customer_id))


@app.route("/webhooks/billing", methods=["POST"])
def billing_webhook():
    """Receive a signed billing event and mirror it into the user's profile."""
    handler = get_context().webhook_handler()
    profile = asyncio.run(
        handler.handle(request.get_data(), request.headers.get("Stripe-Signature"))
    )
    return jsonify(
        {
            "received": True,
            "subscriptionStatus": profile.subscription_status if profile else None,
        }
    )


if __name__ == "__main__":
    setup_logging(app.config["CARLOG"].log_level)
    # Using 5001 to avoid conflict with macOS AirPlay Receiver on 5000
    app.run(debug=True, host="0.0.0.0", port=5001)
