#!/usr/bin/env python3
"""Tests for the Flask JSON app."""

import io
import json

import pytest

from carlog import Config
from carlog.mailer import Mailer
from web.app import app

from conftest import stripe_signature


@pytest.fixture
def client(tmp_path):
    app.config["TESTING"] = True
    app.config["CARLOG"] = Config(
        data_dir=str(tmp_path / "data"),
        user_id="alice",
        webhook_secret="whsec_test",
        checkout_url="https://pay.example.com/checkout",
        portal_url="https://pay.example.com/portal",
    )
    app.config["CARLOG_MAILER"] = Mailer("noreply@example.com")
    return app.test_client()


def add_vehicle(client, **overrides):
    body = {"make": "Subaru", "model": "BRZ", "year": 2015, "currentOdometer": 49000, **overrides}
    response = client.post("/api/vehicles", json=body)
    assert response.status_code == 201
    return response.get_json()


class TestVehicles:
    """Tests for vehicle endpoints."""

    def test_create_and_list(self, client):
        vehicle = add_vehicle(client)
        data = client.get("/api/vehicles").get_json()
        assert [v["id"] for v in data["vehicles"]] == [vehicle["id"]]
        assert data["selectedVehicleId"] == vehicle["id"]

    def test_users_are_isolated(self, client):
        add_vehicle(client)
        data = client.get("/api/vehicles", headers={"X-User-Id": "bob"}).get_json()
        assert data["vehicles"] == []

    def test_user_id_cannot_escape_data_dir(self, client, tmp_path):
        response = client.get("/api/vehicles", headers={"X-User-Id": "../../outside"})
        assert response.status_code == 401
        assert "Invalid user id" in response.get_json()["error"]
        assert not (tmp_path / "outside").exists()

    def test_missing_field(self, client):
        response = client.post("/api/vehicles", json={"make": "Subaru"})
        assert response.status_code == 400
        assert "error" in response.get_json()

    def test_update_and_odometer(self, client):
        vehicle = add_vehicle(client)
        response = client.patch(f"/api/vehicles/{vehicle['id']}", json={"vin": "JF1ZC"})
        assert response.get_json()["vin"] == "JF1ZC"
        response = client.post(f"/api/vehicles/{vehicle['id']}/odometer", json={"odometer": None})
        assert response.get_json()["currentOdometer"] is None

    def test_unknown_vehicle_404(self, client):
        response = client.get("/api/vehicles/missing")
        assert response.status_code == 404
        assert response.get_json() == {"error": "Vehicle 'missing' not found"}

    def test_archive_hides_from_list(self, client):
        vehicle = add_vehicle(client)
        client.post(f"/api/vehicles/{vehicle['id']}/archive", json={"archived": True})
        assert client.get("/api/vehicles").get_json()["vehicles"] == []
        assert len(client.get("/api/vehicles?all=true").get_json()["vehicles"]) == 1

    def test_delete_cascades(self, client):
        vehicle = add_vehicle(client)
        client.post(f"/api/vehicles/{vehicle['id']}/services", json={"date": "2024-03-01"})
        assert client.delete(f"/api/vehicles/{vehicle['id']}").status_code == 204
        assert client.get(f"/api/vehicles/{vehicle['id']}/services").status_code == 404


class TestServices:
    """Tests for service endpoints."""

    def test_create_with_multipart_receipt(self, client):
        vehicle = add_vehicle(client)
        response = client.post(
            f"/api/vehicles/{vehicle['id']}/services",
            data={
                "date": "2024-03-01",
                "category": "Brakes",
                "cost": "120.50",
                "receipts": (io.BytesIO(b"%PDF-1.4"), "pads.pdf"),
            },
            content_type="multipart/form-data",
        )
        assert response.status_code == 201
        service = response.get_json()
        assert service["cost"] == 120.5
        assert service["failedReceipts"] == []
        assert [r["name"] for r in service["receipts"]] == ["pads.pdf"]

        links = client.get(f"/api/services/{service['id']}/receipts").get_json()["receipts"]
        token = links[0]["url"].rsplit("/", 1)[1]
        download = client.get(f"/receipts/{token}")
        assert download.status_code == 200
        assert download.data == b"%PDF-1.4"

    def test_forged_receipt_link(self, client):
        response = client.get("/receipts/forged")
        assert response.status_code == 502
        assert response.get_json()["error"] == "Invalid receipt link"

    def test_oversized_receipt_rejected(self, client):
        vehicle = add_vehicle(client)
        response = client.post(
            f"/api/vehicles/{vehicle['id']}/services",
            data={"date": "2024-03-01", "receipts": (io.BytesIO(b"x" * (5 * 1024 * 1024 + 1)), "big.pdf")},
            content_type="multipart/form-data",
        )
        assert response.status_code == 413
        assert client.get(f"/api/vehicles/{vehicle['id']}/services").get_json()["services"] == []

    def test_update_and_delete(self, client):
        vehicle = add_vehicle(client)
        service = client.post(f"/api/vehicles/{vehicle['id']}/services", json={"date": "2024-03-01"}).get_json()
        updated = client.patch(f"/api/services/{service['id']}", json={"notes": "rotated"}).get_json()
        assert updated["notes"] == "rotated"
        assert client.delete(f"/api/services/{service['id']}").status_code == 204

    def test_bad_date_rejected(self, client):
        vehicle = add_vehicle(client)
        response = client.post(f"/api/vehicles/{vehicle['id']}/services", json={"date": "03/01/2024"})
        assert response.status_code == 400
        assert "Invalid date" in response.get_json()["error"]
        assert client.get(f"/api/vehicles/{vehicle['id']}/services").get_json()["services"] == []


class TestReminders:
    """Tests for reminder endpoints."""

    def test_create_and_complete(self, client):
        vehicle = add_vehicle(client)
        created = client.post(
            f"/api/vehicles/{vehicle['id']}/reminders",
            json={"title": "Oil", "type": "both", "dueDate": "2024-01-01", "dueIn": 1000,
                  "intervalMonths": 6, "intervalMiles": 5000},
        )
        assert created.status_code == 201
        reminder = created.get_json()
        assert reminder["dueMileage"] == 50000
        assert reminder["status"] == "due"

        listing = client.get(f"/api/vehicles/{vehicle['id']}/reminders").get_json()
        assert [r["id"] for r in listing["due"]] == [reminder["id"]]

        done = client.post(f"/api/reminders/{reminder['id']}/complete", json={"date": "2024-03-01"}).get_json()
        assert done["dueDate"] == "2024-09-01"
        assert done["dueMileage"] == 54000
        assert done["lastCompleted"] == "2024-03-01"

    def test_bad_type(self, client):
        vehicle = add_vehicle(client)
        response = client.post(f"/api/vehicles/{vehicle['id']}/reminders", json={"title": "x", "type": "weekly"})
        assert response.status_code == 400


class TestImportExport:
    """Tests for import and export endpoints."""

    def test_csv_requires_services(self, client):
        vehicle = add_vehicle(client)
        response = client.get(f"/api/vehicles/{vehicle['id']}/export.csv")
        assert response.status_code == 404

    def test_csv_and_pdf(self, client):
        vehicle = add_vehicle(client)
        client.post(f"/api/vehicles/{vehicle['id']}/services", json={"date": "2024-03-01"})
        csv_response = client.get(f"/api/vehicles/{vehicle['id']}/export.csv")
        assert csv_response.mimetype == "text/csv"
        assert "2015-Subaru-BRZ-service-history.csv" in csv_response.headers["Content-Disposition"]
        pdf_response = client.get(f"/api/vehicles/{vehicle['id']}/export.pdf")
        assert pdf_response.data.startswith(b"%PDF")

    def test_backup_then_import(self, client):
        vehicle = add_vehicle(client)
        client.post(f"/api/vehicles/{vehicle['id']}/services", json={"date": "2024-03-01"})
        backup = client.get("/api/backup").data
        result = client.post("/api/import", data=backup, headers={"X-User-Id": "bob"}).get_json()
        assert result == {"vehicles": 1, "services": 1, "reminders": 0, "skipped": 0}

    def test_invalid_import(self, client):
        response = client.post("/api/import", data=b"not json")
        assert response.status_code == 400
        assert response.get_json()["error"].startswith("Invalid backup file")


class TestProfile:
    """Tests for the account email endpoint."""

    def test_first_email_sends_welcome(self, client):
        mailer = app.config["CARLOG_MAILER"]
        response = client.put("/api/profile", json={"email": "alice@example.com", "name": "Alice"})
        assert response.status_code == 200
        assert response.get_json() == {"id": "alice", "email": "alice@example.com", "subscriptionStatus": "free"}
        assert [m.subject for m in mailer.sent] == ["Welcome to GetCarLog!"]

        client.put("/api/profile", json={"email": "alice@work.example.com"})
        assert len(mailer.sent) == 1

    def test_email_required(self, client):
        assert client.put("/api/profile", json={}).status_code == 400


class TestBilling:
    """Tests for billing redirects and the webhook."""

    def test_checkout_redirect(self, client):
        response = client.get("/billing/checkout/monthly")
        assert response.status_code == 302
        assert response.headers["Location"].endswith("price=monthly&client_reference_id=alice")

    def test_portal_without_subscription(self, client):
        assert client.get("/billing/portal").status_code == 404

    def test_webhook_updates_profile(self, client):
        payload = json.dumps(
            {"type": "checkout.session.completed",
             "data": {"object": {"customer": "cus_1", "client_reference_id": "alice"}}}
        ).encode()
        response = client.post(
            "/webhooks/billing", data=payload, headers={"Stripe-Signature": stripe_signature(payload, "whsec_test")}
        )
        assert response.get_json() == {"received": True, "subscriptionStatus": "pro"}
        portal = client.get("/billing/portal")
        assert portal.status_code == 302
        assert portal.headers["Location"].endswith("customer=cus_1")

    def test_webhook_bad_signature(self, client):
        response = client.post("/webhooks/billing", data=b"{}", headers={"Stripe-Signature": "t=1,v1=00"})
        assert response.status_code == 400
