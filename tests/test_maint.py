#!/usr/bin/env python3
"""Tests for maint CLI formatting helpers and commands."""

import asyncio
import json
import logging

import pytest

from carlog import CarlogError, LocalBackend, Reminder, ServiceEntry, Vehicle
from maint import (
    format_cost,
    format_interval,
    format_odometer,
    main,
    make_history_table,
    make_reminder_table,
    resolve,
    truncate,
)

BRZ = Vehicle(id="1a2b3c4d-0000", make="Subaru", model="BRZ", year=2015, current_odometer=49000)


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    saved = root.handlers[:], root.level
    yield
    root.handlers[:] = saved[0]
    root.setLevel(saved[1])


@pytest.fixture
def cli(tmp_path, monkeypatch):
    """Run the CLI against a temporary data directory."""
    monkeypatch.delenv("CARLOG_DATA_DIR", raising=False)
    monkeypatch.delenv("CARLOG_USER_ID", raising=False)
    monkeypatch.delenv("RESEND_API_KEY", raising=False)
    monkeypatch.chdir(tmp_path)
    data_dir = str(tmp_path / "data")

    def invoke(*args, user="alice"):
        return main(["--data-dir", data_dir, "--user", user, "--log-level", "WARNING", *args])

    return invoke


class TestFormatOdometer:
    """Tests for format_odometer."""

    def test_formats_number(self):
        assert format_odometer(49000, "miles") == "49,000 miles"
        assert format_odometer(0) == "0"

    def test_none_is_unknown(self):
        assert format_odometer(None, "km") == "Unknown"


class TestFormatCost:
    """Tests for format_cost."""

    def test_formats_number(self):
        assert format_cost(75.50) == "$75.50"
        assert format_cost(0) == "$0.00"

    def test_none_returns_dash(self):
        assert format_cost(None) == "-"


class TestFormatInterval:
    """Tests for format_interval."""

    def test_both_parts(self):
        r = Reminder(id="r", vehicle_id="v", title="Oil", interval_months=6, interval_miles=5000)
        assert format_interval(r, "miles") == "6 mo / 5,000 miles"

    def test_none(self):
        assert format_interval(Reminder(id="r", vehicle_id="v", title="Oil"), "miles") == "-"


class TestTruncate:
    """Tests for truncate."""

    def test_none_returns_dash(self):
        assert truncate(None) == "-"

    def test_long_text_truncated_with_ellipsis(self):
        assert truncate("this is a very long note", max_len=15) == "this is a ve..."


class TestTables:
    """Tests for table row builders."""

    def test_history_row(self):
        service = ServiceEntry(
            id="abcdef123456", vehicle_id=BRZ.id, date="2024-03-01", category="Brakes",
            service_type="Pads", odometer=49100, cost=120.0, vendor="Shop",
        )
        row = make_history_table([service], BRZ)[0]
        assert row[:7] == ["abcdef12", "2024-03-01", "49,100 miles", "Brakes", "Pads", "Shop", "$120.00"]

    def test_reminder_row(self):
        reminder = Reminder(
            id="r1234567890", vehicle_id=BRZ.id, title="Oil", type="both", due_date="2024-09-01",
            due_mileage=54000, interval_months=6, last_completed="2024-03-01", last_completed_odometer=49000,
        )
        row = make_reminder_table([reminder], BRZ)[0]
        assert row == ["r1234567", "Oil", "both", "2024-09-01", "54,000 miles", "6 mo", "2024-03-01 @ 49,000"]


class TestResolve:
    """Tests for id prefix lookup."""

    def test_prefix_match(self):
        assert resolve([BRZ], "1a2b", "vehicle") is BRZ

    def test_unknown(self):
        with pytest.raises(CarlogError, match="Unknown vehicle"):
            resolve([BRZ], "ffff", "vehicle")

    def test_ambiguous(self):
        other = Vehicle(id="1a2b9999", make="A", model="B", year=2000)
        with pytest.raises(CarlogError, match="Ambiguous"):
            resolve([BRZ, other], "1a2b", "vehicle")


class TestCommands:
    """End-to-end CLI commands against a local data directory."""

    def test_no_vehicle_selected(self, cli, capsys):
        assert cli("history") == 1
        assert "Error: No vehicle selected" in capsys.readouterr().out

    def test_add_and_list_vehicles(self, cli, capsys):
        assert cli("add-vehicle", "Subaru", "BRZ", "2015", "--odometer", "49000") == 0
        assert cli("vehicles") == 0
        out = capsys.readouterr().out
        assert "2015 Subaru BRZ" in out
        assert "49,000 miles" in out

    def test_log_service_with_receipt(self, cli, capsys, tmp_path):
        receipt = tmp_path / "invoice.pdf"
        receipt.write_bytes(b"%PDF-1.4")
        cli("add-vehicle", "Subaru", "BRZ", "2015")
        assert cli("log", "--category", "oil change", "--date", "2024-03-01", "--odometer", "49100",
                   "--cost", "45", "--diy", "--receipt", str(receipt)) == 0
        assert cli("history") == 0
        out = capsys.readouterr().out
        assert "Entry saved." in out
        assert "Oil Change" in out
        assert "$45.00" in out

    def test_unknown_category(self, cli, capsys):
        cli("add-vehicle", "Subaru", "BRZ", "2015")
        assert cli("log", "--category", "Detailing") == 1
        assert "Unknown category" in capsys.readouterr().out

    def test_dry_run_saves_nothing(self, cli, capsys):
        cli("add-vehicle", "Subaru", "BRZ", "2015")
        assert cli("log", "--category", "Tires", "--dry-run") == 0
        cli("history")
        assert "No service entries found." in capsys.readouterr().out

    def test_reminders_due_and_complete(self, cli, capsys):
        cli("add-vehicle", "Subaru", "BRZ", "2015", "--odometer", "49000")
        assert cli("remind", "Oil change", "--type", "both", "--due-date", "2024-01-01",
                   "--due-in", "1000", "--every-months", "6", "--every-miles", "5000") == 0
        cli("reminders", "--date", "2024-02-01")
        out = capsys.readouterr().out
        assert "DUE:" in out
        assert "Oil change" in out

        reminder_id = json.loads(self._backup(cli, capsys))["reminders"][0]["id"]
        assert cli("complete", reminder_id[:8], "--date", "2024-03-01") == 0
        out = capsys.readouterr().out
        assert "Next due: 2024-09-01 or 54,000 miles" in out

    def test_remind_requires_due_date(self, cli, capsys):
        cli("add-vehicle", "Subaru", "BRZ", "2015")
        assert cli("remind", "Inspection", "--type", "time") == 1

    def test_update_odometer(self, cli, capsys):
        cli("add-vehicle", "Subaru", "BRZ", "2015")
        assert cli("update-odometer", "51000") == 0
        cli("vehicles")
        assert "51,000 miles" in capsys.readouterr().out

    def test_export_csv(self, cli, capsys, tmp_path):
        cli("add-vehicle", "Subaru", "BRZ", "2015")
        assert cli("export-csv") == 1
        assert "No service history to export" in capsys.readouterr().out
        cli("log", "--category", "Brakes", "--date", "2024-03-01")
        assert cli("export-csv") == 0
        text = (tmp_path / "2015-Subaru-BRZ-service-history.csv").read_text()
        assert text.startswith('"Date","Odometer","Category"')

    def test_backup_and_import(self, cli, capsys, tmp_path):
        cli("add-vehicle", "Subaru", "BRZ", "2015")
        cli("log", "--category", "Brakes", "--date", "2024-03-01")
        assert cli("backup", "-o", "backup.json") == 0
        assert cli("import", str(tmp_path / "backup.json"), user="bob") == 0
        assert "Imported 1 vehicle(s), 1 service(s), 0 reminder(s)." in capsys.readouterr().out
        cli("history", user="bob")
        assert "Brakes" in capsys.readouterr().out

    def test_import_invalid_file(self, cli, capsys, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text('{"exportDate": "x"}')
        assert cli("import", str(bad)) == 1
        assert "Invalid backup file" in capsys.readouterr().out

    def test_delete_requires_confirmation(self, cli, capsys, monkeypatch):
        cli("add-vehicle", "Subaru", "BRZ", "2015")
        vehicle_id = json.loads(self._backup(cli, capsys))["vehicles"][0]["id"]
        monkeypatch.setattr("builtins.input", lambda prompt: "n")
        assert cli("delete-vehicle", vehicle_id) == 1
        assert cli("delete-vehicle", vehicle_id, "--yes") == 0
        capsys.readouterr()
        cli("vehicles")
        assert "No vehicles found." in capsys.readouterr().out

    def test_archive_and_restore(self, cli, capsys):
        cli("add-vehicle", "Subaru", "BRZ", "2015")
        vehicle_id = json.loads(self._backup(cli, capsys))["vehicles"][0]["id"]
        cli("archive", vehicle_id)
        capsys.readouterr()
        cli("vehicles")
        assert "No vehicles found." in capsys.readouterr().out
        cli("vehicles", "--all")
        assert "archived" in capsys.readouterr().out
        assert cli("restore", vehicle_id) == 0

    def test_clear_data(self, cli, capsys):
        cli("add-vehicle", "Subaru", "BRZ", "2015")
        assert cli("clear-data", "--yes") == 0
        capsys.readouterr()
        cli("vehicles")
        assert "No vehicles found." in capsys.readouterr().out

    def test_invalid_dates_rejected_by_parser(self, cli, capsys):
        cli("add-vehicle", "Subaru", "BRZ", "2015")
        with pytest.raises(SystemExit) as excinfo:
            cli("remind", "Inspection", "--due-date", "2024-13-01")
        assert excinfo.value.code == 2
        with pytest.raises(SystemExit):
            cli("log", "--category", "Brakes", "--date", "03/01/2024")
        assert "Invalid date" in capsys.readouterr().err
        cli("history")
        assert "No service entries found." in capsys.readouterr().out

    def test_missing_receipt_file(self, cli, capsys, tmp_path):
        cli("add-vehicle", "Subaru", "BRZ", "2015")
        assert cli("log", "--category", "Brakes", "--receipt", str(tmp_path / "missing.pdf")) == 1
        assert "Error:" in capsys.readouterr().out

    def test_imported_blank_due_date_uses_mileage(self, cli, capsys, tmp_path):
        backup = tmp_path / "blank.json"
        backup.write_text(json.dumps({
            "vehicles": [{"id": "v1", "make": "Subaru", "model": "BRZ", "year": 2015, "currentOdometer": 49000}],
            "reminders": [{"id": "r1", "vehicleId": "v1", "title": "Oil change", "type": "both",
                           "dueDate": "", "dueMileage": 48000}],
        }))
        assert cli("import", str(backup)) == 0
        assert cli("reminders", "--date", "2024-02-01") == 0
        out = capsys.readouterr().out
        assert "DUE:" in out
        assert "Oil change" in out

    def test_register_sets_email(self, cli, capsys, tmp_path):
        assert cli("register", "alice@example.com", "--name", "Alice") == 0
        assert "Account email set to alice@example.com." in capsys.readouterr().out
        profile = asyncio.run(LocalBackend(tmp_path / "data").get_profile("alice"))
        assert profile.email == "alice@example.com"

    @staticmethod
    def _backup(cli, capsys):
        cli("backup", "-o", "snapshot.json")
        capsys.readouterr()
        with open("snapshot.json") as fp:
            return fp.read()
