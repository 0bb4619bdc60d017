#!/usr/bin/env python3
"""Tests for the reconciliation store."""

import asyncio
from dataclasses import replace

import pytest

from carlog import BackendError, LocalBackend, ReceiptTooLargeError, RecordNotFoundError, Store
from carlog.receipts import MAX_RECEIPT_BYTES, ReceiptFile

from conftest import loaded_store, make_reminder, make_service, run


class GatedBackend(LocalBackend):
    """LocalBackend whose list_vehicles waits for gate to be set."""

    gate = None

    async def list_vehicles(self):
        if self.gate is not None:
            await self.gate.wait()
        return await super().list_vehicles()


class TestLoad:
    """Tests for Store.load."""

    def test_empty_backend(self, backend):
        async def go():
            return await loaded_store(backend)

        store = run(go())
        assert store.vehicles == [] and store.services == [] and store.reminders == []
        assert store.error is None
        assert store.loading is False
        assert store.selected_vehicle is None

    def test_loads_existing_records(self, backend, brz):
        async def go():
            v = await backend.create_vehicle(brz)
            await backend.create_service(make_service(v.id))
            await backend.create_reminder(make_reminder(v.id, type="time", due_date="2024-06-01"))
            return await loaded_store(backend)

        store = run(go())
        assert len(store.vehicles) == 1
        assert len(store.services) == 1
        assert len(store.reminders) == 1
        assert store.selected_vehicle.id == store.vehicles[0].id

    def test_any_failure_leaves_everything_empty(self, flaky_backend, brz):
        """One failed collection means no collection is populated."""

        async def go():
            await flaky_backend.create_vehicle(brz)
            flaky_backend.fail.add("list_services")
            return await loaded_store(flaky_backend)

        store = run(go())
        assert isinstance(store.error, BackendError)
        assert store.vehicles == [] and store.services == [] and store.reminders == []

    def test_not_signed_in_is_an_error(self, backend):
        backend.sign_out()

        async def go():
            return await loaded_store(backend)

        store = run(go())
        assert store.error is not None
        assert store.vehicles == []


class TestMutations:
    """Tests for store mutations."""

    def test_add_vehicle_gets_backend_id(self, backend, brz):
        async def go():
            store = await loaded_store(backend)
            created = await store.add_vehicle(brz)
            await store.wait_idle()
            return store, created

        store, created = run(go())
        assert created.id
        assert [v.id for v in store.vehicles] == [created.id]

    def test_failed_update_leaves_state_unchanged(self, flaky_backend, brz):
        async def go():
            store = await loaded_store(flaky_backend)
            created = await store.add_vehicle(brz)
            await store.wait_idle()
            flaky_backend.fail.add("update_vehicle")
            with pytest.raises(BackendError):
                await store.update_odometer(created.id, 60000)
            return store

        store = run(go())
        assert store.vehicles[0].current_odometer == 49000

    def test_failed_create_adds_nothing(self, flaky_backend, brz):
        flaky_backend.fail.add("create_vehicle")

        async def go():
            store = await loaded_store(flaky_backend)
            with pytest.raises(BackendError):
                await store.add_vehicle(brz)
            return store

        assert run(go()).vehicles == []

    def test_delete_vehicle_cascades(self, backend, brz):
        async def go():
            store = await loaded_store(backend)
            keep = await store.add_vehicle(replace(brz, model="WRX"))
            doomed = await store.add_vehicle(brz)
            await store.add_service(make_service(doomed.id))
            await store.add_service(make_service(keep.id))
            await store.add_reminder(make_reminder(doomed.id))
            await store.delete_vehicle(doomed.id)
            await store.wait_idle()
            return store, doomed, keep

        store, doomed, keep = run(go())
        assert [v.id for v in store.vehicles] == [keep.id]
        assert all(s.vehicle_id != doomed.id for s in store.services)
        assert all(r.vehicle_id != doomed.id for r in store.reminders)
        assert len(store.services) == 1

    def test_archive_moves_selection(self, backend, brz):
        async def go():
            store = await loaded_store(backend)
            first = await store.add_vehicle(brz)
            second = await store.add_vehicle(replace(brz, model="WRX"))
            await store.select_vehicle(first.id)
            await store.archive_vehicle(first.id)
            return store, first, second

        store, first, second = run(go())
        assert store.selected_vehicle_id == second.id
        assert [v.id for v in store.active_vehicles] == [second.id]
        assert store.get_vehicle(first.id).is_archived

    def test_selection_persists_across_sessions(self, backend, brz):
        async def go():
            store = await loaded_store(backend)
            await store.add_vehicle(brz)
            second = await store.add_vehicle(replace(brz, model="WRX"))
            await store.select_vehicle(second.id)
            store.close()
            again = await loaded_store(backend)
            return again, second

        again, second = run(go())
        assert again.selected_vehicle_id == second.id

    def test_select_unknown_vehicle_raises(self, backend):
        async def go():
            store = await loaded_store(backend)
            with pytest.raises(RecordNotFoundError):
                await store.select_vehicle("missing")

        run(go())

    def test_complete_reminder_reschedules(self, backend, brz):
        async def go():
            store = await loaded_store(backend)
            v = await store.add_vehicle(brz)
            r = await store.add_reminder(
                make_reminder(v.id, type="both", due_date="2024-01-01", due_mileage=50000,
                              interval_months=6, interval_miles=5000)
            )
            done = await store.complete_reminder(r.id, "2024-03-01")
            await store.wait_idle()
            return store, done

        store, done = run(go())
        assert done.due_date == "2024-09-01"
        assert done.due_mileage == 54000
        assert store.reminders[0].last_completed == "2024-03-01"

    def test_due_and_upcoming(self, backend, brz):
        async def go():
            store = await loaded_store(backend)
            v = await store.add_vehicle(brz)
            await store.add_reminder(make_reminder(v.id, title="Due", type="time", due_date="2024-01-01"))
            await store.add_reminder(make_reminder(v.id, title="Later", type="time", due_date="2030-01-01"))
            await store.add_reminder(
                make_reminder(v.id, title="Off", type="time", due_date="2024-01-01", is_active=False)
            )
            return store, v

        store, v = run(go())
        assert [r.title for r in store.due_reminders(v.id, "2024-02-01")] == ["Due"]
        assert [r.title for r in store.upcoming_reminders(v.id, "2024-02-01")] == ["Later"]

    def test_bad_service_date_rejected(self, backend, brz):
        async def go():
            store = await loaded_store(backend)
            v = await store.add_vehicle(brz)
            with pytest.raises(ValueError, match="Invalid date '03/01/2024'"):
                await store.add_service(make_service(v.id, date="03/01/2024"))
            with pytest.raises(ValueError, match="required"):
                await store.add_service(make_service(v.id, date=""))
            await store.wait_idle()
            return store

        store = run(go())
        assert store.services == []
        assert run(backend.list_services()) == []

    def test_dates_stored_in_canonical_form(self, backend, brz):
        async def go():
            store = await loaded_store(backend)
            v = await store.add_vehicle(brz)
            s = await store.add_service(make_service(v.id, date="2024-03-01T09:30:00"))
            updated = await store.update_service(s[0].id, date=" 2024-03-05 ")
            r = await store.add_reminder(make_reminder(v.id, type="both", due_date="", due_mileage=50000))
            return s[0], updated, r

        created, updated, reminder = run(go())
        assert created.date == "2024-03-01"
        assert updated.date == "2024-03-05"
        assert reminder.due_date is None

    def test_bad_reminder_date_rejected(self, backend, brz):
        async def go():
            store = await loaded_store(backend)
            v = await store.add_vehicle(brz)
            r = await store.add_reminder(make_reminder(v.id, type="time", due_date="2024-06-01"))
            with pytest.raises(ValueError):
                await store.update_reminder(r.id, due_date="next spring")
            return store

        assert run(go()).reminders[0].due_date == "2024-06-01"


class TestReceipts:
    """Tests for service creation with receipts."""

    def test_oversized_rejects_before_any_call(self, backend, brz):
        async def go():
            store = await loaded_store(backend)
            v = await store.add_vehicle(brz)
            big = ReceiptFile("scan.pdf", b"x" * (MAX_RECEIPT_BYTES + 1), "application/pdf")
            with pytest.raises(ReceiptTooLargeError):
                await store.add_service(make_service(v.id), [big])
            return store

        store = run(go())
        assert store.services == []
        assert run(backend.list_services()) == []

    def test_failed_upload_keeps_service(self, flaky_backend, brz):
        """One failed upload does not stop the others or undo the entry."""

        async def go():
            store = await loaded_store(flaky_backend)
            v = await store.add_vehicle(brz)
            files = [
                ReceiptFile("bad.pdf", b"1", "application/pdf"),
                ReceiptFile("good.pdf", b"2", "application/pdf"),
            ]
            return await store.add_service(make_service(v.id, cost=45.0), files)

        created, report = run(go())
        assert report.failed == ["bad.pdf"]
        assert [r.name for r in report.uploaded] == ["good.pdf"]
        assert not report.ok
        assert [r.name for r in created.receipts] == ["good.pdf"]


class TestChangeFeed:
    """Tests for change-feed driven reconciliation."""

    def test_external_change_triggers_refetch(self, backend, brz):
        async def go():
            store = await loaded_store(backend)
            await backend.create_vehicle(brz)
            await store.wait_idle()
            return store

        store = run(go())
        assert len(store.vehicles) == 1

    def test_closed_store_ignores_changes(self, backend, brz):
        async def go():
            store = await loaded_store(backend)
            store.close()
            await backend.create_vehicle(brz)
            await store.wait_idle()
            await store.reconcile()
            return store

        store = run(go())
        assert store.closed
        assert store.vehicles == []

    def test_load_finishing_after_close_is_dropped(self, tmp_path, brz):
        backend = GatedBackend(tmp_path / "data", user_id="user-1")

        async def go():
            v = await backend.create_vehicle(brz)
            await backend.set_preference("lastSelectedVehicleId", v.id)
            backend.gate = asyncio.Event()
            store = Store(backend)
            store.open()
            task = asyncio.ensure_future(store.load())
            await asyncio.sleep(0)
            store.close()
            backend.gate.set()
            await task
            return store

        store = run(go())
        assert store.vehicles == []
        assert store.selected_vehicle_id is None

    def test_refetch_finishing_after_close_is_dropped(self, tmp_path, brz):
        backend = GatedBackend(tmp_path / "data", user_id="user-1")

        async def go():
            store = await loaded_store(backend)
            backend.gate = asyncio.Event()
            task = asyncio.ensure_future(store.reconcile())
            await asyncio.sleep(0)
            store.close()
            await backend.create_vehicle(brz)
            backend.gate.set()
            await task
            return store

        store = run(go())
        assert store.vehicles == []
        assert store.error is None

    def test_failed_refetch_keeps_snapshot(self, flaky_backend, brz):
        async def go():
            store = await loaded_store(flaky_backend)
            await store.add_vehicle(brz)
            await store.wait_idle()
            flaky_backend.fail.add("list_reminders")
            await store.reconcile()
            return store

        store = run(go())
        assert len(store.vehicles) == 1
        assert isinstance(store.error, BackendError)


class TestSetReminders:
    """Tests for bulk reminder replacement."""

    def _setup(self, backend, brz):
        async def go():
            store = await loaded_store(backend)
            v = await store.add_vehicle(brz)
            a = await store.add_reminder(make_reminder(v.id, title="A", type="time", due_date="2024-01-01"))
            b = await store.add_reminder(make_reminder(v.id, title="B", type="time", due_date="2024-02-01"))
            await store.wait_idle()
            return store, a, b

        return go()

    def test_only_changed_entries_pushed(self, flaky_backend, brz):
        async def go():
            store, a, b = await self._setup(flaky_backend, brz)
            calls = []
            original = flaky_backend.update_reminder

            async def spy(reminder_id, **changes):
                calls.append(reminder_id)
                return await original(reminder_id, **changes)

            flaky_backend.update_reminder = spy
            failed = await store.set_reminders([replace(a, title="A2"), b])
            return store, calls, failed, a

        store, calls, failed, a = run(go())
        assert calls == [a.id]
        assert failed == []
        assert {r.title for r in run(flaky_backend.list_reminders())} == {"A2", "B"}
        assert {r.title for r in store.reminders} == {"A2", "B"}

    def test_failures_returned_not_rolled_back(self, flaky_backend, brz):
        async def go():
            store, a, b = await self._setup(flaky_backend, brz)
            flaky_backend.fail.add("update_reminder")
            failed = await store.set_reminders([replace(a, title="A2"), replace(b, title="B2")])
            return store, failed, a, b

        store, failed, a, b = run(go())
        assert sorted(failed) == sorted([a.id, b.id])
        assert {r.title for r in store.reminders} == {"A2", "B2"}


class TestLookups:
    """Tests for record lookups."""

    def test_get_vehicle_missing_raises(self, backend):
        store = Store(backend)
        with pytest.raises(RecordNotFoundError):
            store.get_vehicle("nope")

