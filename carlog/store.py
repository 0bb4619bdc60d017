"""
Store - the in-memory source of truth for vehicles, services and reminders.

Every mutation goes to the backend first and only the confirmed record is
applied locally; a failed backend call leaves state untouched and the
exception reaches the caller. Change-feed events from the backend trigger
a full refetch that replaces all three collections.
"""

import asyncio
import logging
from dataclasses import fields, replace
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .backends import SELECTED_VEHICLE_KEY, TABLES, Backend, ChangeEvent, Subscription
from .calculations import DateLike, is_due, normalize_date, schedule_next
from .errors import BackendError, RecordNotFoundError
from .loader import reminder_to_dict
from .receipts import ReceiptFile, UploadReport, check_receipt_sizes
from .reminder import Reminder
from .service_entry import ServiceEntry
from .state import (
    Action,
    Added,
    LoadFailed,
    LoadStarted,
    Loaded,
    ReconcileFailed,
    Reconciled,
    RemindersReplaced,
    Removed,
    State,
    Updated,
    VehicleRemoved,
    reduce,
)
from .vehicle import Vehicle

logger = logging.getLogger(__name__)


def _record_fields(record) -> Dict[str, Any]:
    """All fields of a record except its id, as update keyword arguments."""
    return {f.name: getattr(record, f.name) for f in fields(record) if f.name != "id"}


def _service_dates(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of service changes with the date in YYYY-MM-DD form."""
    changes = dict(changes)
    if "date" in changes:
        changes["date"] = normalize_date(changes["date"], required=True)
    return changes


def _reminder_dates(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of reminder changes with dates in YYYY-MM-DD form; blank means unset."""
    changes = dict(changes)
    for name in ("due_date", "last_completed"):
        if name in changes:
            changes[name] = normalize_date(changes[name])
    return changes


class Store:
    """Reducer-style store bound to one backend and one signed-in user."""

    def __init__(self, backend: Backend):
        self.backend = backend
        self.state = State()
        self.selected_vehicle_id: Optional[str] = None
        self._subscriptions: List[Subscription] = []
        self._pending: Set[asyncio.Task] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def vehicles(self) -> List[Vehicle]:
        return self.state.vehicles

    @property
    def services(self) -> List[ServiceEntry]:
        return self.state.services

    @property
    def reminders(self) -> List[Reminder]:
        return self.state.reminders

    @property
    def error(self) -> Optional[Exception]:
        return self.state.error

    @property
    def loading(self) -> bool:
        return self.state.loading

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def active_vehicles(self) -> List[Vehicle]:
        """Vehicles not archived, in collection order."""
        return [v for v in self.vehicles if not v.is_archived]

    def get_vehicle(self, vehicle_id: str) -> Vehicle:
        for vehicle in self.vehicles:
            if vehicle.id == vehicle_id:
                return vehicle
        raise RecordNotFoundError("Vehicle", vehicle_id)

    def get_reminder(self, reminder_id: str) -> Reminder:
        for reminder in self.reminders:
            if reminder.id == reminder_id:
                return reminder
        raise RecordNotFoundError("Reminder", reminder_id)

    def services_for(self, vehicle_id: str) -> List[ServiceEntry]:
        return [s for s in self.services if s.vehicle_id == vehicle_id]

    def reminders_for(self, vehicle_id: str) -> List[Reminder]:
        return [r for r in self.reminders if r.vehicle_id == vehicle_id]

    def due_reminders(self, vehicle_id: str, now: Optional[DateLike] = None) -> List[Reminder]:
        """Active reminders of a vehicle that are due as of now."""
        now = now or date.today()
        vehicle = self.get_vehicle(vehicle_id)
        return [r for r in self.reminders_for(vehicle_id) if r.is_active and is_due(r, vehicle, now)]

    def upcoming_reminders(self, vehicle_id: str, now: Optional[DateLike] = None) -> List[Reminder]:
        """Active reminders of a vehicle that are not yet due."""
        now = now or date.today()
        vehicle = self.get_vehicle(vehicle_id)
        return [
            r for r in self.reminders_for(vehicle_id) if r.is_active and not is_due(r, vehicle, now)
        ]

    def dispatch(self, action: Action) -> None:
        """Apply an action unless the store has been closed."""
        if self._closed:
            logger.debug("Store closed, dropping %s", type(action).__name__)
            return
        self.state = reduce(self.state, action)

    # ------------------------------------------------------------------
    # Loading and reconciliation
    # ------------------------------------------------------------------

    async def _fetch_all(self) -> Tuple[List[Vehicle], List[ServiceEntry], List[Reminder]]:
        vehicles, services, reminders = await asyncio.gather(
            self.backend.list_vehicles(),
            self.backend.list_services(),
            self.backend.list_reminders(),
        )
        return vehicles, services, reminders

    async def load(self) -> None:
        """
        Initial fetch of all three collections.

        On any failure the error is kept in state and every collection is
        left empty.
        """
        self.dispatch(LoadStarted())
        try:
            vehicles, services, reminders = await self._fetch_all()
        except Exception as e:
            logger.error("Initial load failed: %s", e)
            self.dispatch(LoadFailed(e))
            return
        if self._closed:
            logger.debug("Store closed during load, dropping result")
            return
        self.dispatch(Loaded(vehicles, services, reminders))
        await self._restore_selection()

    async def reconcile(self) -> None:
        """Refetch everything and replace local state wholesale."""
        try:
            vehicles, services, reminders = await self._fetch_all()
        except Exception as e:
            logger.error("Refetch after change failed: %s", e)
            self.dispatch(ReconcileFailed(e))
            return
        if self._closed:
            logger.debug("Store closed during refetch, dropping result")
            return
        self.dispatch(Reconciled(vehicles, services, reminders))

    def open(self) -> None:
        """Subscribe to the change feed of every table."""
        for table in TABLES:
            self._subscriptions.append(self.backend.subscribe(table, self._on_change))

    def _on_change(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, change on %s not reconciled", event.table)
            return
        logger.debug("Change on %s (%s %s), refetching", event.table, event.event, event.record_id[:8])
        task = loop.create_task(self.reconcile())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def wait_idle(self) -> None:
        """Wait for every refetch scheduled by the change feed."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def close(self) -> None:
        """
        Stop listening for changes.

        Backend calls still in flight are not cancelled; their results are
        dropped when they arrive.
        """
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []
        self._closed = True

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    @property
    def selected_vehicle(self) -> Optional[Vehicle]:
        for vehicle in self.vehicles:
            if vehicle.id == self.selected_vehicle_id:
                return vehicle
        return None

    async def select_vehicle(self, vehicle_id: Optional[str]) -> None:
        if vehicle_id is not None:
            self.get_vehicle(vehicle_id)
        await self.backend.set_preference(SELECTED_VEHICLE_KEY, vehicle_id)
        self.selected_vehicle_id = vehicle_id

    async def _restore_selection(self) -> None:
        """Reselect the last used vehicle, else the first active one."""
        last = await self.backend.get_preference(SELECTED_VEHICLE_KEY)
        if self._closed:
            return
        active = self.active_vehicles
        if last and any(v.id == last for v in active):
            self.selected_vehicle_id = last
        elif active:
            self.selected_vehicle_id = active[0].id
        else:
            self.selected_vehicle_id = None

    # ------------------------------------------------------------------
    # Vehicles
    # ------------------------------------------------------------------

    async def add_vehicle(self, vehicle: Vehicle) -> Vehicle:
        """Create a vehicle; the backend assigns its id."""
        created = await self.backend.create_vehicle(vehicle)
        self.dispatch(Added("vehicle", created))
        return created

    async def update_vehicle(self, vehicle_id: str, **changes: Any) -> Vehicle:
        updated = await self.backend.update_vehicle(vehicle_id, **changes)
        self.dispatch(Updated("vehicle", updated))
        return updated

    async def update_odometer(self, vehicle_id: str, odometer: Optional[int]) -> Vehicle:
        return await self.update_vehicle(vehicle_id, current_odometer=odometer)

    async def archive_vehicle(self, vehicle_id: str, archived: bool = True) -> Vehicle:
        """Archive (or restore) a vehicle, moving the selection off it if needed."""
        updated = await self.update_vehicle(vehicle_id, is_archived=archived)
        if archived and self.selected_vehicle_id == vehicle_id:
            others = self.active_vehicles
            self.selected_vehicle_id = others[0].id if others else None
        return updated

    async def delete_vehicle(self, vehicle_id: str) -> None:
        """Delete a vehicle and drop its services and reminders locally."""
        await self.backend.delete_vehicle(vehicle_id)
        self.dispatch(VehicleRemoved(vehicle_id))
        if self.selected_vehicle_id == vehicle_id:
            others = self.active_vehicles
            self.selected_vehicle_id = others[0].id if others else None

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    async def add_service(
        self, service: ServiceEntry, files: Iterable[ReceiptFile] = ()
    ) -> Tuple[ServiceEntry, UploadReport]:
        """
        Create a service entry and upload its receipts.

        Oversized files reject the whole call before anything is sent. A
        failed upload does not stop the others or undo the entry; failures
        are collected in the returned report.
        """
        service = replace(service, **_service_dates({"date": service.date}))
        files = list(files)
        check_receipt_sizes(files)

        created = await self.backend.create_service(service)
        report = UploadReport()
        for f in files:
            try:
                receipt = await self.backend.upload_receipt(created.id, f.name, f.data, f.mime_type)
            except BackendError as e:
                logger.error("Failed to upload receipt %s: %s", f.name, e)
                report.failed.append(f.name)
                continue
            report.uploaded.append(receipt)

        if report.failed:
            logger.warning(
                "Failed to upload %d receipt(s): %s", len(report.failed), ", ".join(report.failed)
            )

        created.receipts = created.receipts + report.uploaded
        self.dispatch(Added("service", created))
        return created, report

    async def update_service(self, service_id: str, **changes: Any) -> ServiceEntry:
        changes = _service_dates(changes)
        updated = await self.backend.update_service(service_id, **changes)
        self.dispatch(Updated("service", updated))
        return updated

    async def delete_service(self, service_id: str) -> None:
        await self.backend.delete_service(service_id)
        self.dispatch(Removed("service", service_id))

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    async def add_reminder(self, reminder: Reminder) -> Reminder:
        reminder = replace(
            reminder,
            **_reminder_dates({"due_date": reminder.due_date, "last_completed": reminder.last_completed}),
        )
        created = await self.backend.create_reminder(reminder)
        self.dispatch(Added("reminder", created))
        return created

    async def update_reminder(self, reminder_id: str, **changes: Any) -> Reminder:
        changes = _reminder_dates(changes)
        updated = await self.backend.update_reminder(reminder_id, **changes)
        self.dispatch(Updated("reminder", updated))
        return updated

    async def delete_reminder(self, reminder_id: str) -> None:
        await self.backend.delete_reminder(reminder_id)
        self.dispatch(Removed("reminder", reminder_id))

    async def complete_reminder(
        self, reminder_id: str, completion_date: Optional[DateLike] = None
    ) -> Reminder:
        """Mark a reminder done and reschedule it from today's odometer."""
        reminder = self.get_reminder(reminder_id)
        vehicle = self.get_vehicle(reminder.vehicle_id)
        rescheduled = schedule_next(reminder, vehicle, completion_date or date.today())
        return await self.update_reminder(reminder_id, **_record_fields(rescheduled))

    async def set_reminders(self, reminders: List[Reminder]) -> List[str]:
        """
        Replace the reminder collection in bulk.

        Local state changes immediately. Each reminder whose serialized
        value differs from the previous one is then pushed to the backend;
        failures are logged and returned by id, never retried or rolled
        back. The next refetch settles any disagreement.
        """
        previous = {r.id: reminder_to_dict(r) for r in self.reminders}
        self.dispatch(RemindersReplaced(reminders))

        changed = [
            r for r in reminders if r.id in previous and previous[r.id] != reminder_to_dict(r)
        ]
        results = await asyncio.gather(
            *(self.backend.update_reminder(r.id, **_record_fields(r)) for r in changed),
            return_exceptions=True,
        )

        failed = []
        for reminder, result in zip(changed, results):
            if isinstance(result, Exception):
                logger.error("Failed to sync reminder %s: %s", reminder.id[:8], result)
                failed.append(reminder.id)
        return failed
