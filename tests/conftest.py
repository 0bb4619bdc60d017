"""Shared fixtures for carlog tests."""

import asyncio
import hashlib
import hmac
import time

import pytest

from carlog import BackendError, LocalBackend, Reminder, ServiceEntry, Store, Vehicle


def run(coro):
    """Drive a coroutine to completion from a plain test function."""
    return asyncio.run(coro)


class FlakyBackend(LocalBackend):
    """LocalBackend whose named methods raise BackendError."""

    def __init__(self, root, fail=(), **kwargs):
        super().__init__(root, **kwargs)
        self.fail = set(fail)

    def _check(self, name):
        if name in self.fail:
            raise BackendError(f"{name} failed")

    async def list_vehicles(self):
        self._check("list_vehicles")
        return await super().list_vehicles()

    async def list_services(self):
        self._check("list_services")
        return await super().list_services()

    async def list_reminders(self):
        self._check("list_reminders")
        return await super().list_reminders()

    async def create_vehicle(self, vehicle):
        self._check("create_vehicle")
        return await super().create_vehicle(vehicle)

    async def update_vehicle(self, vehicle_id, **changes):
        self._check("update_vehicle")
        return await super().update_vehicle(vehicle_id, **changes)

    async def delete_vehicle(self, vehicle_id):
        self._check("delete_vehicle")
        return await super().delete_vehicle(vehicle_id)

    async def update_reminder(self, reminder_id, **changes):
        self._check("update_reminder")
        return await super().update_reminder(reminder_id, **changes)

    async def upload_receipt(self, service_id, name, data, mime_type):
        self._check("upload_receipt")
        if name.startswith("bad"):
            raise BackendError(f"Failed to upload receipt {name}")
        return await super().upload_receipt(service_id, name, data, mime_type)


@pytest.fixture
def backend(tmp_path):
    """A signed-in LocalBackend on an empty data directory."""
    return LocalBackend(tmp_path / "data", user_id="user-1", secret_key="test-secret")


@pytest.fixture
def flaky_backend(tmp_path):
    return FlakyBackend(tmp_path / "data", user_id="user-1", secret_key="test-secret")


@pytest.fixture
def brz():
    return Vehicle(id="", make="Subaru", model="BRZ", year=2015, current_odometer=49000)


def make_service(vehicle_id, date="2024-03-01", **kwargs):
    return ServiceEntry(id="", vehicle_id=vehicle_id, date=date, **kwargs)


def make_reminder(vehicle_id, title="Oil change", **kwargs):
    return Reminder(id="", vehicle_id=vehicle_id, title=title, **kwargs)


async def loaded_store(backend):
    store = Store(backend)
    store.open()
    await store.load()
    return store


def stripe_signature(payload, secret, timestamp=None):
    """A Stripe-Signature header (t=<ts>,v1=<hmac>) as the processor sends it."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"
