"""
Reducer for the in-memory record collections.

State is never mutated in place: ``reduce(state, action)`` returns a new
State. Mutations (Added, Updated, Removed, VehicleRemoved,
RemindersReplaced) patch one collection with a confirmed record;
Reconciled replaces everything with a fresh backend snapshot and so wins
over any mutation applied before it.
"""

from dataclasses import dataclass, field, replace
from typing import List, Optional, Union

from .reminder import Reminder
from .service_entry import ServiceEntry
from .vehicle import Vehicle

Record = Union[Vehicle, ServiceEntry, Reminder]

KIND_FIELDS = {"vehicle": "vehicles", "service": "services", "reminder": "reminders"}


@dataclass(frozen=True)
class State:
    vehicles: List[Vehicle] = field(default_factory=list)
    services: List[ServiceEntry] = field(default_factory=list)
    reminders: List[Reminder] = field(default_factory=list)
    loading: bool = False
    error: Optional[Exception] = None


# =============================================================================
# Actions
# =============================================================================


@dataclass(frozen=True)
class LoadStarted:
    pass


@dataclass(frozen=True)
class Loaded:
    vehicles: List[Vehicle]
    services: List[ServiceEntry]
    reminders: List[Reminder]


@dataclass(frozen=True)
class LoadFailed:
    error: Exception


@dataclass(frozen=True)
class Reconciled:
    vehicles: List[Vehicle]
    services: List[ServiceEntry]
    reminders: List[Reminder]


@dataclass(frozen=True)
class ReconcileFailed:
    error: Exception


@dataclass(frozen=True)
class Added:
    kind: str
    record: Record


@dataclass(frozen=True)
class Updated:
    kind: str
    record: Record


@dataclass(frozen=True)
class Removed:
    kind: str
    record_id: str


@dataclass(frozen=True)
class VehicleRemoved:
    vehicle_id: str


@dataclass(frozen=True)
class RemindersReplaced:
    reminders: List[Reminder]


Action = Union[
    LoadStarted,
    Loaded,
    LoadFailed,
    Reconciled,
    ReconcileFailed,
    Added,
    Updated,
    Removed,
    VehicleRemoved,
    RemindersReplaced,
]


def _collection(kind: str) -> str:
    if kind not in KIND_FIELDS:
        raise ValueError(f"Unknown record kind '{kind}'")
    return KIND_FIELDS[kind]


def reduce(state: State, action: Action) -> State:
    """Apply one action and return the resulting state."""
    if isinstance(action, LoadStarted):
        return replace(state, loading=True)

    if isinstance(action, (Loaded, Reconciled)):
        return State(
            vehicles=list(action.vehicles),
            services=list(action.services),
            reminders=list(action.reminders),
        )

    if isinstance(action, LoadFailed):
        # All or nothing: a failed load never leaves partial collections
        return State(error=action.error)

    if isinstance(action, ReconcileFailed):
        # Keep the last good snapshot
        return replace(state, loading=False, error=action.error)

    if isinstance(action, Added):
        name = _collection(action.kind)
        items = getattr(state, name)
        if any(item.id == action.record.id for item in items):
            # Already delivered by a refetch
            items = [action.record if item.id == action.record.id else item for item in items]
        else:
            items = [action.record] + items
        return replace(state, **{name: items})

    if isinstance(action, Updated):
        name = _collection(action.kind)
        items = [
            action.record if item.id == action.record.id else item
            for item in getattr(state, name)
        ]
        return replace(state, **{name: items})

    if isinstance(action, Removed):
        name = _collection(action.kind)
        items = [item for item in getattr(state, name) if item.id != action.record_id]
        return replace(state, **{name: items})

    if isinstance(action, VehicleRemoved):
        vid = action.vehicle_id
        return replace(
            state,
            vehicles=[v for v in state.vehicles if v.id != vid],
            services=[s for s in state.services if s.vehicle_id != vid],
            reminders=[r for r in state.reminders if r.vehicle_id != vid],
        )

    if isinstance(action, RemindersReplaced):
        return replace(state, reminders=list(action.reminders))

    raise TypeError(f"Unknown action {action!r}")
