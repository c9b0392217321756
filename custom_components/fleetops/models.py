"""
Domain models for the Fleet Ops integration.

This module contains pure data classes representing fleet entities.
These classes have no dependencies on HTTP, API logic, or Home Assistant internals.
"""
from __future__ import annotations

import dataclasses
import enum
from datetime import datetime
from typing import Any

from .const import OVERRIDE_FIELDS


@dataclasses.dataclass(frozen=True)
class Location:
    """Position of a unit or alarm."""

    lat: float
    lng: float
    address: str | None = None


@dataclasses.dataclass(frozen=True)
class UnitRaw:
    """Unit as normalized from the upstream unit list, before overrides."""

    unit_id: int
    number: str
    model: str
    last_update: datetime
    location: Location
    ignition: bool
    speed: float
    driver: str | None = None
    has_driver: bool = False
    client_id: int | None = None

    # Raw telemetry blocks, passed through untouched
    can: dict | None = None
    fuel: dict | None = None
    drivers: list | None = None
    supply_voltage: float | None = None
    relays: dict | None = None
    io_din: dict | None = None


@dataclasses.dataclass(frozen=True)
class Unit:
    """Canonical view of a vehicle: live telemetry merged with the operator override."""

    unit_id: int
    number: str
    model: str
    last_update: datetime
    location: Location
    ignition: bool
    speed: float
    client_id: int | None
    driver: str | None = None
    driver_phone: str | None = None
    is_mock: bool = True

    can: dict | None = None
    fuel: dict | None = None
    drivers: list | None = None
    supply_voltage: float | None = None
    relays: dict | None = None
    io_din: dict | None = None


@dataclasses.dataclass(frozen=True)
class Override:
    """Operator correction to the editable subset of a unit's fields."""

    number: str | None = None
    model: str | None = None
    driver: str | None = None
    driver_phone: str | None = None
    client_id: int | None = None
    is_mock: bool = False

    def fields(self) -> dict[str, Any]:
        """Return only the editable fields that are set."""
        return {
            name: getattr(self, name)
            for name in OVERRIDE_FIELDS
            if getattr(self, name) is not None
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the stored (camelCase) key names."""
        data = {OVERRIDE_FIELDS[name]: value for name, value in self.fields().items()}
        data["isMock"] = self.is_mock
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Override:
        kwargs = {
            name: data[stored]
            for name, stored in OVERRIDE_FIELDS.items()
            if data.get(stored) is not None
        }
        return cls(is_mock=bool(data.get("isMock", False)), **kwargs)


@dataclasses.dataclass(frozen=True)
class Alarm:
    """Time-stamped event reported by a device, pending operator acknowledgement."""

    id: str
    device_id: int
    timestamp: datetime
    type: str
    message: str
    location: Location


@dataclasses.dataclass(frozen=True)
class Client:
    """Customer owning one or more units."""

    id: int | None
    company: str
    contact_person: str = ""
    phone: str = ""
    email: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "company": self.company,
            "contactPerson": self.contact_person,
            "phone": self.phone,
            "email": self.email,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Client:
        return cls(
            id=data.get("id"),
            company=data.get("company", ""),
            contact_person=data.get("contactPerson", ""),
            phone=data.get("phone", ""),
            email=data.get("email", ""),
        )


class TicketStatus(str, enum.Enum):
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


@dataclasses.dataclass(frozen=True)
class TicketHistoryItem:
    status: TicketStatus
    timestamp: datetime
    notes: str
    author: str


@dataclasses.dataclass(frozen=True)
class Ticket:
    """Follow-up record created from an acknowledged alarm."""

    id: str
    alarm_id: str
    device_id: int
    device_name: str
    status: TicketStatus
    created_at: datetime
    summary: str
    # Newest entry first
    history: tuple[TicketHistoryItem, ...] = ()
