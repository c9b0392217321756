"""
FleetData: immutable snapshot of everything the coordinator publishes.

This is a pure data module with no HA or network dependencies.
"""
from __future__ import annotations

import dataclasses

from .models import Alarm, Client, Ticket, Unit


@dataclasses.dataclass(frozen=True)
class FleetData:
    """
    Typed, copy-on-write snapshot of the fleet.

    Always replace via dataclasses.replace(), never mutate in place.
    """

    # Current units, replaced wholesale on every successful units fetch
    units: list[Unit] = dataclasses.field(default_factory=list)

    clients: list[Client] = dataclasses.field(default_factory=list)

    # Accumulated alarms pending acknowledgement, in arrival order
    alarms: list[Alarm] = dataclasses.field(default_factory=list)

    # Newest ticket first
    tickets: list[Ticket] = dataclasses.field(default_factory=list)

    # "; "-joined messages of the last tick's failures, "" when healthy
    error: str = ""

    # Alarm notification muted by the operator
    muted: bool = False
