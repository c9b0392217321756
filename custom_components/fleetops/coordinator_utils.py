"""
Pure helpers for the Fleet Ops coordinator.

Responsibilities:
- Give every unit its default owning client.
- Merge live unit data with operator overrides.
- Accumulate alarms without duplicates.
- Pick the map marker color of a unit.

No HA imports; these functions are pure data primitives.
"""
from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Iterable

from .const import MARKER_IDLE, MARKER_MOVING, MARKER_OFF
from .models import Alarm, Client, Override, Unit, UnitRaw


def assign_default_clients(raws: list[UnitRaw], clients: list[Client]) -> list[UnitRaw]:
    """
    Return copies of raws owned round-robin by clients, in upstream order.

    With no clients every unit stays unowned.
    """
    if not clients:
        return [dataclasses.replace(raw, client_id=None) for raw in raws]
    return [
        dataclasses.replace(raw, client_id=clients[index % len(clients)].id)
        for index, raw in enumerate(raws)
    ]


def merge_unit(raw: UnitRaw, override: Override | None) -> Unit:
    """
    Build the published Unit from live data and an optional override.

    Set override fields win one by one; everything else passes through.
    An override of any kind marks the unit as real data.
    """
    unit = Unit(
        unit_id=raw.unit_id,
        number=raw.number,
        model=raw.model,
        last_update=raw.last_update,
        location=raw.location,
        ignition=raw.ignition,
        speed=raw.speed,
        client_id=raw.client_id,
        driver=raw.driver,
        is_mock=not raw.has_driver,
        can=raw.can,
        fuel=raw.fuel,
        drivers=raw.drivers,
        supply_voltage=raw.supply_voltage,
        relays=raw.relays,
        io_din=raw.io_din,
    )
    if override is None:
        return unit
    return dataclasses.replace(unit, is_mock=False, **override.fields())


def merge_units(raws: list[UnitRaw], overrides: dict[int, Override]) -> list[Unit]:
    return [merge_unit(raw, overrides.get(raw.unit_id)) for raw in raws]


def ingest_alarms(new_alarms: Iterable[Alarm], existing: Iterable[Alarm]) -> list[Alarm]:
    """
    Append the alarms of new_alarms whose id is not yet known.

    Order is existing first, then new arrivals in the order received;
    nothing is re-sorted. Duplicates inside new_alarms collapse to the first.
    """
    result = list(existing)
    seen = {alarm.id for alarm in result}
    for alarm in new_alarms:
        if alarm.id in seen:
            continue
        seen.add(alarm.id)
        result.append(alarm)
    return result


def filter_dismissed(alarms: Iterable[Alarm], dismissed: dict[str, datetime]) -> list[Alarm]:
    return [alarm for alarm in alarms if alarm.id not in dismissed]


def prune_dismissed(dismissed: dict[str, datetime], lower_bound: datetime) -> dict[str, datetime]:
    """Forget dismissals that no future window can return again."""
    return {alarm_id: ts for alarm_id, ts in dismissed.items() if ts >= lower_bound}


def marker_color(unit: Unit) -> str:
    if not unit.ignition:
        return MARKER_OFF
    return MARKER_MOVING if unit.speed > 0 else MARKER_IDLE
