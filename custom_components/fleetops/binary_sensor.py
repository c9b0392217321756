"""
Platform for alarm indicators.
Sets up a per-unit "alarm pending" sensor and one fleet-wide "alarm sounding"
sensor that goes off while notifications are muted.
"""
from __future__ import annotations

import logging

from homeassistant import config_entries
from homeassistant.components.binary_sensor import BinarySensorDeviceClass, BinarySensorEntity
from homeassistant.core import HomeAssistant, callback
from homeassistant.helpers.entity import DeviceInfo
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .coordinator import FleetOpsCoordinator

_LOGGER = logging.getLogger(__name__)


class UnitAlarmSensor(CoordinatorEntity[FleetOpsCoordinator], BinarySensorEntity):
    """On while the unit has at least one undismissed alarm."""

    _attr_device_class = BinarySensorDeviceClass.PROBLEM

    def __init__(self, coordinator: FleetOpsCoordinator, unit_id: int) -> None:
        super().__init__(coordinator)
        self._unit_id = unit_id
        unit = coordinator.get_unit(unit_id)
        device_name = unit.number if unit else f"Vehicle {unit_id}"
        self._attr_unique_id = f"fleetops_{coordinator.entry_data.get('guid')}_{unit_id}_alarm"
        self._attr_name = f"{device_name} Alarm"

    def _alarms(self):
        return [a for a in self.coordinator.data.alarms if a.device_id == self._unit_id]

    @property
    def device_info(self) -> DeviceInfo | None:
        return self.coordinator.get_device_info(self._unit_id)

    @property
    def is_on(self) -> bool:
        return bool(self._alarms())

    @property
    def icon(self) -> str | None:
        if self.is_on:
            return "mdi:bell-alert"
        return "mdi:bell"

    @property
    def extra_state_attributes(self) -> dict:
        alarms = self._alarms()
        latest = alarms[-1] if alarms else None
        return {
            "alarm_count": len(alarms),
            "latest_alarm_id": latest.id if latest else None,
            "latest_alarm_type": latest.type if latest else None,
            "latest_alarm_message": latest.message if latest else None,
        }


class FleetAlarmSoundingSensor(CoordinatorEntity[FleetOpsCoordinator], BinarySensorEntity):
    """
    Drives the audible alarm: on when any alarm is pending and not muted.
    """

    _attr_device_class = BinarySensorDeviceClass.SOUND

    def __init__(self, coordinator: FleetOpsCoordinator, entry_name: str) -> None:
        super().__init__(coordinator)
        self._attr_unique_id = f"fleetops_{coordinator.entry_data.get('guid')}_alarm_sounding"
        self._attr_name = f"{entry_name} Alarm Sounding"

    @property
    def is_on(self) -> bool:
        data = self.coordinator.data
        return bool(data.alarms) and not data.muted

    @property
    def icon(self) -> str | None:
        if self.coordinator.data.muted:
            return "mdi:volume-off"
        return "mdi:alarm-light" if self.is_on else "mdi:alarm-light-outline"


async def async_setup_entry(
    hass: HomeAssistant,
    config_entry: config_entries.ConfigEntry,
    async_add_entities,
):
    """Add alarm sensors for passed config_entry in HA."""
    coordinator: FleetOpsCoordinator = config_entry.runtime_data
    entry_name = config_entry.data.get("entry_name", "Fleet Ops")
    known: set[int] = set()

    async_add_entities([FleetAlarmSoundingSensor(coordinator, entry_name)])

    @callback
    def _add_new_units() -> None:
        new_ids = [u.unit_id for u in coordinator.data.units if u.unit_id not in known]
        if not new_ids:
            return
        known.update(new_ids)
        _LOGGER.debug("Adding alarm sensors for units %s", new_ids)
        async_add_entities([UnitAlarmSensor(coordinator, unit_id) for unit_id in new_ids])

    _add_new_units()
    config_entry.async_on_unload(coordinator.async_add_listener(_add_new_units))
