"""
Platform for the alarm mute switch.
While on, pending alarms stay listed but the alarm sounding sensor is off.
"""
from __future__ import annotations

import logging

from homeassistant import config_entries
from homeassistant.components.switch import SwitchDeviceClass, SwitchEntity
from homeassistant.core import HomeAssistant
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .coordinator import FleetOpsCoordinator

_LOGGER = logging.getLogger(__name__)


class AlarmMuteSwitch(CoordinatorEntity[FleetOpsCoordinator], SwitchEntity):
    """Mutes alarm notifications for the whole fleet."""

    _attr_device_class = SwitchDeviceClass.SWITCH

    def __init__(self, coordinator: FleetOpsCoordinator, entry_name: str) -> None:
        super().__init__(coordinator)
        self._attr_unique_id = f"fleetops_{coordinator.entry_data.get('guid')}_mute"
        self._attr_name = f"{entry_name} Mute Alarms"

    @property
    def available(self) -> bool:
        return True

    @property
    def is_on(self) -> bool:
        return self.coordinator.data.muted

    @property
    def icon(self) -> str | None:
        return "mdi:volume-off" if self.is_on else "mdi:volume-high"

    async def async_turn_on(self, **kwargs) -> None:
        _LOGGER.debug("Muting alarms")
        self.coordinator.async_set_muted(True)

    async def async_turn_off(self, **kwargs) -> None:
        _LOGGER.debug("Unmuting alarms")
        self.coordinator.async_set_muted(False)


async def async_setup_entry(
    hass: HomeAssistant,
    config_entry: config_entries.ConfigEntry,
    async_add_entities,
):
    """Add the mute switch for passed config_entry in HA."""
    coordinator: FleetOpsCoordinator = config_entry.runtime_data
    entry_name = config_entry.data.get("entry_name", "Fleet Ops")
    async_add_entities([AlarmMuteSwitch(coordinator, entry_name)])
