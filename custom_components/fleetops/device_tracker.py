"""
Platform for the fleet map.
One tracker entity per unit, positioned from the coordinator snapshot and
colored by its movement state.
"""
from __future__ import annotations

import logging

from homeassistant import config_entries
from homeassistant.components.device_tracker import SourceType
from homeassistant.components.device_tracker.config_entry import TrackerEntity
from homeassistant.core import HomeAssistant, callback
from homeassistant.helpers.entity import DeviceInfo
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .coordinator import FleetOpsCoordinator
from .coordinator_utils import marker_color

_LOGGER = logging.getLogger(__name__)


class UnitTracker(CoordinatorEntity[FleetOpsCoordinator], TrackerEntity):
    """Map marker of a single unit."""

    def __init__(self, coordinator: FleetOpsCoordinator, unit_id: int) -> None:
        super().__init__(coordinator)
        self._unit_id = unit_id
        unit = coordinator.get_unit(unit_id)
        device_name = unit.number if unit else f"Vehicle {unit_id}"
        self._attr_unique_id = f"fleetops_{coordinator.entry_data.get('guid')}_{unit_id}_gps"
        self._attr_name = f"{device_name} Location"
        self._attr_icon = "mdi:truck"

    @property
    def device_info(self) -> DeviceInfo | None:
        return self.coordinator.get_device_info(self._unit_id)

    @property
    def available(self) -> bool:
        return super().available and self.coordinator.get_unit(self._unit_id) is not None

    @property
    def latitude(self) -> float | None:
        unit = self.coordinator.get_unit(self._unit_id)
        return unit.location.lat if unit else None

    @property
    def longitude(self) -> float | None:
        unit = self.coordinator.get_unit(self._unit_id)
        return unit.location.lng if unit else None

    @property
    def location_name(self) -> str | None:
        # None lets HA resolve zones from the coordinates
        return None

    @property
    def source_type(self) -> SourceType:
        return SourceType.GPS

    @property
    def extra_state_attributes(self) -> dict | None:
        unit = self.coordinator.get_unit(self._unit_id)
        if unit is None:
            return None
        return {
            "marker_color": marker_color(unit),
            "number": unit.number,
            "model": unit.model,
            "driver": unit.driver,
            "driver_phone": unit.driver_phone,
            "client_id": unit.client_id,
            "ignition": unit.ignition,
            "speed": unit.speed,
            "is_mock": unit.is_mock,
            "address": unit.location.address,
            "last_update": unit.last_update.isoformat(),
        }


async def async_setup_entry(
    hass: HomeAssistant,
    config_entry: config_entries.ConfigEntry,
    async_add_entities,
):
    """Add a tracker for every unit now, and for units that appear later."""
    coordinator: FleetOpsCoordinator = config_entry.runtime_data
    known: set[int] = set()

    @callback
    def _add_new_units() -> None:
        new_ids = [u.unit_id for u in coordinator.data.units if u.unit_id not in known]
        if not new_ids:
            return
        known.update(new_ids)
        _LOGGER.debug("Adding trackers for units %s", new_ids)
        async_add_entities([UnitTracker(coordinator, unit_id) for unit_id in new_ids])

    _add_new_units()
    config_entry.async_on_unload(coordinator.async_add_listener(_add_new_units))
