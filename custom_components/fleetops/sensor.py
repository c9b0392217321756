"""
Platform for fleet-wide status sensors: pending alarm count, open ticket
count and connection status.
"""
from __future__ import annotations

import logging

from homeassistant import config_entries
from homeassistant.components.sensor import SensorDeviceClass, SensorEntity, SensorStateClass
from homeassistant.const import EntityCategory
from homeassistant.core import HomeAssistant
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .coordinator import FleetOpsCoordinator
from .models import TicketStatus

_LOGGER = logging.getLogger(__name__)

OPEN_TICKET_STATUSES = (TicketStatus.OPEN, TicketStatus.IN_PROGRESS)


class FleetSensor(CoordinatorEntity[FleetOpsCoordinator], SensorEntity):
    """Base for sensors that describe the whole fleet rather than one unit."""

    def __init__(self, coordinator: FleetOpsCoordinator, entry_name: str, key: str, label: str) -> None:
        super().__init__(coordinator)
        self._attr_unique_id = f"fleetops_{coordinator.entry_data.get('guid')}_{key}"
        self._attr_name = f"{entry_name} {label}"


class ActiveAlarmCountSensor(FleetSensor):
    _attr_icon = "mdi:bell-ring"
    _attr_state_class = SensorStateClass.MEASUREMENT

    def __init__(self, coordinator: FleetOpsCoordinator, entry_name: str) -> None:
        super().__init__(coordinator, entry_name, "active_alarms", "Active Alarms")

    @property
    def native_value(self) -> int:
        return len(self.coordinator.data.alarms)


class OpenTicketCountSensor(FleetSensor):
    """Tickets that are Open or In Progress."""

    _attr_icon = "mdi:ticket-outline"
    _attr_state_class = SensorStateClass.MEASUREMENT

    def __init__(self, coordinator: FleetOpsCoordinator, entry_name: str) -> None:
        super().__init__(coordinator, entry_name, "open_tickets", "Open Tickets")

    @property
    def native_value(self) -> int:
        return sum(1 for t in self.coordinator.data.tickets if t.status in OPEN_TICKET_STATUSES)


class ConnectionStatusSensor(FleetSensor):
    """
    "ok" after a clean poll, "error" while the last poll reported a failure.
    The combined error text is exposed as an attribute.
    """

    _attr_device_class = SensorDeviceClass.ENUM
    _attr_options = ["ok", "error"]
    _attr_entity_category = EntityCategory.DIAGNOSTIC

    def __init__(self, coordinator: FleetOpsCoordinator, entry_name: str) -> None:
        super().__init__(coordinator, entry_name, "connection_status", "Connection Status")

    @property
    def available(self) -> bool:
        # Stays available so failures remain visible
        return True

    @property
    def native_value(self) -> str:
        if self.coordinator.data.error or not self.coordinator.last_update_success:
            return "error"
        return "ok"

    @property
    def icon(self) -> str | None:
        return "mdi:cloud-check" if self.native_value == "ok" else "mdi:cloud-alert"

    @property
    def extra_state_attributes(self) -> dict:
        return {"error": self.coordinator.data.error or None}


async def async_setup_entry(
    hass: HomeAssistant,
    config_entry: config_entries.ConfigEntry,
    async_add_entities,
):
    """Add status sensors for passed config_entry in HA."""
    coordinator: FleetOpsCoordinator = config_entry.runtime_data
    entry_name = config_entry.data.get("entry_name", "Fleet Ops")
    async_add_entities(
        [
            ActiveAlarmCountSensor(coordinator, entry_name),
            OpenTicketCountSensor(coordinator, entry_name),
            ConnectionStatusSensor(coordinator, entry_name),
        ]
    )
