"""
DataUpdateCoordinator for the Fleet Ops integration.

Responsibilities:
- Own the MaponApi and FleetStore for the lifetime of a config entry.
- On every tick run two independent paths concurrently:
    units: fetch units, merge with clients + overrides, replace the list
    alarms: query the current AlarmWindow, deduplicate, advance the window
- Publish both results plus a combined error string as one FleetData snapshot.
- Serve operator actions: dismiss alarms, raise and update tickets, mute,
  edit clients and unit overrides.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from homeassistant.core import HomeAssistant, callback
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator, UpdateFailed
from homeassistant.util import dt as dt_util

from .alarm_window import AlarmWindow
from .api.client import MaponApi
from .api.kv import RestKeyValueStore
from .const import (
    CONF_API_KEY,
    CONF_BASE_URL,
    CONF_KV_TOKEN,
    CONF_KV_URL,
    CONF_SCAN_INTERVAL,
    DOMAIN,
    SCAN_INTERVAL,
    VERSION,
)
from .coordinator_data import FleetData
from .coordinator_utils import (
    assign_default_clients,
    filter_dismissed,
    ingest_alarms,
    merge_units,
    prune_dismissed,
)
from .errors import PersistenceUnavailableError, ValidationError
from .models import Alarm, Client, Override, Ticket, TicketHistoryItem, TicketStatus, Unit
from .store import FleetStore, LocalKeyValueStore

_LOGGER = logging.getLogger(__name__)


def build_store(hass: HomeAssistant, entry_data: dict) -> FleetStore:
    """REST key-value store when one is configured, Home Assistant storage otherwise."""
    if entry_data.get(CONF_KV_URL) or entry_data.get(CONF_KV_TOKEN):
        return FleetStore(RestKeyValueStore(entry_data.get(CONF_KV_URL), entry_data.get(CONF_KV_TOKEN)))
    return FleetStore(LocalKeyValueStore(hass, entry_data.get("guid", "default")))


def _error_text(exc: Exception, fallback: str) -> str:
    text = str(exc) or fallback
    details = getattr(exc, "details", None)
    if details:
        text = f"{text.rstrip('.')}. Details: {details}"
    return text


class FleetOpsCoordinator(DataUpdateCoordinator[FleetData]):
    """
    Coordinator for the Fleet Ops integration.

    Ticks never overlap: a tick requested while the previous one is still
    running is skipped and the current snapshot is returned unchanged.
    """

    def __init__(
        self,
        hass: HomeAssistant,
        entry_data: dict,
        config_entry=None,
        api: MaponApi | None = None,
        store: FleetStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the coordinator from config-entry data."""
        super().__init__(
            hass,
            _LOGGER,
            config_entry=config_entry,
            name=DOMAIN,
            update_interval=timedelta(seconds=entry_data.get(CONF_SCAN_INTERVAL, SCAN_INTERVAL)),
        )

        self.api = api or MaponApi(entry_data[CONF_API_KEY], entry_data.get(CONF_BASE_URL))
        self.store = store or build_store(hass, entry_data)
        self._entry_data = entry_data
        self._clock = clock or dt_util.utcnow

        self._window = AlarmWindow.start(self._clock())
        # alarm id → source timestamp, so the overlapping look-back cannot bring them back
        self._dismissed: dict[str, datetime] = {}

        self._tick_lock = asyncio.Lock()
        self._tick_task: asyncio.Future | None = None
        self._closed = False

        # Flag to distinguish first call from subsequent ones
        self._initial_refresh_done: bool = False

        # Snapshot starts empty; entities must handle missing units until first refresh
        self.data = FleetData()

    @property
    def window(self) -> AlarmWindow:
        return self._window

    # ------------------------------------------------------------------
    # HA entry point
    # ------------------------------------------------------------------

    async def _async_update_data(self) -> FleetData:
        """
        Called by HA on every update_interval tick and on forced refreshes.

        Failures of either path are reported in FleetData.error and never
        raised, except when the very first units fetch fails: there is
        nothing to show yet, so HA is told the update failed.
        """
        if self._closed:
            return self.data
        if self._tick_lock.locked():
            _LOGGER.debug("Previous poll still running, skipping this tick")
            return self.data

        async with self._tick_lock:
            self._tick_task = asyncio.ensure_future(
                asyncio.gather(self._run_units_path(), self._run_alarms_path())
            )
            try:
                units_result, alarms_result = await self._tick_task
            except asyncio.CancelledError:
                if self._closed:
                    _LOGGER.debug("Poll cancelled by shutdown, discarding results")
                    return self.data
                raise
            finally:
                self._tick_task = None

        # Results of a tick that outlived its coordinator are dropped
        if self._closed:
            return self.data

        units, clients, units_error = units_result
        fetched_alarms, next_window, alarms_error = alarms_result

        if units is None and not self._initial_refresh_done:
            raise UpdateFailed(f"Fleet Ops connection error: {units_error}")

        # Read the published snapshot only now, so operator actions taken
        # while the requests were in flight are kept.
        data = self.data
        alarms = data.alarms
        if fetched_alarms is not None:
            alarms = ingest_alarms(filter_dismissed(fetched_alarms, self._dismissed), data.alarms)
            self._window = next_window
            self._dismissed = prune_dismissed(self._dismissed, next_window.lower_bound)

        self._initial_refresh_done = True
        error = "; ".join(e for e in (units_error, alarms_error) if e)
        if error:
            _LOGGER.warning("Fleet Ops poll finished with errors: %s", error)

        return dataclasses.replace(
            data,
            units=units if units is not None else data.units,
            clients=clients if clients is not None else data.clients,
            alarms=alarms,
            error=error,
        )

    # ------------------------------------------------------------------
    # Units path
    # ------------------------------------------------------------------

    async def _run_units_path(self) -> tuple[list[Unit] | None, list[Client] | None, str | None]:
        """
        Fetch units and merge them with clients and overrides.

        Returns (units, clients, error). A persistence failure still yields
        units, merged without overrides; clients is None then.
        """
        try:
            raws = await self.api.fetch_units()
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Failed to fetch units: %s", exc)
            return None, None, _error_text(exc, "Failed to update vehicle data.")

        clients: list[Client] | None
        overrides: dict[int, Override]
        error = None
        try:
            clients = await self.store.async_get_clients()
            overrides = await self.store.async_get_overrides()
        except PersistenceUnavailableError as exc:
            _LOGGER.warning("Persistence unavailable, showing units without overrides: %s", exc)
            clients, overrides = None, {}
            error = "Persistence unavailable: " + _error_text(exc, "key-value store unreachable")

        owners = clients if clients is not None else self.data.clients
        units = merge_units(assign_default_clients(raws, owners), overrides)
        return units, clients, error

    # ------------------------------------------------------------------
    # Alarms path
    # ------------------------------------------------------------------

    async def _run_alarms_path(self) -> tuple[list[Alarm] | None, AlarmWindow | None, str | None]:
        """
        Fetch the alarms of the current window.

        Returns (alarms, window to use next, error). The window only moves
        after a successful fetch.
        """
        window = self._window
        from_, till = window.next_window(self._clock())
        try:
            alarms = await self.api.fetch_alarms(from_, till)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Failed to fetch alarms: %s", exc)
            return None, None, _error_text(exc, "Failed to fetch alarms.")
        return alarms, window.advance(till), None

    # ------------------------------------------------------------------
    # Alarms and tickets
    # ------------------------------------------------------------------

    @callback
    def async_dismiss_alarm(self, alarm_id: str) -> None:
        """Remove one alarm from the published set."""
        self._remember_dismissed(alarm_id)
        self.async_set_updated_data(
            dataclasses.replace(
                self.data, alarms=[a for a in self.data.alarms if a.id != alarm_id]
            )
        )

    def _remember_dismissed(self, alarm_id: str) -> None:
        for alarm in self.data.alarms:
            if alarm.id == alarm_id:
                self._dismissed[alarm_id] = alarm.timestamp
                return

    @callback
    def async_create_ticket_from_alarm(
        self,
        alarm: Alarm,
        notes: str = "",
        author: str | None = None,
        summary: str | None = None,
    ) -> Ticket:
        """Open a ticket for alarm and dismiss the alarm in the same update."""
        now = self._clock()
        unit = self.get_unit(alarm.device_id)
        author = author or "System"

        ticket_ms = int(now.timestamp() * 1000)
        existing_ids = {t.id for t in self.data.tickets}
        while f"TICKET-{ticket_ms}" in existing_ids:
            ticket_ms += 1

        ticket = Ticket(
            id=f"TICKET-{ticket_ms}",
            alarm_id=alarm.id,
            device_id=alarm.device_id,
            device_name=unit.number if unit else f"Vehicle {alarm.device_id}",
            status=TicketStatus.OPEN,
            created_at=now,
            summary=summary or alarm.message,
            history=(
                TicketHistoryItem(
                    status=TicketStatus.OPEN,
                    timestamp=now,
                    notes=notes.strip() or "Ticket created from alarm.",
                    author=author,
                ),
            ),
        )

        self._remember_dismissed(alarm.id)
        self.async_set_updated_data(
            dataclasses.replace(
                self.data,
                tickets=[ticket, *self.data.tickets],
                alarms=[a for a in self.data.alarms if a.id != alarm.id],
            )
        )
        _LOGGER.debug("Created %s from alarm %s", ticket.id, alarm.id)
        return ticket

    @callback
    def async_update_ticket_status(
        self,
        ticket_id: str,
        status: TicketStatus,
        notes: str = "",
        author: str | None = None,
    ) -> Ticket:
        """Record a status change or a note on a ticket, newest history entry first."""
        ticket = next((t for t in self.data.tickets if t.id == ticket_id), None)
        if ticket is None:
            raise ValidationError(f"Unknown ticket {ticket_id}")

        status = TicketStatus(status)
        notes = notes.strip()
        if status == ticket.status and not notes:
            return ticket

        item = TicketHistoryItem(
            status=status,
            timestamp=self._clock(),
            notes=notes or f"Status changed to {status.value}",
            author=author or "System",
        )
        updated = dataclasses.replace(ticket, status=status, history=(item, *ticket.history))
        self.async_set_updated_data(
            dataclasses.replace(
                self.data,
                tickets=[updated if t.id == ticket_id else t for t in self.data.tickets],
            )
        )
        return updated

    @callback
    def async_set_muted(self, muted: bool) -> None:
        self.async_set_updated_data(dataclasses.replace(self.data, muted=muted))

    async def async_refresh_now(self) -> None:
        """Poll immediately, outside the regular schedule."""
        await self.async_refresh()

    # ------------------------------------------------------------------
    # Write path: clients and overrides
    # ------------------------------------------------------------------

    async def async_save_override(self, unit_id: int, **fields: Any) -> Override:
        """
        Persist an operator edit, then reflect it in the published units
        without waiting for the next poll. Errors go to the caller.
        """
        known_client_ids = {c.id for c in self.data.clients} if self.data.clients else None
        override = await self.store.async_save_override(
            unit_id, known_client_ids=known_client_ids, **fields
        )
        updated_units = [
            dataclasses.replace(u, is_mock=False, **override.fields()) if u.unit_id == unit_id else u
            for u in self.data.units
        ]
        self.async_set_updated_data(dataclasses.replace(self.data, units=updated_units))
        return override

    async def async_save_client(self, client: Client) -> Client:
        saved = await self.store.async_save_client(client)
        clients = list(self.data.clients)
        for index, existing in enumerate(clients):
            if existing.id == saved.id:
                clients[index] = saved
                break
        else:
            clients.append(saved)
        self.async_set_updated_data(dataclasses.replace(self.data, clients=clients))
        return saved

    async def async_delete_client(self, client_id: int) -> None:
        await self.store.async_delete_client(client_id)
        # Units lose the assignment now; the next tick hands them a default client
        units = [
            dataclasses.replace(u, client_id=None) if u.client_id == client_id else u
            for u in self.data.units
        ]
        self.async_set_updated_data(
            dataclasses.replace(
                self.data,
                units=units,
                clients=[c for c in self.data.clients if c.id != client_id],
            )
        )

    # ------------------------------------------------------------------
    # Entity helpers
    # ------------------------------------------------------------------

    def get_unit(self, unit_id: int) -> Unit | None:
        for unit in self.data.units:
            if unit.unit_id == unit_id:
                return unit
        return None

    def get_device_info(self, unit_id: int) -> dict | None:
        """Return the HA DeviceInfo dict for the given unit_id."""
        unit = self.get_unit(unit_id)
        if unit is None:
            return None
        return {
            "identifiers": {(DOMAIN, f"{self._entry_data.get('guid')}_{unit_id}")},
            "name": unit.number,
            "manufacturer": "Mapon",
            "model": unit.model or "Unknown",
            "sw_version": VERSION,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def async_shutdown(self) -> None:
        """Stop polling; a poll still in flight is cancelled and its results dropped."""
        self._closed = True
        task = self._tick_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await super().async_shutdown()

    @property
    def entry_data(self):
        return self._entry_data
