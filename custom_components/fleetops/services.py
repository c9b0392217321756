"""
Integration services.

Exposes the coordinator's operator actions (alarms, tickets, clients, unit
overrides, immediate refresh) to automations and dashboards. Every service
takes an optional config_entry_id; without one the single loaded Fleet Ops
entry is used.
"""
from __future__ import annotations

import logging

import homeassistant.helpers.config_validation as cv
import voluptuous as vol

from homeassistant.config_entries import ConfigEntryState
from homeassistant.core import HomeAssistant, ServiceCall, ServiceResponse, SupportsResponse
from homeassistant.exceptions import HomeAssistantError, ServiceValidationError

from .const import DOMAIN
from .coordinator import FleetOpsCoordinator
from .errors import FleetOpsError, PersistenceUnavailableError, ValidationError
from .models import Client, TicketStatus

_LOGGER = logging.getLogger(__name__)

SERVICE_DISMISS_ALARM = "dismiss_alarm"
SERVICE_CREATE_TICKET = "create_ticket"
SERVICE_UPDATE_TICKET = "update_ticket"
SERVICE_REFRESH = "refresh"
SERVICE_SAVE_UNIT_OVERRIDE = "save_unit_override"
SERVICE_SAVE_CLIENT = "save_client"
SERVICE_DELETE_CLIENT = "delete_client"

ATTR_CONFIG_ENTRY_ID = "config_entry_id"
ATTR_ALARM_ID = "alarm_id"
ATTR_TICKET_ID = "ticket_id"
ATTR_UNIT_ID = "unit_id"
ATTR_CLIENT_ID = "client_id"
ATTR_STATUS = "status"
ATTR_NOTES = "notes"
ATTR_AUTHOR = "author"
ATTR_SUMMARY = "summary"

_ENTRY = {vol.Optional(ATTR_CONFIG_ENTRY_ID): cv.string}

DISMISS_ALARM_SCHEMA = vol.Schema({**_ENTRY, vol.Required(ATTR_ALARM_ID): cv.string})

CREATE_TICKET_SCHEMA = vol.Schema(
    {
        **_ENTRY,
        vol.Required(ATTR_ALARM_ID): cv.string,
        vol.Optional(ATTR_NOTES, default=""): cv.string,
        vol.Optional(ATTR_AUTHOR): cv.string,
        vol.Optional(ATTR_SUMMARY): cv.string,
    }
)

UPDATE_TICKET_SCHEMA = vol.Schema(
    {
        **_ENTRY,
        vol.Required(ATTR_TICKET_ID): cv.string,
        vol.Required(ATTR_STATUS): vol.In([status.value for status in TicketStatus]),
        vol.Optional(ATTR_NOTES, default=""): cv.string,
        vol.Optional(ATTR_AUTHOR): cv.string,
    }
)

REFRESH_SCHEMA = vol.Schema(_ENTRY)

SAVE_UNIT_OVERRIDE_SCHEMA = vol.Schema(
    {
        **_ENTRY,
        vol.Required(ATTR_UNIT_ID): vol.Coerce(int),
        vol.Optional("number"): cv.string,
        vol.Optional("model"): cv.string,
        vol.Optional("driver"): cv.string,
        vol.Optional("driver_phone"): cv.string,
        vol.Optional(ATTR_CLIENT_ID): vol.Coerce(int),
    }
)

SAVE_CLIENT_SCHEMA = vol.Schema(
    {
        **_ENTRY,
        vol.Optional(ATTR_CLIENT_ID): vol.Coerce(int),
        vol.Required("company"): cv.string,
        vol.Optional("contact_person", default=""): cv.string,
        vol.Optional("phone", default=""): cv.string,
        vol.Optional("email", default=""): cv.string,
    }
)

DELETE_CLIENT_SCHEMA = vol.Schema({**_ENTRY, vol.Required(ATTR_CLIENT_ID): vol.Coerce(int)})


def _get_coordinator(hass: HomeAssistant, entry_id: str | None) -> FleetOpsCoordinator:
    """Resolve the coordinator of the addressed (or only) loaded entry."""
    if entry_id:
        entry = hass.config_entries.async_get_entry(entry_id)
        if entry is None or entry.domain != DOMAIN or entry.state is not ConfigEntryState.LOADED:
            raise ServiceValidationError(f"Fleet Ops entry {entry_id} is not loaded")
        return entry.runtime_data

    entries = [
        entry for entry in hass.config_entries.async_entries(DOMAIN)
        if entry.state is ConfigEntryState.LOADED
    ]
    if len(entries) != 1:
        raise ServiceValidationError(
            f"{len(entries)} Fleet Ops entries are loaded; set config_entry_id"
        )
    return entries[0].runtime_data


def _service_error(exc: FleetOpsError) -> HomeAssistantError:
    """Translate store and validation errors into Home Assistant service errors."""
    if isinstance(exc, ValidationError):
        return ServiceValidationError(str(exc))
    message = str(exc)
    if isinstance(exc, PersistenceUnavailableError) and exc.details:
        message = f"{message.rstrip('.')}. Details: {exc.details}"
    return HomeAssistantError(message)


def _ticket_response(ticket) -> dict:
    return {
        "ticket_id": ticket.id,
        "alarm_id": ticket.alarm_id,
        "device_id": ticket.device_id,
        "status": ticket.status.value,
    }


def async_setup_services(hass: HomeAssistant) -> None:
    """Register the Fleet Ops services."""

    async def _dismiss_alarm(call: ServiceCall) -> None:
        coordinator = _get_coordinator(hass, call.data.get(ATTR_CONFIG_ENTRY_ID))
        coordinator.async_dismiss_alarm(call.data[ATTR_ALARM_ID])

    async def _create_ticket(call: ServiceCall) -> ServiceResponse:
        coordinator = _get_coordinator(hass, call.data.get(ATTR_CONFIG_ENTRY_ID))
        alarm_id = call.data[ATTR_ALARM_ID]
        alarm = next((a for a in coordinator.data.alarms if a.id == alarm_id), None)
        if alarm is None:
            raise ServiceValidationError(f"Unknown alarm {alarm_id}")
        ticket = coordinator.async_create_ticket_from_alarm(
            alarm,
            notes=call.data[ATTR_NOTES],
            author=call.data.get(ATTR_AUTHOR),
            summary=call.data.get(ATTR_SUMMARY),
        )
        return _ticket_response(ticket)

    async def _update_ticket(call: ServiceCall) -> ServiceResponse:
        coordinator = _get_coordinator(hass, call.data.get(ATTR_CONFIG_ENTRY_ID))
        try:
            ticket = coordinator.async_update_ticket_status(
                call.data[ATTR_TICKET_ID],
                TicketStatus(call.data[ATTR_STATUS]),
                notes=call.data[ATTR_NOTES],
                author=call.data.get(ATTR_AUTHOR),
            )
        except ValidationError as e:
            raise _service_error(e) from e
        return _ticket_response(ticket)

    async def _refresh(call: ServiceCall) -> None:
        coordinator = _get_coordinator(hass, call.data.get(ATTR_CONFIG_ENTRY_ID))
        await coordinator.async_refresh_now()

    async def _save_unit_override(call: ServiceCall) -> None:
        coordinator = _get_coordinator(hass, call.data.get(ATTR_CONFIG_ENTRY_ID))
        fields = {
            key: value for key, value in call.data.items()
            if key not in (ATTR_CONFIG_ENTRY_ID, ATTR_UNIT_ID)
        }
        try:
            await coordinator.async_save_override(call.data[ATTR_UNIT_ID], **fields)
        except (ValidationError, PersistenceUnavailableError) as e:
            raise _service_error(e) from e

    async def _save_client(call: ServiceCall) -> ServiceResponse:
        coordinator = _get_coordinator(hass, call.data.get(ATTR_CONFIG_ENTRY_ID))
        client = Client(
            id=call.data.get(ATTR_CLIENT_ID),
            company=call.data["company"],
            contact_person=call.data["contact_person"],
            phone=call.data["phone"],
            email=call.data["email"],
        )
        try:
            saved = await coordinator.async_save_client(client)
        except (ValidationError, PersistenceUnavailableError) as e:
            raise _service_error(e) from e
        return {"client_id": saved.id}

    async def _delete_client(call: ServiceCall) -> None:
        coordinator = _get_coordinator(hass, call.data.get(ATTR_CONFIG_ENTRY_ID))
        try:
            await coordinator.async_delete_client(call.data[ATTR_CLIENT_ID])
        except PersistenceUnavailableError as e:
            raise _service_error(e) from e

    hass.services.async_register(DOMAIN, SERVICE_DISMISS_ALARM, _dismiss_alarm, schema=DISMISS_ALARM_SCHEMA)
    hass.services.async_register(
        DOMAIN, SERVICE_CREATE_TICKET, _create_ticket,
        schema=CREATE_TICKET_SCHEMA, supports_response=SupportsResponse.OPTIONAL,
    )
    hass.services.async_register(
        DOMAIN, SERVICE_UPDATE_TICKET, _update_ticket,
        schema=UPDATE_TICKET_SCHEMA, supports_response=SupportsResponse.OPTIONAL,
    )
    hass.services.async_register(DOMAIN, SERVICE_REFRESH, _refresh, schema=REFRESH_SCHEMA)
    hass.services.async_register(
        DOMAIN, SERVICE_SAVE_UNIT_OVERRIDE, _save_unit_override, schema=SAVE_UNIT_OVERRIDE_SCHEMA
    )
    hass.services.async_register(
        DOMAIN, SERVICE_SAVE_CLIENT, _save_client,
        schema=SAVE_CLIENT_SCHEMA, supports_response=SupportsResponse.OPTIONAL,
    )
    hass.services.async_register(DOMAIN, SERVICE_DELETE_CLIENT, _delete_client, schema=DELETE_CLIENT_SCHEMA)
    _LOGGER.debug("Registered Fleet Ops services")
