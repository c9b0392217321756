"""Config flow for Fleet Ops integration."""
from __future__ import annotations
import logging
import uuid
from typing import Any, Dict, Optional
import homeassistant.helpers.config_validation as cv
import voluptuous as vol

from homeassistant import config_entries
from homeassistant.core import callback

from .api.client import MaponApi
from .const import (
    API_URL,
    CONF_API_KEY,
    CONF_BASE_URL,
    CONF_ENTRY_NAME,
    CONF_KV_TOKEN,
    CONF_KV_URL,
    CONF_SCAN_INTERVAL,
    DOMAIN,
    MIN_SCAN_INTERVAL,
    SCAN_INTERVAL,
)
from .errors import ApiResponseError, FleetOpsError

interval = vol.All(vol.Coerce(int), vol.Range(min=MIN_SCAN_INTERVAL))

_LOGGER = logging.getLogger(__name__)

FIELDS = (CONF_ENTRY_NAME, CONF_API_KEY, CONF_BASE_URL, CONF_KV_URL, CONF_KV_TOKEN, CONF_SCAN_INTERVAL)

DEFAULTS: Dict[str, Any] = {
    CONF_ENTRY_NAME: 'My Fleet',
    CONF_API_KEY: '',
    CONF_BASE_URL: API_URL,
    CONF_KV_URL: '',
    CONF_KV_TOKEN: '',
    CONF_SCAN_INTERVAL: SCAN_INTERVAL,
}


def _build_schema(defaults: Dict[str, Any]) -> vol.Schema:
    return vol.Schema(
        {
            vol.Required(CONF_ENTRY_NAME, default=defaults[CONF_ENTRY_NAME]): cv.string,
            vol.Required(CONF_API_KEY, default=defaults[CONF_API_KEY]): cv.string,
            vol.Required(CONF_BASE_URL, default=defaults[CONF_BASE_URL]): cv.string,
            vol.Optional(CONF_KV_URL, default=defaults[CONF_KV_URL]): cv.string,
            vol.Optional(CONF_KV_TOKEN, default=defaults[CONF_KV_TOKEN]): cv.string,
            vol.Required(CONF_SCAN_INTERVAL, default=defaults[CONF_SCAN_INTERVAL]): interval,
        }
    )


CONFIG_SCHEMA = _build_schema(DEFAULTS)


async def _validate_api_key(api_key: str, base_url: str) -> str | None:
    """Try one unit list call. Returns an error key for the form, or None."""
    try:
        await MaponApi(api_key, base_url).fetch_units()
    except ApiResponseError as e:
        _LOGGER.warning("Mapon rejected the API key: %s", e)
        return 'invalid_auth' if e.code == 10 else 'cannot_connect'
    except FleetOpsError as e:
        _LOGGER.warning("Could not reach Mapon: %s", e)
        return 'cannot_connect'
    return None


def _check_fields(user_input: Dict[str, Any]) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    if not user_input.get(CONF_ENTRY_NAME):
        errors['base'] = 'entry_name_required'
    elif not user_input.get(CONF_API_KEY):
        errors['base'] = 'api_key_required'
    elif bool(user_input.get(CONF_KV_URL)) != bool(user_input.get(CONF_KV_TOKEN)):
        errors['base'] = 'kv_incomplete'
    return errors


async def _validate_input(user_input: Dict[str, Any]) -> Dict[str, str]:
    errors = _check_fields(user_input)
    if not errors:
        error = await _validate_api_key(user_input[CONF_API_KEY], user_input.get(CONF_BASE_URL) or API_URL)
        if error:
            errors['base'] = error
    return errors


class FleetOpsFlow(config_entries.ConfigFlow, domain=DOMAIN):
    data: Optional[Dict[str, Any]]

    async def async_step_user(self, user_input: Optional[Dict[str, Any]] = None):
        errors: Dict[str, str] = {}
        if user_input is not None:
            errors = _check_fields(user_input)
            if not errors:
                # One entry per Mapon account
                self._async_abort_entries_match({CONF_API_KEY: user_input[CONF_API_KEY]})
                errors = await _validate_input(user_input)
            if not errors:
                self.data = dict(user_input)
                # Scopes local storage and entity unique ids
                self.data['guid'] = str(uuid.uuid4())
                return self.async_create_entry(title=f"{self.data[CONF_ENTRY_NAME]}", data=self.data)

        return self.async_show_form(step_id="user", data_schema=CONFIG_SCHEMA, errors=errors)

    @staticmethod
    @callback
    def async_get_options_flow(config_entry):
        """Get the options flow for this handler."""
        return OptionsFlowHandler(config_entry)


class OptionsFlowHandler(config_entries.OptionsFlow):
    """Handles options flow for the component."""

    def __init__(self, config_entry: config_entries.ConfigEntry) -> None:
        self._entry = config_entry

    def _defaults(self) -> Dict[str, Any]:
        defaults = dict(DEFAULTS)
        for field in FIELDS:
            if field in self._entry.data:
                defaults[field] = self._entry.data[field]
            if field in self._entry.options:
                defaults[field] = self._entry.options[field]
        return defaults

    async def async_step_init(
        self, user_input: Dict[str, Any] = None
    ) -> Dict[str, Any]:
        errors: Dict[str, str] = {}

        if user_input is not None:
            errors = await _validate_input(user_input)
            if not errors:
                new_data = {'guid': self._entry.data['guid']}
                new_data.update({field: user_input.get(field, DEFAULTS[field]) for field in FIELDS})

                # The update listener reloads the entry with the new data
                self.hass.config_entries.async_update_entry(
                    self._entry,
                    data=new_data,
                    title=new_data[CONF_ENTRY_NAME],
                )
                return self.async_create_entry(title=f"{new_data[CONF_ENTRY_NAME]}", data=new_data)

        return self.async_show_form(step_id="init", data_schema=_build_schema(self._defaults()), errors=errors)
