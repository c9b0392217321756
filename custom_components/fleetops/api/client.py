"""
MaponApi: the remote fetcher owned by the coordinator.

Thin facade over api/units.py and api/alarms.py so the coordinator (and its
tests) deal with one object holding the API key and base URL.
"""
from __future__ import annotations

import logging
from datetime import datetime

from custom_components.fleetops.api.alarms import fetch_alarms
from custom_components.fleetops.api.units import fetch_units
from custom_components.fleetops.const import API_URL
from custom_components.fleetops.models import Alarm, UnitRaw

_LOGGER = logging.getLogger(__name__)


class MaponApi:
    """Client for the two Mapon calls the dashboard needs."""

    def __init__(self, api_key: str, base_url: str | None = None) -> None:
        self.api_key = api_key
        self.base_url = base_url or API_URL
        if not self.base_url.endswith("/"):
            self.base_url += "/"

    async def fetch_units(self) -> list[UnitRaw]:
        units = await fetch_units(self.api_key, self.base_url)
        _LOGGER.debug("Fetched %s units", len(units))
        return units

    async def fetch_alarms(self, from_: datetime, till: datetime) -> list[Alarm]:
        alarms = await fetch_alarms(from_, till, self.api_key, self.base_url)
        _LOGGER.debug("Fetched %s alarms between %s and %s", len(alarms), from_, till)
        return alarms
