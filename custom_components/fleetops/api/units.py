"""
Low-level unit data fetching from the Mapon API.

Responsible for:
- Fetching the raw unit list from the API
- Mapping the JSON response fields onto UnitRaw model instances
"""
import logging
from datetime import datetime

from homeassistant.util import dt as dt_util

from custom_components.fleetops.const import API_URL, UNIT_INCLUDES
from custom_components.fleetops.errors import MalformedResponseError
from custom_components.fleetops.models import Location, UnitRaw
from custom_components.fleetops.requests import make_request

_LOGGER = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=dt_util.UTC)


def parse_timestamp(value) -> datetime | None:
    """Parse an upstream timestamp into an aware UTC datetime; unparsable values give None."""
    if not value:
        return None
    try:
        parsed = dt_util.parse_datetime(str(value), raise_on_error=False)
    except ValueError:
        # Matches the ISO pattern but is out of range, e.g. month 13
        _LOGGER.warning("Invalid timestamp from upstream: %s", value)
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt_util.UTC)
    return dt_util.as_utc(parsed)


def _first_driver_name(drivers) -> str | None:
    if isinstance(drivers, dict):
        drivers = list(drivers.values())
    if not isinstance(drivers, list) or not drivers or not isinstance(drivers[0], dict):
        return None
    return drivers[0].get("name") or None


def _parse_unit(unit: dict) -> UnitRaw | None:
    """Map a single raw API unit dict onto a UnitRaw instance, or None to skip it."""
    if not isinstance(unit, dict) or unit.get("unit_id") is None:
        _LOGGER.warning("Unit without unit_id in response, skipping: %s", unit)
        return None

    try:
        unit_id = int(unit["unit_id"])
        lat = float(unit.get("lat") or 0)
        lng = float(unit.get("lng") or 0)
        speed = float(unit.get("speed") or 0)
    except (TypeError, ValueError) as e:
        _LOGGER.warning("Unit with invalid id or position, skipping: %s (%s)", unit, e)
        return None

    ignition = unit.get("ignition") or {}
    drivers = unit.get("drivers") or None
    driver_name = _first_driver_name(drivers)

    return UnitRaw(
        unit_id=unit_id,
        number=unit.get("number") or unit.get("label") or f"Vehicle {unit_id}",
        model=unit.get("vehicle_title") or "Unknown model",
        last_update=parse_timestamp(unit.get("last_update")) or EPOCH,
        location=Location(lat=lat, lng=lng, address=f"Lat: {lat}, Lng: {lng}"),
        ignition=isinstance(ignition, dict) and ignition.get("state") == 1,
        speed=speed,
        driver=driver_name,
        has_driver=driver_name is not None,
        can=unit.get("can"),
        fuel=unit.get("fuel"),
        drivers=drivers,
        supply_voltage=unit.get("supply_voltage"),
        relays=unit.get("relays"),
        io_din=unit.get("io_din"),
    )


def parse_units(raw_json) -> list[UnitRaw]:
    """
    Normalize a unit list response.

    Raises MalformedResponseError unless the body is ``{"data": {"units": [...]}}``.
    """
    data = raw_json.get("data") if isinstance(raw_json, dict) else None
    if not isinstance(data, dict) or not isinstance(data.get("units"), list):
        _LOGGER.error("Unexpected response format in unit list: %s", str(raw_json)[:200])
        raise MalformedResponseError("Received an unexpected data format for units.")

    parsed = [_parse_unit(unit) for unit in data["units"]]
    return [u for u in parsed if u is not None]


async def fetch_units(api_key: str, base_url: str = API_URL) -> list[UnitRaw]:
    """
    Fetch the current state of every unit on the account.

    Errors from the request layer propagate unchanged.

    Corresponding CURL command:
    curl 'https://mapon.com/api/v1/unit/list.json?include=can,fuel,...&key=KEY'
    """
    url = base_url + "unit/list.json"
    params = {"include": UNIT_INCLUDES, "key": api_key}
    headers = {"accept": "application/json"}
    raw_json = await make_request("GET", url, headers, params=params)
    return parse_units(raw_json)
