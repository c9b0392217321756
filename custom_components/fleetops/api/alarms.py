"""
Low-level alarm data fetching from the Mapon API.

Responsible for:
- Fetching alerts raised inside a [from, till) window
- Normalizing the two alert list shapes Mapon has returned over time
  (a JSON array, or an object keyed by alert id) into Alarm instances
"""
import logging
from datetime import datetime

from homeassistant.util import dt as dt_util

from custom_components.fleetops.api.units import parse_timestamp
from custom_components.fleetops.const import API_URL, MAPON_DATETIME_FORMAT
from custom_components.fleetops.errors import MalformedResponseError
from custom_components.fleetops.models import Alarm, Location
from custom_components.fleetops.requests import make_request

_LOGGER = logging.getLogger(__name__)


def format_window_bound(value: datetime) -> str:
    """Mapon expects UTC timestamps as 'YYYY-MM-DD HH:MM:SS'; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt_util.UTC)
    return dt_util.as_utc(value).strftime(MAPON_DATETIME_FORMAT)


def alarm_id(device_id: int, timestamp: datetime) -> str:
    """Alarms carry no upstream id we can rely on: device + source second identify them."""
    return f"{device_id}-{int(timestamp.timestamp())}"


def _alarm_message(alert: dict) -> str:
    parts = [str(p) for p in (alert.get("msg"), alert.get("address")) if p]
    if not parts:
        return "No address provided"
    return " - ".join(parts)


def _parse_alarm(alert: dict) -> Alarm | None:
    """Map a single raw API alert dict onto an Alarm instance, or None to skip it."""
    if not isinstance(alert, dict):
        _LOGGER.warning("Alert is not an object, skipping: %s", alert)
        return None
    timestamp = parse_timestamp(alert.get("datetime"))
    if alert.get("unit_id") is None or timestamp is None:
        _LOGGER.warning("Alert without unit_id or valid datetime, skipping: %s", alert)
        return None

    try:
        device_id = int(alert["unit_id"])
        location = Location(lat=float(alert.get("lat") or 0), lng=float(alert.get("lng") or 0))
    except (TypeError, ValueError) as e:
        _LOGGER.warning("Alert with invalid unit_id or position, skipping: %s (%s)", alert, e)
        return None

    return Alarm(
        id=alarm_id(device_id, timestamp),
        device_id=device_id,
        timestamp=timestamp,
        type=alert.get("type_name") or alert.get("alert_type") or "Unknown Type",
        message=_alarm_message(alert),
        location=location,
    )


def parse_alarms(raw_json) -> list[Alarm]:
    """
    Normalize an alert list response.

    Accepted shapes for ``data.alerts``:
    - a list of alert objects
    - an object whose values are alert objects
    Anything else raises MalformedResponseError.
    """
    data = raw_json.get("data") if isinstance(raw_json, dict) else None
    alerts = data.get("alerts") if isinstance(data, dict) else None

    if isinstance(alerts, list):
        alert_list = alerts
    elif isinstance(alerts, dict):
        alert_list = list(alerts.values())
    else:
        _LOGGER.error("Unexpected response format in alert list: %s", str(raw_json)[:200])
        raise MalformedResponseError("Received an unexpected data format for alarms.")

    parsed = [_parse_alarm(alert) for alert in alert_list]
    return [a for a in parsed if a is not None]


async def fetch_alarms(
    from_: datetime, till: datetime, api_key: str, base_url: str = API_URL
) -> list[Alarm]:
    """
    Fetch all alerts raised in the [from_, till) window.

    Corresponding CURL command:
    curl 'https://mapon.com/api/v1/alert/list.json?from=2024-01-01 10:00:00&till=...&include=address&key=KEY'
    """
    if from_ > till:
        raise ValueError(f"Alarm window start {from_} is after its end {till}")

    url = base_url + "alert/list.json"
    params = {
        "from": format_window_bound(from_),
        "till": format_window_bound(till),
        "include": "address",
        "key": api_key,
    }
    headers = {"accept": "application/json"}
    raw_json = await make_request("GET", url, headers, params=params)
    return parse_alarms(raw_json)
