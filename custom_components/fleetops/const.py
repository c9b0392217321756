DOMAIN = "fleetops"
VERSION = "0.3.0"

API_URL = "https://mapon.com/api/v1/"

# Extra blocks requested with every unit list call
UNIT_INCLUDES = "can,fuel,drivers,supply_voltage,relays,ignition,io_din"

# Mapon error codes that come back without a readable message
API_ERROR_MESSAGES: dict[int, str] = {
    2:    "Service unavailable or in maintenance (Mapon).",
    3:    "Invalid parameters sent to Mapon API.",
    10:   "Invalid API key. Please check the key configured for this integration.",
    1005: "Access Denied by Mapon.",
    500:  "An internal server error occurred.",
    502:  "Bad Gateway: The server could not connect to an upstream service.",
}

# Poll loop
SCAN_INTERVAL = 5            # seconds between ticks
MIN_SCAN_INTERVAL = 5
REQUEST_TIMEOUT = 10         # seconds per upstream request

# Alarm window
ALARM_CATCH_UP_MINUTES = 120  # look-back of the very first alarm query
ALARM_LOOK_BACK_MINUTES = 5   # overlap kept on every later query
MAPON_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

# Key-value store
KV_CLIENTS_KEY = "gps_app_clients"
KV_UNIT_OVERRIDES_KEY = "gps_app_unit_overrides"
STORAGE_VERSION = 1

# Fields an operator may override on a unit, keyed by their stored name
OVERRIDE_FIELDS: dict[str, str] = {
    "number":       "number",
    "model":        "model",
    "driver":       "driver",
    "driver_phone": "driverPhone",
    "client_id":    "clientId",
}

# Map marker colors
MARKER_MOVING = "green"      # ignition on, speed > 0
MARKER_IDLE = "orange"       # ignition on, standing
MARKER_OFF = "red"           # ignition off

# Config entry keys
CONF_ENTRY_NAME = "entry_name"
CONF_API_KEY = "api_key"
CONF_BASE_URL = "base_url"
CONF_KV_URL = "kv_url"
CONF_KV_TOKEN = "kv_token"
CONF_SCAN_INTERVAL = "scan_interval"
