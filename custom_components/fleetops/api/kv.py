"""
REST key-value backend (Vercel KV / Upstash REST protocol).

Responsible for:
- Reading and writing JSON values by string key
- Reporting a missing or unreachable store as PersistenceUnavailableError
"""
import json
import logging
from typing import Any

from custom_components.fleetops.errors import (
    MalformedResponseError,
    PersistenceUnavailableError,
    TransportError,
)
from custom_components.fleetops.requests import make_request

_LOGGER = logging.getLogger(__name__)

KV_NOT_CONFIGURED_DETAILS = (
    "The data persistence service is not connected. Open the integration options "
    "and either set both the KV REST URL and the KV REST token, or clear both to "
    "keep clients and unit overrides in Home Assistant's own storage."
)


class RestKeyValueStore:
    """Key-value store reached through a Redis-compatible REST endpoint."""

    def __init__(self, url: str | None, token: str | None) -> None:
        self._url = url.rstrip("/") if url else url
        self._token = token

    def _headers(self) -> dict:
        if not self._url or not self._token:
            raise PersistenceUnavailableError(
                "Data persistence service is not configured.", KV_NOT_CONFIGURED_DETAILS
            )
        return {
            "accept": "application/json",
            "Authorization": f"Bearer {self._token}",
        }

    async def _command(self, *command) -> Any:
        headers = self._headers()
        try:
            raw_json = await make_request("POST", self._url, headers, payload=list(command), max_attempts=2)
        except (TransportError, MalformedResponseError) as e:
            _LOGGER.warning("Key-value command %s failed: %s", command[0], e)
            raise PersistenceUnavailableError(
                f"Data persistence service is unreachable: {e}"
            ) from e
        if not isinstance(raw_json, dict) or "result" not in raw_json:
            raise PersistenceUnavailableError(
                f"Unexpected answer from the data persistence service: {str(raw_json)[:200]}"
            )
        return raw_json["result"]

    async def get(self, key: str) -> Any:
        """Return the decoded value stored under key, or None."""
        result = await self._command("GET", key)
        if result is None:
            return None
        try:
            return json.loads(result)
        except (TypeError, ValueError) as e:
            raise PersistenceUnavailableError(f"Stored value for {key} is not valid JSON") from e

    async def set(self, key: str, value: Any) -> None:
        await self._command("SET", key, json.dumps(value))
        _LOGGER.debug("Stored key %s", key)
