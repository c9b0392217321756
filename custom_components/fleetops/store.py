"""
Persistence for clients and per-unit overrides.

Responsibilities:
- Provide a key-value backend on top of Home Assistant's own storage.
- Keep the unit-override table as a mapping in memory and as an ordered
  list of [unit_id, fields] pairs on the wire.
- Validate and merge operator edits before they are written.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Any, Iterable, Protocol

from homeassistant.core import HomeAssistant
from homeassistant.helpers.storage import Store

from .const import DOMAIN, KV_CLIENTS_KEY, KV_UNIT_OVERRIDES_KEY, OVERRIDE_FIELDS, STORAGE_VERSION
from .errors import PersistenceUnavailableError, ValidationError
from .models import Client, Override

_LOGGER = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...


class LocalKeyValueStore:
    """Key-value store backed by one Home Assistant storage file per key."""

    def __init__(self, hass: HomeAssistant, scope: str) -> None:
        self._hass = hass
        self._scope = scope
        self._stores: dict[str, Store] = {}

    def _store(self, key: str) -> Store:
        if key not in self._stores:
            self._stores[key] = Store(self._hass, STORAGE_VERSION, f"{DOMAIN}.{self._scope}.{key}")
        return self._stores[key]

    async def get(self, key: str) -> Any:
        try:
            return await self._store(key).async_load()
        except (OSError, ValueError) as e:
            raise PersistenceUnavailableError(f"Could not read {key} from local storage: {e}") from e

    async def set(self, key: str, value: Any) -> None:
        try:
            await self._store(key).async_save(value)
        except (OSError, ValueError) as e:
            raise PersistenceUnavailableError(f"Could not write {key} to local storage: {e}") from e


# ---------------------------------------------------------------------------
# Serialization edge
# ---------------------------------------------------------------------------

def decode_overrides(pairs: Iterable | None) -> dict[int, Override]:
    """Turn the stored [[unit_id, fields], ...] list into a mapping."""
    overrides: dict[int, Override] = {}
    for pair in pairs or []:
        try:
            unit_id, fields = pair
            overrides[int(unit_id)] = Override.from_dict(fields)
        except (TypeError, ValueError, AttributeError):
            _LOGGER.warning("Ignoring malformed override entry: %s", pair)
    return overrides


def encode_overrides(overrides: dict[int, Override]) -> list[list]:
    """Inverse of decode_overrides; insertion order is kept."""
    return [[unit_id, override.to_dict()] for unit_id, override in overrides.items()]


def clean_override_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """
    Validate an operator edit and drop the fields it leaves empty.

    Empty values mean "not edited", never "erase".
    """
    unknown = set(fields) - set(OVERRIDE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields cannot be overridden: {', '.join(sorted(unknown))}")

    cleaned: dict[str, Any] = {}
    for name, value in fields.items():
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        cleaned[name] = value

    client_id = cleaned.get("client_id")
    if client_id is not None and (isinstance(client_id, bool) or not isinstance(client_id, int)):
        raise ValidationError(f"client_id must be an integer, got {client_id!r}")
    return cleaned


def merge_override(existing: Override | None, fields: dict[str, Any]) -> Override:
    """New values win; fields not mentioned keep their earlier value. Always clears is_mock."""
    merged = dict(existing.fields()) if existing else {}
    merged.update(fields)
    return Override(is_mock=False, **merged)


# ---------------------------------------------------------------------------
# FleetStore
# ---------------------------------------------------------------------------

class FleetStore:
    """Clients and unit overrides kept in a key-value store."""

    def __init__(self, backend: KeyValueStore) -> None:
        self._backend = backend
        self._write_lock = asyncio.Lock()

    # --- clients ---

    async def async_get_clients(self) -> list[Client]:
        raw = await self._backend.get(KV_CLIENTS_KEY) or []
        return [Client.from_dict(c) for c in raw if isinstance(c, dict)]

    async def async_save_client(self, client: Client) -> Client:
        """Insert or replace a client; a missing id is assigned from the clock."""
        if not client.company or not client.company.strip():
            raise ValidationError("Client company name is required")

        async with self._write_lock:
            clients = await self.async_get_clients()
            if client.id is None:
                client = Client(
                    id=int(time.time() * 1000),
                    company=client.company,
                    contact_person=client.contact_person,
                    phone=client.phone,
                    email=client.email,
                )
            for index, existing in enumerate(clients):
                if existing.id == client.id:
                    clients[index] = client
                    break
            else:
                clients.append(client)
            await self._backend.set(KV_CLIENTS_KEY, [c.to_dict() for c in clients])

        _LOGGER.debug("Saved client %s", client.id)
        return client

    async def async_delete_client(self, client_id: int) -> None:
        """Remove a client and unassign every unit override that pointed at it."""
        async with self._write_lock:
            clients = await self.async_get_clients()
            remaining = [c for c in clients if c.id != client_id]
            await self._backend.set(KV_CLIENTS_KEY, [c.to_dict() for c in remaining])

            overrides = await self.async_get_overrides()
            orphaned = [unit_id for unit_id, o in overrides.items() if o.client_id == client_id]
            if orphaned:
                for unit_id in orphaned:
                    overrides[unit_id] = dataclasses.replace(overrides[unit_id], client_id=None)
                await self._backend.set(KV_UNIT_OVERRIDES_KEY, encode_overrides(overrides))
        _LOGGER.debug("Deleted client %s, unassigned units %s", client_id, orphaned)

    # --- overrides ---

    async def async_get_overrides(self) -> dict[int, Override]:
        return decode_overrides(await self._backend.get(KV_UNIT_OVERRIDES_KEY))

    async def async_save_override(
        self,
        unit_id: int,
        known_client_ids: set[int] | None = None,
        **fields: Any,
    ) -> Override:
        """
        Merge an operator edit into the stored override of unit_id.

        Raises ValidationError before touching the store when the edit is invalid.
        """
        if isinstance(unit_id, bool) or not isinstance(unit_id, int):
            raise ValidationError(f"unit_id is required and must be an integer, got {unit_id!r}")
        cleaned = clean_override_fields(fields)
        client_id = cleaned.get("client_id")
        if known_client_ids is not None and client_id is not None and client_id not in known_client_ids:
            raise ValidationError(f"Unknown client {client_id}")

        async with self._write_lock:
            overrides = await self.async_get_overrides()
            override = merge_override(overrides.get(unit_id), cleaned)
            overrides[unit_id] = override
            await self._backend.set(KV_UNIT_OVERRIDES_KEY, encode_overrides(overrides))

        _LOGGER.debug("Saved override for unit %s: %s", unit_id, override.fields())
        return override
