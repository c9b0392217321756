"""
Tests for FleetOpsCoordinator: one poll tick end to end with a mocked api
and store, the isolation of the two paths, and the operator actions.

Coverage:
- clean tick publishes merged units and new alarms and clears the error
- units failure keeps last units, alarms still ingested (and vice versa)
- both failing joins the messages with "; "
- first refresh without units raises UpdateFailed
- persistence failure degrades to units without overrides
- driverless units are placeholders until an operator saves a driver
- deleting a client unassigns the units that pointed at it
- window only advances after a successful alarm fetch
- dismissed alarms are not brought back by the overlapping window
- actions taken while a tick is in flight survive the tick
- overlapping ticks are skipped
- shutdown cancels the in-flight tick and discards its results
"""

from __future__ import annotations

import asyncio
import unittest
from datetime import timedelta
from unittest.mock import AsyncMock

from homeassistant.helpers.update_coordinator import UpdateFailed

from custom_components.fleetops.coordinator_data import FleetData
from custom_components.fleetops.errors import (
    MalformedResponseError,
    PersistenceUnavailableError,
    TransportError,
    ValidationError,
)
from custom_components.fleetops.models import Client, Override, TicketStatus
from custom_components.fleetops.store import FleetStore

from .test_common import (
    NOW,
    FakeClock,
    MemoryKeyValueStore,
    make_alarm,
    make_api,
    make_client,
    make_coordinator,
    make_store,
    make_unit_raw,
)


class _CoordinatorTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.api = make_api(units=[make_unit_raw(1), make_unit_raw(2)])
        self.store = make_store()
        self.coord = make_coordinator(api=self.api, store=self.store, clock=self.clock)

    async def _tick(self) -> FleetData:
        """Run one tick and publish it the way HA does."""
        self.clock.tick(5)
        data = await self.coord._async_update_data()
        self.coord.data = data
        return data


class TestInit(unittest.TestCase):

    def test_initial_snapshot_is_empty(self):
        coord = make_coordinator()
        self.assertIsInstance(coord.data, FleetData)
        self.assertEqual(coord.data.units, [])
        self.assertEqual(coord.data.error, "")
        self.assertFalse(coord.data.muted)

    def test_update_interval_from_entry(self):
        coord = make_coordinator(scan_interval=30)
        self.assertEqual(coord.update_interval, timedelta(seconds=30))

    def test_window_starts_in_catch_up(self):
        coord = make_coordinator(clock=FakeClock())
        self.assertTrue(coord.window.catching_up)
        self.assertEqual(coord.window.lower_bound, NOW - timedelta(minutes=120))


class TestCleanTick(_CoordinatorTestCase):

    async def test_units_and_alarms_published(self):
        self.api.fetch_alarms.return_value = [make_alarm(1)]
        data = await self._tick()

        self.assertEqual([u.unit_id for u in data.units], [1, 2])
        self.assertEqual([a.device_id for a in data.alarms], [1])
        self.assertEqual(data.error, "")

    async def test_first_query_uses_catch_up_window(self):
        await self._tick()
        from_, till = self.api.fetch_alarms.call_args.args
        self.assertEqual(from_, NOW - timedelta(minutes=120))
        self.assertEqual(till, NOW + timedelta(seconds=5))

    async def test_second_query_uses_look_back(self):
        await self._tick()
        first_till = self.api.fetch_alarms.call_args.args[1]
        await self._tick()
        from_, _ = self.api.fetch_alarms.call_args.args
        self.assertEqual(from_, first_till - timedelta(minutes=5))
        self.assertFalse(self.coord.window.catching_up)

    async def test_overrides_and_default_clients_merged(self):
        self.store.async_get_clients.return_value = [make_client(100), make_client(101)]
        self.store.async_get_overrides.return_value = {2: Override(number="RIX-2")}
        data = await self._tick()

        self.assertEqual(data.units[0].client_id, 100)
        self.assertEqual(data.units[1].client_id, 101)
        self.assertEqual(data.units[1].number, "RIX-2")
        self.assertFalse(data.units[1].is_mock)
        self.assertEqual([c.id for c in data.clients], [100, 101])

    async def test_units_replaced_wholesale(self):
        await self._tick()
        self.api.fetch_units.return_value = [make_unit_raw(3)]
        data = await self._tick()
        self.assertEqual([u.unit_id for u in data.units], [3])

    async def test_repeated_alarm_not_duplicated(self):
        self.api.fetch_alarms.return_value = [make_alarm(1)]
        await self._tick()
        data = await self._tick()
        self.assertEqual(len(data.alarms), 1)

    async def test_alarms_accumulate_in_arrival_order(self):
        first = make_alarm(1, NOW)
        second = make_alarm(2, NOW - timedelta(minutes=1))
        self.api.fetch_alarms.return_value = [first]
        await self._tick()
        self.api.fetch_alarms.return_value = [first, second]
        data = await self._tick()
        self.assertEqual(data.alarms, [first, second])


class TestPathIsolation(_CoordinatorTestCase):

    async def asyncSetUp(self):
        await self._tick()
        self.assertEqual(self.coord.data.error, "")

    async def test_units_failure_keeps_units_and_ingests_alarms(self):
        self.api.fetch_units.side_effect = TransportError("Timeout while connecting to mapon")
        self.api.fetch_alarms.return_value = [make_alarm(1)]
        data = await self._tick()

        self.assertEqual([u.unit_id for u in data.units], [1, 2])
        self.assertEqual(len(data.alarms), 1)
        self.assertEqual(data.error, "Timeout while connecting to mapon")

    async def test_alarms_failure_keeps_window_and_updates_units(self):
        window_before = self.coord.window
        self.api.fetch_units.return_value = [make_unit_raw(5)]
        self.api.fetch_alarms.side_effect = MalformedResponseError(
            "Received an unexpected data format for alarms."
        )
        data = await self._tick()

        self.assertEqual([u.unit_id for u in data.units], [5])
        self.assertEqual(self.coord.window, window_before)
        self.assertEqual(data.error, "Received an unexpected data format for alarms.")

    async def test_both_failures_joined(self):
        self.api.fetch_units.side_effect = TransportError("units down")
        self.api.fetch_alarms.side_effect = TransportError("alarms down")
        data = await self._tick()
        self.assertEqual(data.error, "units down; alarms down")

    async def test_clean_tick_clears_error(self):
        self.api.fetch_units.side_effect = TransportError("units down")
        await self._tick()
        self.api.fetch_units.side_effect = None
        data = await self._tick()
        self.assertEqual(data.error, "")

    async def test_failed_window_is_retried(self):
        self.api.fetch_alarms.side_effect = TransportError("alarms down")
        await self._tick()
        failed_from = self.api.fetch_alarms.call_args.args[0]

        self.api.fetch_alarms.side_effect = None
        await self._tick()
        self.assertEqual(self.api.fetch_alarms.call_args.args[0], failed_from)


class TestInitialRefresh(_CoordinatorTestCase):

    async def test_units_failure_before_any_data_raises(self):
        self.api.fetch_units.side_effect = TransportError("refused")
        with self.assertRaises(UpdateFailed):
            await self.coord._async_update_data()

    async def test_alarm_failure_on_first_tick_does_not_raise(self):
        self.api.fetch_alarms.side_effect = TransportError("alarms down")
        data = await self._tick()
        self.assertEqual(len(data.units), 2)
        self.assertEqual(data.error, "alarms down")


class TestPersistenceDegrade(_CoordinatorTestCase):

    async def test_units_shown_without_overrides(self):
        self.store.async_get_clients.return_value = [make_client(100)]
        await self._tick()

        self.store.async_get_clients.side_effect = PersistenceUnavailableError(
            "Data persistence service is not configured.", "Set both KV fields."
        )
        data = await self._tick()

        self.assertEqual(len(data.units), 2)
        self.assertTrue(data.error.startswith("Persistence unavailable: "))
        self.assertIn("Set both KV fields.", data.error)
        # Last known clients are kept
        self.assertEqual([c.id for c in data.clients], [100])
        self.assertEqual(data.units[0].client_id, 100)


class TestDriverMerge(_CoordinatorTestCase):
    """Placeholder flag and operator-entered drivers through a real store."""

    async def test_units_without_driver_are_placeholders(self):
        self.api.fetch_units.return_value = [
            make_unit_raw(1),
            make_unit_raw(2, driver="Ilze", has_driver=True),
        ]
        data = await self._tick()

        self.assertTrue(data.units[0].is_mock)
        self.assertIsNone(data.units[0].driver)
        self.assertFalse(data.units[1].is_mock)
        self.assertEqual(data.units[1].driver, "Ilze")

    async def test_saved_driver_survives_next_tick(self):
        self.api.fetch_units.return_value = [make_unit_raw(7)]
        self.coord = make_coordinator(
            api=self.api, store=FleetStore(MemoryKeyValueStore()), clock=self.clock
        )
        await self._tick()
        self.assertTrue(self.coord.get_unit(7).is_mock)

        await self.coord.async_save_override(7, driver="X")
        data = await self._tick()

        self.assertEqual(data.units[0].driver, "X")
        self.assertFalse(data.units[0].is_mock)


class TestDismissAndTickets(_CoordinatorTestCase):

    async def asyncSetUp(self):
        self.alarm = make_alarm(1)
        self.other = make_alarm(2)
        self.api.fetch_alarms.return_value = [self.alarm, self.other]
        await self._tick()

    async def test_dismiss_removes_alarm(self):
        self.coord.async_dismiss_alarm(self.alarm.id)
        self.assertEqual(self.coord.data.alarms, [self.other])

    async def test_dismissed_alarm_not_resurrected_by_overlap(self):
        self.coord.async_dismiss_alarm(self.alarm.id)
        data = await self._tick()
        self.assertEqual(data.alarms, [self.other])

    async def test_dismiss_unknown_id_is_noop(self):
        self.coord.async_dismiss_alarm("nope")
        self.assertEqual(len(self.coord.data.alarms), 2)

    async def test_create_ticket_dismisses_alarm(self):
        ticket = self.coord.async_create_ticket_from_alarm(self.alarm, notes="Called driver")

        self.assertEqual(ticket.id, f"TICKET-{int(self.clock.now.timestamp() * 1000)}")
        self.assertEqual(ticket.status, TicketStatus.OPEN)
        self.assertEqual(ticket.device_name, "AB-001")
        self.assertEqual(ticket.summary, self.alarm.message)
        self.assertEqual(ticket.history[0].notes, "Called driver")
        self.assertEqual(ticket.history[0].author, "System")
        self.assertEqual(self.coord.data.tickets, [ticket])
        self.assertEqual(self.coord.data.alarms, [self.other])

    async def test_ticket_ids_unique_within_same_millisecond(self):
        first = self.coord.async_create_ticket_from_alarm(self.alarm)
        second = self.coord.async_create_ticket_from_alarm(self.other)
        self.assertNotEqual(first.id, second.id)
        # Newest first
        self.assertEqual(self.coord.data.tickets, [second, first])

    async def test_ticket_for_unknown_unit_uses_placeholder_name(self):
        ticket = self.coord.async_create_ticket_from_alarm(make_alarm(99))
        self.assertEqual(ticket.device_name, "Vehicle 99")

    async def test_update_ticket_status(self):
        ticket = self.coord.async_create_ticket_from_alarm(self.alarm)
        self.clock.tick(60)
        updated = self.coord.async_update_ticket_status(ticket.id, TicketStatus.IN_PROGRESS, author="Anna")

        self.assertEqual(updated.status, TicketStatus.IN_PROGRESS)
        self.assertEqual(len(updated.history), 2)
        self.assertEqual(updated.history[0].notes, "Status changed to In Progress")
        self.assertEqual(updated.history[0].author, "Anna")
        self.assertEqual(self.coord.data.tickets, [updated])

    async def test_update_ticket_same_status_without_notes_is_noop(self):
        ticket = self.coord.async_create_ticket_from_alarm(self.alarm)
        same = self.coord.async_update_ticket_status(ticket.id, TicketStatus.OPEN)
        self.assertEqual(same, ticket)

    async def test_update_unknown_ticket_raises(self):
        with self.assertRaises(ValidationError):
            self.coord.async_update_ticket_status("TICKET-0", TicketStatus.CLOSED)

    async def test_mute(self):
        self.coord.async_set_muted(True)
        self.assertTrue(self.coord.data.muted)
        # Alarms stay listed while muted
        self.assertEqual(len(self.coord.data.alarms), 2)


class TestConcurrency(_CoordinatorTestCase):

    async def asyncSetUp(self):
        self.alarm = make_alarm(1)
        self.api.fetch_alarms.return_value = [self.alarm]
        await self._tick()

    async def test_dismiss_during_tick_is_kept(self):
        release = asyncio.Event()

        async def slow_alarms(from_, till):
            await release.wait()
            return [self.alarm]

        self.api.fetch_alarms = AsyncMock(side_effect=slow_alarms)
        tick = asyncio.ensure_future(self.coord._async_update_data())
        await asyncio.sleep(0)

        self.coord.async_dismiss_alarm(self.alarm.id)
        release.set()
        data = await tick

        self.assertEqual(data.alarms, [])

    async def test_overlapping_tick_is_skipped(self):
        self.api.fetch_units.reset_mock()
        async with self.coord._tick_lock:
            data = await self.coord._async_update_data()
        self.assertIs(data, self.coord.data)
        self.api.fetch_units.assert_not_awaited()

    async def test_shutdown_discards_in_flight_tick(self):
        release = asyncio.Event()

        async def slow_units():
            await release.wait()
            return [make_unit_raw(9)]

        self.api.fetch_units = AsyncMock(side_effect=slow_units)
        before = self.coord.data
        tick = asyncio.ensure_future(self.coord._async_update_data())
        await asyncio.sleep(0)

        await self.coord.async_shutdown()
        data = await tick

        self.assertIs(data, before)

    async def test_no_fetch_after_shutdown(self):
        await self.coord.async_shutdown()
        self.api.fetch_units.reset_mock()
        await self.coord._async_update_data()
        self.api.fetch_units.assert_not_awaited()


class TestWritePath(_CoordinatorTestCase):

    async def asyncSetUp(self):
        self.store.async_get_clients.return_value = [make_client(100)]
        await self._tick()

    async def test_save_override_applied_without_poll(self):
        self.store.async_save_override.return_value = Override(number="RIX-1", driver="Ilze")
        await self.coord.async_save_override(1, number="RIX-1", driver="Ilze")

        kwargs = self.store.async_save_override.call_args.kwargs
        self.assertEqual(kwargs["known_client_ids"], {100})
        unit = self.coord.get_unit(1)
        self.assertEqual(unit.number, "RIX-1")
        self.assertFalse(unit.is_mock)

    async def test_save_override_validation_error_propagates(self):
        self.store.async_save_override.side_effect = ValidationError("Unknown client 5")
        with self.assertRaises(ValidationError):
            await self.coord.async_save_override(1, client_id=5)
        self.assertEqual(self.coord.get_unit(1).number, "AB-001")

    async def test_save_client_upserts_published_list(self):
        self.store.async_save_client.return_value = make_client(101)
        await self.coord.async_save_client(Client(id=None, company="Company 101"))
        self.assertEqual([c.id for c in self.coord.data.clients], [100, 101])

    async def test_delete_client(self):
        await self.coord.async_delete_client(100)
        self.assertEqual(self.coord.data.clients, [])

    async def test_delete_client_unassigns_its_units(self):
        self.assertEqual(self.coord.get_unit(1).client_id, 100)
        await self.coord.async_delete_client(100)
        self.assertIsNone(self.coord.get_unit(1).client_id)
        self.assertIsNone(self.coord.get_unit(2).client_id)

    async def test_device_info(self):
        info = self.coord.get_device_info(1)
        self.assertEqual(info["name"], "AB-001")
        self.assertEqual(info["manufacturer"], "Mapon")
        self.assertIn(("fleetops", "test-guid_1"), info["identifiers"])
        self.assertIsNone(self.coord.get_device_info(42))
