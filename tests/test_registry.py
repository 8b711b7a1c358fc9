"""
Action registry tests.

Covers discovery memoization, resolution of unknown and disabled actions,
duplicate rejection and change notification.
"""

import threading
import unittest

from unified_api.actions import MANIFEST, PingAction
from unified_api.errors import DuplicateActionError, ErrorKind
from unified_api.registry import ActionRegistry, RegistryState

from sample_actions import (
    BadIdentifierAction,
    DisabledAction,
    DuplicatePing,
    EchoAction,
    not_a_handler,
)


class TestDiscovery(unittest.TestCase):

    def setUp(self):
        self.registry = ActionRegistry(MANIFEST)

    def test_starts_empty_and_discovers_on_first_read(self):
        self.assertEqual(self.registry.state, RegistryState.EMPTY)
        outcome = self.registry.resolve("system.ping")
        self.assertTrue(outcome.succeeded)
        self.assertEqual(self.registry.state, RegistryState.READY)
        self.assertEqual(self.registry.discovery_count, 1)

    def test_discover_is_idempotent(self):
        first = self.registry.discover()
        second = self.registry.discover()
        self.assertEqual(first, second)
        self.assertEqual(self.registry.discovery_count, 1)
        self.assertEqual(len(first), len(MANIFEST))

    def test_every_manifest_action_resolves(self):
        for descriptor in self.registry.discover():
            outcome = self.registry.resolve(descriptor.action_type)
            self.assertTrue(outcome.succeeded)
            self.assertEqual(outcome.value, descriptor)

    def test_list_all_is_sorted(self):
        ids = self.registry.action_types()
        self.assertEqual(ids, sorted(ids))
        self.assertIn("system.ping", ids)
        self.assertIn("user.change_password", ids)

    def test_force_rediscovers(self):
        self.registry.discover()
        self.registry.discover(force=True)
        self.assertEqual(self.registry.discovery_count, 2)

    def test_invalidate_returns_to_empty(self):
        self.registry.discover()
        self.registry.invalidate()
        self.assertEqual(self.registry.state, RegistryState.EMPTY)
        self.assertTrue(self.registry.has("system.info"))
        self.assertEqual(self.registry.discovery_count, 2)

    def test_concurrent_cold_reads_discover_once(self):
        barrier = threading.Barrier(8)
        results = []

        def worker():
            barrier.wait()
            results.append(self.registry.resolve("system.ping").succeeded)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(results, [True] * 8)
        self.assertEqual(self.registry.discovery_count, 1)

    def test_duplicate_in_manifest_is_rejected(self):
        registry = ActionRegistry(MANIFEST + (DuplicatePing,))
        with self.assertRaises(DuplicateActionError) as ctx:
            registry.discover()
        self.assertEqual(ctx.exception.action_type, "system.ping")

    def test_invalid_identifier_is_rejected(self):
        with self.assertRaises(ValueError):
            ActionRegistry((BadIdentifierAction,)).discover()

    def test_factory_must_build_handler(self):
        with self.assertRaises(TypeError):
            ActionRegistry((not_a_handler,)).discover()


class TestResolution(unittest.TestCase):

    def setUp(self):
        self.registry = ActionRegistry(MANIFEST + (DisabledAction,))

    def test_unknown_is_not_found(self):
        outcome = self.registry.resolve("no.such")
        self.assertFalse(outcome.succeeded)
        self.assertEqual(outcome.kind, ErrorKind.NOT_FOUND)
        self.assertEqual(outcome.error.error_code.value, "ACTION_NOT_FOUND")

    def test_disabled_is_not_found_but_listed(self):
        outcome = self.registry.resolve("test.disabled")
        self.assertEqual(outcome.kind, ErrorKind.NOT_FOUND)
        self.assertIsNotNone(self.registry.get("test.disabled"))
        self.assertIn("test.disabled", self.registry.action_types())

    def test_descriptor_is_frozen(self):
        descriptor = self.registry.get("system.info")
        with self.assertRaises(Exception):
            descriptor.required_capabilities = ("nothing",)
        self.assertEqual(descriptor.required_capabilities, ("system.read",))

    def test_handlers_are_fresh_per_call(self):
        descriptor = self.registry.get("system.ping")
        first = self.registry.create_handler(descriptor)
        second = self.registry.create_handler(descriptor)
        self.assertIsInstance(first, PingAction)
        self.assertIsNot(first, second)

    def test_statistics(self):
        stats = self.registry.statistics()
        self.assertEqual(stats["total_actions"], len(MANIFEST) + 1)
        self.assertEqual(stats["disabled_actions"], 1)
        self.assertEqual(stats["state"], "READY")


class TestRegistration(unittest.TestCase):

    def setUp(self):
        self.registry = ActionRegistry(MANIFEST)
        self.events = []
        self.registry.subscribe(lambda event, ids: self.events.append((event, ids)))

    def test_register_and_resolve(self):
        descriptor = self.registry.register(EchoAction)
        self.assertEqual(descriptor.source, "explicit")
        self.assertTrue(self.registry.resolve("test.echo").succeeded)
        self.assertIn(("register", ["test.echo"]), self.events)

    def test_duplicate_registration_is_rejected(self):
        with self.assertRaises(DuplicateActionError):
            self.registry.register(PingAction)
        self.registry.register(EchoAction)
        with self.assertRaises(DuplicateActionError):
            self.registry.register(EchoAction)

    def test_explicit_registration_survives_refresh(self):
        self.registry.register(EchoAction)
        self.registry.refresh()
        self.assertTrue(self.registry.has("test.echo"))

    def test_unregister(self):
        self.registry.register(EchoAction)
        self.assertTrue(self.registry.unregister("test.echo"))
        self.assertFalse(self.registry.has("test.echo"))
        self.assertFalse(self.registry.unregister("test.echo"))
        self.assertIn(("unregister", ["test.echo"]), self.events)

    def test_unregistered_manifest_action_returns_on_refresh(self):
        self.registry.unregister("system.ping")
        self.assertFalse(self.registry.resolve("system.ping").succeeded)
        self.registry.refresh()
        self.assertTrue(self.registry.resolve("system.ping").succeeded)

    def test_lifecycle_events(self):
        self.registry.discover()
        self.registry.invalidate()
        events = [event for event, _ in self.events]
        self.assertEqual(events, ["discover", "invalidate"])


if __name__ == "__main__":
    unittest.main()
