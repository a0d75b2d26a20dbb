"""Tests for DHCP conflict detection."""

from conftest import FakeInventory, messages_with

from fieldcheck.dhcp_detector import DHCPConflictDetector, detect_conflicts
from fieldcheck.models import DHCPServerSet, ErrorKind, ProbeError
from fieldcheck.store import MeasurementStore, Severity


def methods_of(inventory, reverse=False):
    methods = [("lease", inventory.dhcp_lease_server),
               ("system query", inventory.dhcp_system_query)]
    return list(reversed(methods)) if reverse else methods


class TestDHCPServerSet:

    def test_add_reports_new_members_only(self):
        servers = DHCPServerSet()
        assert servers.add("10.0.0.1")
        assert not servers.add("10.0.0.1")
        assert not servers.add(" 10.0.0.1 ")
        assert len(servers) == 1

    def test_empty_identities_ignored(self):
        servers = DHCPServerSet()
        assert not servers.add(None)
        assert not servers.add("   ")
        assert len(servers) == 0

    def test_first_seen_order(self):
        servers = DHCPServerSet()
        for identity in ("10.0.0.9", "10.0.0.1", "10.0.0.9"):
            servers.add(identity)
        assert list(servers) == ["10.0.0.9", "10.0.0.1"]
        assert "10.0.0.1" in servers


class TestDHCPConflictDetector:

    def test_same_server_from_both_methods_is_not_a_conflict(self, store, eth0, wlan0):
        inventory = FakeInventory(lease={"eth0": "10.0.0.1", "wlan0": "10.0.0.1"},
                                  system={"eth0": "10.0.0.1"})
        servers = detect_conflicts([eth0, wlan0], store, methods_of(inventory))
        assert servers.as_set() == {"10.0.0.1"}
        assert messages_with(store, Severity.SUCCESS, "Single DHCP server detected: 10.0.0.1")
        assert store.messages(Severity.ERROR) == []

    def test_result_does_not_depend_on_method_order(self, eth0, wlan0):
        inventory = FakeInventory(lease={"eth0": "10.0.0.1", "wlan0": "192.168.8.1"},
                                  system={"eth0": "10.0.0.254", "wlan0": "10.0.0.1"})
        forward = detect_conflicts([eth0, wlan0], MeasurementStore(mirror_to_logging=False),
                                   methods_of(inventory))
        backward = detect_conflicts([eth0, wlan0], MeasurementStore(mirror_to_logging=False),
                                    methods_of(inventory, reverse=True))
        assert forward.as_set() == backward.as_set()
        assert len(forward) == 3

    def test_two_servers_is_a_conflict(self, store, eth0):
        inventory = FakeInventory(lease={"eth0": "192.168.1.1"},
                                  system={"eth0": "192.168.1.250"})
        servers = detect_conflicts([eth0], store, methods_of(inventory))
        assert len(servers) == 2
        errors = store.messages(Severity.ERROR)
        assert len(errors) == 1
        assert "2 different DHCP servers" in errors[0]
        assert "192.168.1.1" in errors[0] and "192.168.1.250" in errors[0]

    def test_no_server_warns(self, store, eth0):
        servers = detect_conflicts([eth0], store, methods_of(FakeInventory()))
        assert len(servers) == 0
        assert messages_with(store, Severity.WARN, "No DHCP server detected")

    def test_failing_method_warns_and_others_continue(self, store, eth0):
        def denied(iface):
            raise ProbeError(ErrorKind.PERMISSION_DENIED, "lease file unreadable")

        detector = DHCPConflictDetector(store, [("lease", denied),
                                                ("system query", lambda iface: "192.168.1.1")])
        servers = detector.detect_conflicts([eth0])
        assert list(servers) == ["192.168.1.1"]
        assert messages_with(store, Severity.WARN, "could not query lease on eth0")
        assert messages_with(store, Severity.SUCCESS, "Single DHCP server")

    def test_os_error_is_contained(self, store, eth0):
        def broken(iface):
            raise OSError("no such device")

        servers = DHCPConflictDetector(store, [("lease", broken)]).detect_conflicts([eth0])
        assert len(servers) == 0
        assert len(store.messages(Severity.WARN)) == 2

    def test_undecodable_output_does_not_stop_other_interfaces(self, store, eth0, wlan0):
        def garbled(iface):
            if iface.name == "eth0":
                raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")
            return "10.0.0.1"

        servers = DHCPConflictDetector(store, [("system query", garbled)]).detect_conflicts(
            [eth0, wlan0])
        assert list(servers) == ["10.0.0.1"]
        assert messages_with(store, Severity.WARN, "could not query system query on eth0")
        assert messages_with(store, Severity.SUCCESS, "Single DHCP server detected: 10.0.0.1")
