"""Tests for the host discovery sweep."""

import time

from conftest import ScriptedProbe, messages_with

from fieldcheck.host_discovery import (
    MAX_SWEEP_HOSTS, HostDiscoveryScanner, discover, sweep_candidates,
)
from fieldcheck.models import ErrorKind, HostRecord, Measurement, ProbeKind
from fieldcheck.probes import Probe
from fieldcheck.store import Severity


class EveryoneAnswers(Probe):
    kind = ProbeKind.ICMP

    def execute(self, target, timeout):
        return Measurement(self.kind, target, value=0.4, succeeded=True)


class HangsUntilCancelled(Probe):
    """Every probe blocks until the sweep gives up on it."""

    kind = ProbeKind.ICMP

    def __init__(self, event, limit=10.0):
        self.event = event
        self.limit = limit

    def execute(self, target, timeout):
        self.event.wait(self.limit)
        return Measurement.failure(self.kind, target, ErrorKind.PROBE_TIMEOUT)


class TestSweepCandidates:

    def test_slash_24_yields_254_hosts(self, store):
        candidates = sweep_candidates("192.168.1.0/24", store)
        assert len(candidates) == MAX_SWEEP_HOSTS
        assert candidates[0] == "192.168.1.1"
        assert candidates[-1] == "192.168.1.254"

    def test_interface_address_is_accepted(self, store):
        candidates = sweep_candidates("192.168.1.37/24", store)
        assert "192.168.1.37" in candidates
        assert len(store) == 0

    def test_wider_network_is_narrowed_with_warning(self, store):
        candidates = sweep_candidates("10.20.30.40/16", store)
        assert len(candidates) == MAX_SWEEP_HOSTS
        assert all(c.startswith("10.20.30.") for c in candidates)
        assert messages_with(store, Severity.WARN, "10.20.30.0/24")

    def test_smaller_network(self, store):
        assert sweep_candidates("192.168.5.0/29", store) == [
            f"192.168.5.{i}" for i in range(1, 7)]

    def test_invalid_subnet_warns(self, store):
        assert sweep_candidates("not-a-subnet", store) == []
        assert messages_with(store, Severity.WARN, "not a valid subnet")

    def test_ipv6_is_rejected(self, store):
        assert sweep_candidates("fe80::1/64", store) == []
        assert store.entries()[0].severity == Severity.WARN


class TestHostDiscoveryScanner:

    def test_never_more_than_254_and_no_duplicates(self, store):
        scanner = HostDiscoveryScanner(store, probe_factory=lambda event: EveryoneAnswers())
        records = scanner.sweep("172.16.0.0/12", timeout=30)
        addresses = [r.address for r in records]
        assert len(addresses) <= MAX_SWEEP_HOSTS
        assert len(addresses) == len(set(addresses))

    def test_discover_returns_responding_hosts(self, store):
        probe = ScriptedProbe({"192.168.1.1": [0.8], "192.168.1.20": [2.5]})
        scanner = HostDiscoveryScanner(store, probe_factory=lambda event: probe, max_workers=8)
        hosts = scanner.discover("192.168.1.0/24", timeout=30)
        assert hosts == {HostRecord("192.168.1.1"), HostRecord("192.168.1.20")}
        assert len(probe.calls) == MAX_SWEEP_HOSTS
        assert messages_with(store, Severity.INFO, "Host found: 192.168.1.20 (2.5ms)")
        assert messages_with(store, Severity.INFO, "Discovery complete: 2 hosts responded")

    def test_unreachable_hosts_are_not_reported(self, store):
        scanner = HostDiscoveryScanner(store, probe_factory=lambda event: ScriptedProbe())
        assert scanner.discover("192.168.1.0/28", timeout=10) == set()
        assert store.messages(Severity.ERROR) == []

    def test_deadline_abandons_outstanding_probes(self, store):
        """Wall-clock time stays close to the timeout no matter how many hosts hang."""
        scanner = HostDiscoveryScanner(store, probe_factory=HangsUntilCancelled, max_workers=50)
        start = time.monotonic()
        hosts = scanner.discover("10.1.1.0/24", timeout=0.3)
        elapsed = time.monotonic() - start

        assert hosts == set()
        assert elapsed < 2.0
        assert messages_with(store, Severity.WARN, "254 probes abandoned")

    def test_deep_scan_resolves_names(self, store):
        probe = ScriptedProbe({"192.168.1.1": [1.0], "192.168.1.2": [1.0]})
        names = {"192.168.1.1": "router.lan"}
        scanner = HostDiscoveryScanner(store, probe_factory=lambda event: probe,
                                       reverse_lookup=names.get)
        hosts = scanner.discover("192.168.1.0/24", timeout=30, deep_scan=True)
        assert HostRecord("192.168.1.1", True, "router.lan") in hosts
        assert HostRecord("192.168.1.2", True, None) in hosts
        assert messages_with(store, Severity.INFO, "192.168.1.1 -> router.lan")

    def test_reverse_lookup_failure_is_tolerated(self, store):
        def broken_lookup(ip):
            raise OSError("resolver down")

        probe = ScriptedProbe({"192.168.1.9": [1.0]})
        scanner = HostDiscoveryScanner(store, probe_factory=lambda event: probe,
                                       reverse_lookup=broken_lookup)
        hosts = scanner.discover("192.168.1.0/24", timeout=30, deep_scan=True)
        assert hosts == {HostRecord("192.168.1.9")}

    def test_quick_scan_skips_reverse_lookup(self, store):
        calls = []
        probe = ScriptedProbe({"192.168.1.9": [1.0]})
        scanner = HostDiscoveryScanner(store, probe_factory=lambda event: probe,
                                       reverse_lookup=lambda ip: calls.append(ip))
        scanner.discover("192.168.1.0/24", timeout=30, deep_scan=False)
        assert calls == []

    def test_module_level_discover(self, store):
        hosts = discover("192.168.7.0/30", 5, False, store,
                         probe_factory=lambda event: EveryoneAnswers())
        assert {h.address for h in hosts} == {"192.168.7.1", "192.168.7.2"}
