"""
SAS Field Network Check - Diagnostic Engine
Runs every probe family against one MeasurementStore and summarizes.

The families share nothing but the store, so they can run one after another
(the default, which keeps the report easy to read) or as independent
pipelines on a small thread pool. The summary always runs last.

Usage:
    store = MeasurementStore(ReportFileSink(path))
    engine = DiagnosticEngine(config, store)
    result = engine.run(deep=False)
    print(result.summary.verdict.value)
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from fieldcheck.dhcp_detector import DHCPConflictDetector
from fieldcheck.dns_check import DnsChecker
from fieldcheck.host_discovery import HostDiscoveryScanner
from fieldcheck.models import HostRecord, ProbeError
from fieldcheck.network_utils import IPv4Config, NetworkInterface, NetworkInventory, Route
from fieldcheck.performance import PerformanceAnalyzer
from fieldcheck.port_tester import PortConnectivityTester
from fieldcheck.probes import CounterProbe, IcmpProbe, Probe
from fieldcheck.report import RunSummary, summarize
from fieldcheck.routing import RoutingAnalyzer
from fieldcheck.settings_manager import DiagnosticConfig
from fieldcheck.storm_detector import StormDetector
from fieldcheck.store import MeasurementStore

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Everything one run produced, owned by the caller."""
    summary: RunSummary
    hosts: Set[HostRecord] = field(default_factory=set)
    results: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RunContext:
    """What the inventory step learned about the local host."""
    interfaces: List[NetworkInterface] = field(default_factory=list)
    routes: Optional[List[Route]] = None
    primary: Optional[IPv4Config] = None
    gateway: Optional[str] = None

    @property
    def subnet(self) -> Optional[str]:
        return self.primary.cidr if self.primary else None


class DiagnosticEngine:

    def __init__(self, config: DiagnosticConfig, store: MeasurementStore,
                 inventory: Optional[NetworkInventory] = None,
                 latency_probe: Optional[Probe] = None,
                 discovery_scanner: Optional[HostDiscoveryScanner] = None,
                 port_tester: Optional[PortConnectivityTester] = None,
                 dns_checker: Optional[DnsChecker] = None,
                 storm_detector: Optional[StormDetector] = None):
        self.config = config
        self.store = store
        self.inventory = inventory or NetworkInventory()

        self.performance = PerformanceAnalyzer(
            store,
            probe=latency_probe or IcmpProbe(),
            thresholds=config.wan_thresholds,
            gateway_thresholds=config.gateway_thresholds,
            sample_count=config.latency_samples,
            probe_timeout=config.latency_probe_timeout,
        )
        self.scanner = discovery_scanner or HostDiscoveryScanner(
            store,
            max_workers=config.discovery_workers,
            probe_timeout=config.discovery_probe_timeout,
        )
        self.port_tester = port_tester or PortConnectivityTester(
            store, timeout=config.port_timeout, sample_size=config.port_sample_size)
        self.dns_checker = dns_checker or DnsChecker(
            store, timeout=config.dns_timeout, slow_ms=config.dns_slow_ms)
        self.storm_detector = storm_detector or StormDetector(
            store, config.storm_thresholds,
            probe=CounterProbe(self.inventory.snapshot_counters))
        self.dhcp_detector = DHCPConflictDetector(store, [
            ("lease", self.inventory.dhcp_lease_server),
            ("system query", self.inventory.dhcp_system_query),
        ])
        self.routing = RoutingAnalyzer(store, config.custom_route_limit)

    # ── Run ──────────────────────────────────────────────────────────────

    def run(self, deep: Optional[bool] = None, parallel: bool = False) -> RunResult:
        deep = self.config.deep_scan if deep is None else deep
        self.store.info(f"Network diagnostic started {datetime.now():%Y-%m-%d %H:%M:%S} "
                        f"({'deep' if deep else 'quick'} scan)")

        context = self._guarded("Interface inventory", self.collect_inventory) or RunContext()

        families: List[Tuple[str, Callable[[], object]]] = [
            ("Gateway check", lambda: self.check_gateway(context)),
            ("Host discovery", lambda: self.discover_hosts(context, deep)),
            ("DHCP check", lambda: self.dhcp_detector.detect_conflicts(context.interfaces)),
            ("Storm detection", lambda: self.storm_detector.detect_storms()),
            ("Performance test", lambda: self.performance.analyze_performance(
                self.config.reference_targets)),
            ("DNS check", lambda: self.dns_checker.check_dns(
                self.config.dns_test_names, self.config.dns_servers)),
            ("Port test", lambda: self.port_tester.test_ports(
                self.config.services, context.gateway)),
            ("Routing analysis", lambda: self.analyze_routing(context)),
        ]

        results: Dict[str, Any] = {}
        if parallel:
            with ThreadPoolExecutor(max_workers=len(families),
                                    thread_name_prefix="family") as executor:
                futures = {name: executor.submit(self._guarded, name, fn) for name, fn in families}
                for name, future in futures.items():
                    results[name] = future.result()
        else:
            for name, fn in families:
                self.store.info(f"--- {name} ---")
                results[name] = self._guarded(name, fn)

        return RunResult(summary=summarize(self.store),
                         hosts=results.get("Host discovery") or set(),
                         results=results)

    def _guarded(self, name: str, fn: Callable[[], object]):
        """Run one family; an unexpected failure is reported, never propagated."""
        try:
            return fn()
        except Exception as e:
            logger.exception(f"{name} failed")
            self.store.error(f"{name} failed: {e}")
            return None

    # ── Families ─────────────────────────────────────────────────────────

    def collect_inventory(self) -> RunContext:
        context = RunContext(interfaces=self.inventory.list_up_interfaces())
        try:
            context.routes = self.inventory.list_routes()
        except (ProbeError, OSError) as e:
            self.store.warn(f"Could not read routing table: {e}")

        if not context.interfaces:
            self.store.error("No active IPv4 network interface found")
            return context

        for iface in context.interfaces:
            ipv4 = self.inventory.get_ipv4_config(iface, context.routes or [])
            gateway = ipv4.default_gateway
            speed = f"{iface.speed_mbps} Mbps" if iface.speed_mbps else "unknown speed"
            self.store.info(f"Interface {iface.name}: {ipv4.cidr}, "
                            f"MAC {iface.mac_address or 'n/a'}, {speed}, "
                            f"gateway {gateway or 'none'}")
            if gateway and context.gateway is None:
                context.primary = ipv4
                context.gateway = gateway

        if context.gateway is None:
            self.store.warn("No default gateway found on any interface")
        return context

    def check_gateway(self, context: RunContext):
        if not context.gateway:
            self.store.warn("Gateway check skipped: default gateway could not be determined")
            return None
        return self.performance.analyze_gateway(context.gateway)

    def discover_hosts(self, context: RunContext, deep: bool):
        subnet = self.config.subnet or context.subnet
        if not subnet:
            self.store.warn("Host discovery skipped: could not determine the local subnet")
            return set()
        return self.scanner.discover(subnet, self.config.discovery_timeout, deep_scan=deep)

    def analyze_routing(self, context: RunContext):
        if context.routes is None:
            self.store.warn("Routing analysis skipped: routing table unavailable")
            return None
        return self.routing.analyze_routes(context.routes)
