"""
SAS Field Network Check - Host Discovery
Bounded-concurrency ping sweep of the local /24 with a hard deadline.

Every candidate address gets one single-attempt ICMP probe on a worker pool.
The sweep waits until all probes finish or the overall timeout runs out,
whichever comes first. Probes still outstanding at the deadline are abandoned:
queued ones are cancelled (and see the cancel event if they start anyway),
running ones finish on their own ping timeout and their results are dropped.
"""

import ipaddress
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional, Set

from fieldcheck import network_utils
from fieldcheck.models import HostRecord
from fieldcheck.probes import IcmpProbe, Probe
from fieldcheck.store import MeasurementStore

logger = logging.getLogger(__name__)

MAX_SWEEP_HOSTS = 254
DEFAULT_PROBE_TIMEOUT = 1.0
DEFAULT_MAX_WORKERS = 50


def sweep_candidates(subnet: str, store: MeasurementStore) -> List[str]:
    """
    Candidate addresses for a sweep of subnet, at most 254.

    Accepts a network ("192.168.1.0/24") or an interface address
    ("192.168.1.37/24"). Anything wider than a /24 is narrowed to the /24 that
    contains the given address, with a warning.
    """
    try:
        iface = ipaddress.ip_interface(subnet.strip())
    except ValueError:
        store.warn(f"Host discovery skipped: '{subnet}' is not a valid subnet")
        return []
    if iface.version != 4:
        store.warn(f"Host discovery skipped: {subnet} is not an IPv4 subnet")
        return []

    network = iface.network
    if network.prefixlen < 24:
        narrowed = ipaddress.IPv4Network(f"{iface.ip}/24", strict=False)
        store.warn(f"Subnet {network} is larger than a /24 - sweeping {narrowed} only")
        network = narrowed

    return [str(h) for h in network.hosts()][:MAX_SWEEP_HOSTS]


class HostDiscoveryScanner:
    """
    Ping sweep with a bounded worker pool and abandon-on-deadline semantics.

    Usage:
        scanner = HostDiscoveryScanner(store)
        hosts = scanner.discover("192.168.1.0/24", timeout=60, deep_scan=True)
    """

    def __init__(
        self,
        store: MeasurementStore,
        probe_factory: Optional[Callable[[threading.Event], Probe]] = None,
        reverse_lookup: Optional[Callable[[str], Optional[str]]] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self._probe_factory = probe_factory or (lambda event: IcmpProbe(cancel_event=event))
        self._reverse_lookup = reverse_lookup or network_utils.resolve_hostname
        self.max_workers = max(1, max_workers)
        self.probe_timeout = probe_timeout
        self._clock = clock

    def discover(self, subnet: str, timeout: float, deep_scan: bool = False) -> Set[HostRecord]:
        """Sweep subnet and return one HostRecord per responding address."""
        return set(self.sweep(subnet, timeout, deep_scan))

    def sweep(self, subnet: str, timeout: float, deep_scan: bool = False) -> List[HostRecord]:
        """Like discover(), but keeps completion order."""
        candidates = sweep_candidates(subnet, self.store)
        if not candidates:
            return []

        self.store.info(f"Sweeping {len(candidates)} addresses in {subnet} "
                        f"(timeout {timeout:g}s, {min(self.max_workers, len(candidates))} workers)")
        start = self._clock()
        found = self._ping_all(candidates, timeout)
        elapsed = self._clock() - start

        records = []
        if deep_scan and found:
            self.store.info(f"Resolving names for {len(found)} hosts")
            for ip in found:
                records.append(HostRecord(ip, True, self._lookup(ip)))
        else:
            records = [HostRecord(ip, True, None) for ip in found]

        self.store.info(f"Discovery complete: {len(records)} hosts responded in {elapsed:.1f}s")
        return records

    def _ping_all(self, candidates: List[str], timeout: float) -> List[str]:
        cancel_event = threading.Event()
        probe = self._probe_factory(cancel_event)
        deadline = self._clock() + timeout

        found: List[str] = []
        seen: Set[str] = set()
        pending: Set[Future] = set()

        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(candidates)),
            thread_name_prefix="discovery",
        )
        try:
            futures: Dict[Future, str] = {
                executor.submit(probe.execute, ip, self.probe_timeout): ip
                for ip in candidates
            }
            pending = set(futures)

            while pending:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    break
                done, pending = wait(pending, timeout=remaining, return_when=FIRST_COMPLETED)
                for future in done:
                    ip = futures[future]
                    try:
                        measurement = future.result()
                    except Exception as e:
                        logger.warning(f"Discovery probe for {ip} raised: {e}")
                        continue
                    if measurement.succeeded and ip not in seen:
                        seen.add(ip)
                        found.append(ip)
                        self.store.info(f"Host found: {ip} ({measurement.value:.1f}ms)")
        finally:
            # Never block on stragglers: cancel what has not started, tell
            # the rest to bail out, and walk away.
            cancel_event.set()
            executor.shutdown(wait=False, cancel_futures=True)

        if pending:
            self.store.warn(f"Discovery deadline of {timeout:g}s reached - "
                            f"{len(pending)} probes abandoned")
        return found

    def _lookup(self, ip: str) -> Optional[str]:
        try:
            name = self._reverse_lookup(ip)
        except OSError as e:
            logger.debug(f"Reverse lookup failed for {ip}: {e}")
            name = None
        if name:
            self.store.info(f"  {ip} -> {name}")
        return name or None


def discover(subnet: str, timeout: float, deep_scan: bool,
             store: MeasurementStore, **scanner_kwargs) -> Set[HostRecord]:
    """Module-level entry point: build a scanner and run one sweep."""
    return HostDiscoveryScanner(store, **scanner_kwargs).discover(subnet, timeout, deep_scan)
