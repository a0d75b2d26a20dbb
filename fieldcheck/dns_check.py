"""
SAS Field Network Check - DNS Resolution Check
Resolves well-known names through the system resolver, then asks each public
resolver directly to tell a local DNS fault from an upstream one.
"""

import logging
from typing import Callable, List, Optional, Sequence

from fieldcheck.models import Measurement
from fieldcheck.probes import DnsProbe, Probe
from fieldcheck.store import MeasurementStore

logger = logging.getLogger(__name__)


class DnsChecker:

    def __init__(self, store: MeasurementStore,
                 probe_factory: Optional[Callable[[Optional[str]], Probe]] = None,
                 timeout: float = 3.0, slow_ms: float = 200.0):
        self.store = store
        self._probe_factory = probe_factory or (lambda server: DnsProbe("A", server=server))
        self.timeout = timeout
        self.slow_ms = slow_ms

    def check_dns(self, names: Sequence[str], servers: Sequence[str] = ()) -> List[Measurement]:
        if not names:
            self.store.info("DNS check skipped: no test names configured")
            return []

        results = []
        system_probe = self._probe_factory(None)
        for name in names:
            m = system_probe.execute(name, self.timeout)
            results.append(m)
            if not m.succeeded:
                self.store.error(f"DNS resolution failed for {name}: {m.error.value}")
                continue
            elapsed = m.value["elapsed_ms"]
            first = m.value["addresses"][0]
            if elapsed > self.slow_ms:
                self.store.warn(f"DNS resolution for {name} is slow: {elapsed:.0f}ms "
                                f"(> {self.slow_ms:g}ms)")
            else:
                self.store.success(f"DNS resolved {name} -> {first} in {elapsed:.0f}ms")

        probe_name = names[0]
        for server in servers:
            m = self._probe_factory(server).execute(probe_name, self.timeout)
            results.append(m)
            if m.succeeded:
                self.store.info(f"Public resolver {server} answered for {probe_name} "
                                f"in {m.value['elapsed_ms']:.0f}ms")
            else:
                self.store.warn(f"Public resolver {server} did not answer for {probe_name} "
                                f"({m.error.value}) - outbound DNS may be filtered")
        return results
