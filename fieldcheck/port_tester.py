"""
SAS Field Network Check - Port Connectivity Tester
Checks whether common services are reachable through the site's firewall.

Public services are tried against up to three well-known endpoints and count
as reachable when any one answers. Local services (no safe public target) are
tried once against the default gateway and a closed port there is only noted,
since a gateway without that service is not a fault. Services with no
candidates at all are listed for manual testing and never scored.
"""

import logging
from typing import Callable, List, Optional, Sequence

from fieldcheck.models import PortTestResult
from fieldcheck.probes import PortProbe, Probe
from fieldcheck.settings_manager import ServiceSpec
from fieldcheck.store import MeasurementStore

logger = logging.getLogger(__name__)

MAX_HOSTS_PER_SERVICE = 3


class PortConnectivityTester:

    def __init__(self, store: MeasurementStore,
                 probe_factory: Optional[Callable[[int, str], Probe]] = None,
                 timeout: float = 3.0,
                 sample_size: int = MAX_HOSTS_PER_SERVICE):
        self.store = store
        self._probe_factory = probe_factory or (lambda port, protocol: PortProbe(port, protocol))
        self.timeout = timeout
        self.sample_size = max(1, min(sample_size, MAX_HOSTS_PER_SERVICE))

    def test_ports(self, service_table: Sequence[ServiceSpec],
                   gateway: Optional[str] = None) -> List[PortTestResult]:
        results = []
        for service in service_table:
            label = f"{service.name} ({service.protocol.upper()}/{service.port})"

            if not PortProbe.supports(service.port, service.protocol):
                self.store.info(f"{label}: no UDP exchange defined - requires local testing")
                results.append(self._result(service, ()))
                continue

            if service.scope == "local":
                results.append(self._test_local(service, label, gateway))
                continue

            if not service.hosts:
                self.store.info(f"{label}: no public test target - requires local testing")
                results.append(self._result(service, ()))
                continue

            results.append(self._test_public(service, label))
        return results

    def _test_public(self, service: ServiceSpec, label: str) -> PortTestResult:
        probe = self._probe_factory(service.port, service.protocol)
        tested = []
        for host in service.hosts[:self.sample_size]:
            m = probe.execute(host, self.timeout)
            tested.append((host, m.succeeded))
            if not m.succeeded:
                logger.debug(f"{label} to {host}: {m.error.value if m.error else 'failed'} {m.detail}")

        result = self._result(service, tuple(tested))
        open_hosts = [h for h, ok in tested if ok]
        if open_hosts:
            self.store.success(f"{label}: reachable ({len(open_hosts)}/{len(tested)} hosts: "
                               f"{', '.join(open_hosts)})")
        else:
            self.store.error(f"{label}: blocked or unreachable (0/{len(tested)} hosts: "
                             f"{', '.join(h for h, _ in tested)})")
        return result

    def _test_local(self, service: ServiceSpec, label: str,
                    gateway: Optional[str]) -> PortTestResult:
        if not gateway:
            self.store.info(f"{label}: skipped - no default gateway known")
            return self._result(service, ())

        m = self._probe_factory(service.port, service.protocol).execute(gateway, self.timeout)
        if m.succeeded:
            self.store.success(f"{label}: open on gateway {gateway}")
        else:
            self.store.info(f"{label}: not answering on gateway {gateway}")
        return self._result(service, ((gateway, m.succeeded),))

    @staticmethod
    def _result(service: ServiceSpec, tested) -> PortTestResult:
        return PortTestResult(service=service.name, port=service.port,
                              protocol=service.protocol, hosts_tested=tuple(tested),
                              scope=service.scope)
