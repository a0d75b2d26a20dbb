"""Shared fixtures and fakes. No test in this suite touches the network."""

import threading
from typing import Dict, Iterable, List, Optional

import pytest

from fieldcheck.models import ErrorKind, Measurement, ProbeError, ProbeKind
from fieldcheck.network_utils import (
    InterfaceCounters, IPv4Config, NetworkInterface, Route, get_ipv4_config,
)
from fieldcheck.probes import Probe
from fieldcheck.store import MeasurementStore, Severity


class ScriptedProbe(Probe):
    """
    Probe whose replies are scripted per target.

    Each target maps to a list of round-trip values consumed in order; None
    is a failed attempt. Targets without a script always fail.
    """

    kind = ProbeKind.ICMP

    def __init__(self, script: Optional[Dict[str, Iterable[Optional[float]]]] = None,
                 default: Optional[float] = None):
        self._script = {t: list(values) for t, values in (script or {}).items()}
        self._default = default
        self._lock = threading.Lock()
        self.calls: List[str] = []

    def execute(self, target: str, timeout: float) -> Measurement:
        with self._lock:
            self.calls.append(target)
            values = self._script.get(target)
            value = values.pop(0) if values else self._default
        if value is None:
            return Measurement.failure(self.kind, target, ErrorKind.PROBE_TIMEOUT, "scripted")
        return Measurement(self.kind, target, value=value, succeeded=True)


class FakeInventory:
    """Stands in for NetworkInventory."""

    def __init__(self, interfaces=None, routes=None, counters=None,
                 lease=None, system=None, routes_error=None):
        self.interfaces = interfaces or []
        self.routes = routes or []
        self.counters = list(counters or [])
        self.lease = lease or {}
        self.system = system or {}
        self.routes_error = routes_error

    def list_up_interfaces(self) -> List[NetworkInterface]:
        return list(self.interfaces)

    def list_routes(self) -> List[Route]:
        if self.routes_error is not None:
            raise self.routes_error
        return list(self.routes)

    def get_ipv4_config(self, iface: NetworkInterface, routes=None) -> IPv4Config:
        return get_ipv4_config(iface, self.routes if routes is None else routes)

    def snapshot_counters(self) -> Dict[str, InterfaceCounters]:
        if not self.counters:
            raise ProbeError(ErrorKind.CONFIGURATION_INDETERMINATE, "no counters")
        return self.counters.pop(0)

    def dhcp_lease_server(self, iface: NetworkInterface) -> Optional[str]:
        return self.lease.get(iface.name)

    def dhcp_system_query(self, iface: NetworkInterface) -> Optional[str]:
        return self.system.get(iface.name)


def severities(store: MeasurementStore) -> List[Severity]:
    return [e.severity for e in store.entries()]


def messages_with(store: MeasurementStore, severity: Severity, text: str) -> List[str]:
    return [m for m in store.messages(severity) if text in m]


@pytest.fixture
def store():
    """In-memory store that does not mirror into logging."""
    return MeasurementStore(mirror_to_logging=False)


@pytest.fixture
def eth0():
    return NetworkInterface(name="eth0", ip_address="192.168.1.37",
                            subnet_mask="255.255.255.0", mac_address="00:1d:9c:c1:22:07",
                            index=2, speed_mbps=1000)


@pytest.fixture
def wlan0():
    return NetworkInterface(name="wlan0", ip_address="10.0.0.23",
                            subnet_mask="255.255.255.0", index=3)
