"""
SAS Field Network Check - DHCP Conflict Detector
Collects DHCP server identities from two independent sources per interface
and declares a conflict when more than one distinct server answers for the
segment.
"""

import logging
from typing import Callable, List, Optional, Sequence, Tuple

from fieldcheck.models import DHCPServerSet, ProbeError
from fieldcheck.network_utils import NetworkInterface
from fieldcheck.store import MeasurementStore

logger = logging.getLogger(__name__)

DhcpMethod = Callable[[NetworkInterface], Optional[str]]


class DHCPConflictDetector:
    """
    Usage:
        detector = DHCPConflictDetector(store, [
            ("lease", inventory.dhcp_lease_server),
            ("system query", inventory.dhcp_system_query),
        ])
        servers = detector.detect_conflicts(interfaces)
    """

    def __init__(self, store: MeasurementStore, methods: Sequence[Tuple[str, DhcpMethod]]):
        self.store = store
        self.methods = list(methods)

    def detect_conflicts(self, interfaces: List[NetworkInterface]) -> DHCPServerSet:
        servers = DHCPServerSet()

        for iface in interfaces:
            for label, method in self.methods:
                try:
                    identity = method(iface)
                except (ProbeError, OSError, ValueError) as e:
                    self.store.warn(f"DHCP: could not query {label} on {iface.name}: {e}")
                    continue
                if identity and servers.add(identity):
                    self.store.info(f"DHCP server {identity.strip()} seen on {iface.name} ({label})")
                elif identity:
                    logger.debug(f"DHCP server {identity} on {iface.name} ({label}) already recorded")

        self.classify(servers)
        return servers

    def classify(self, servers: DHCPServerSet):
        count = len(servers)
        if count > 1:
            self.store.error(f"DHCP conflict: {count} different DHCP servers detected: "
                             f"{', '.join(servers)}")
        elif count == 1:
            self.store.success(f"Single DHCP server detected: {next(iter(servers))}")
        else:
            self.store.warn("No DHCP server detected - interfaces may use static configuration")


def detect_conflicts(interfaces: List[NetworkInterface], store: MeasurementStore,
                     methods: Sequence[Tuple[str, DhcpMethod]]) -> DHCPServerSet:
    """Module-level entry point."""
    return DHCPConflictDetector(store, methods).detect_conflicts(interfaces)
