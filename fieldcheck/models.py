"""
SAS Field Network Check - Data Models
Measurements, probe errors and the records shared between detectors.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterator, List, Optional, Tuple


class ProbeKind(Enum):
    """Which probe variant produced a measurement."""
    ICMP = "icmp"
    TCP = "tcp"
    UDP = "udp"
    DNS = "dns"
    COUNTERS = "counters"


class ErrorKind(Enum):
    """Why a probe or collaborator query failed."""
    PROBE_TIMEOUT = "timeout"
    PROBE_REFUSED = "refused"
    RESOLUTION_FAILURE = "resolution failure"
    PERMISSION_DENIED = "permission denied"
    CONFIGURATION_INDETERMINATE = "configuration indeterminate"


class ProbeError(Exception):
    """A classified failure raised by a network collaborator."""

    def __init__(self, kind: ErrorKind, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = kind

    def __str__(self):
        text = super().__str__()
        if text == self.kind.value:
            return text
        return f"{text} ({self.kind.value})"


@dataclass(frozen=True)
class Measurement:
    """One probe result. Never modified after it is recorded."""
    source: ProbeKind
    target: str
    value: Any = None
    succeeded: bool = False
    error: Optional[ErrorKind] = None
    detail: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def failure(cls, source: ProbeKind, target: str, error: ErrorKind,
                detail: str = "") -> "Measurement":
        return cls(source=source, target=target, succeeded=False,
                   error=error, detail=detail)


@dataclass(frozen=True)
class HostRecord:
    """A host found by the discovery sweep."""
    address: str
    reachable: bool = True
    resolved_name: Optional[str] = None


@dataclass(frozen=True)
class PortTestResult:
    """Reachability of one service across its sampled candidate hosts."""
    service: str
    port: int
    protocol: str
    hosts_tested: Tuple[Tuple[str, bool], ...] = ()
    scope: str = "public"

    @property
    def reachable(self) -> bool:
        return any(is_open for _, is_open in self.hosts_tested)


class DHCPServerSet:
    """
    Distinct DHCP server identities seen during one run, in first-seen order.

    Identities compare by plain string equality after whitespace is stripped.
    """

    def __init__(self):
        self._members: List[str] = []

    def add(self, identity: Optional[str]) -> bool:
        """Insert identity if absent. Returns True when it was new."""
        if identity is None:
            return False
        identity = identity.strip()
        if not identity or identity in self._members:
            return False
        self._members.append(identity)
        return True

    def __contains__(self, identity: object) -> bool:
        return identity in self._members

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._members))

    def __len__(self) -> int:
        return len(self._members)

    def as_set(self) -> frozenset:
        return frozenset(self._members)

    def __repr__(self):
        return f"DHCPServerSet({self._members!r})"
