"""
SAS Field Network Check - Probes
Each probe performs one active measurement against one target and always
returns a Measurement. Failures never escape the probe: they come back as
succeeded=False with an ErrorKind describing what went wrong.

Variants:
  - IcmpProbe     single echo request, value = round-trip ms
  - PortProbe     TCP handshake, or a full UDP protocol exchange (NTP, DNS)
  - DnsProbe      forward resolution, value = {"addresses", "elapsed_ms"}
  - CounterProbe  interface counter snapshot, value = {name: InterfaceCounters}
"""

import logging
import socket
import struct
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

import dns.exception
import dns.resolver

from fieldcheck import network_utils
from fieldcheck.models import ErrorKind, Measurement, ProbeError, ProbeKind

logger = logging.getLogger(__name__)


def classify_os_error(exc: BaseException) -> ErrorKind:
    """Map a socket/subprocess exception onto the probe error taxonomy."""
    if isinstance(exc, ProbeError):
        return exc.kind
    if isinstance(exc, (socket.timeout, TimeoutError, subprocess.TimeoutExpired)):
        return ErrorKind.PROBE_TIMEOUT
    if isinstance(exc, (ConnectionRefusedError, ConnectionResetError)):
        return ErrorKind.PROBE_REFUSED
    if isinstance(exc, socket.gaierror):
        return ErrorKind.RESOLUTION_FAILURE
    if isinstance(exc, PermissionError):
        return ErrorKind.PERMISSION_DENIED
    if isinstance(exc, FileNotFoundError):
        return ErrorKind.CONFIGURATION_INDETERMINATE
    return ErrorKind.PROBE_TIMEOUT


class Probe(ABC):
    """A single active network measurement against one target."""

    kind: ProbeKind

    @abstractmethod
    def execute(self, target: str, timeout: float) -> Measurement:
        """Run the probe. Must not raise for network-level failures."""


# ── ICMP ─────────────────────────────────────────────────────────────────────

PingFunc = Callable[..., Tuple[bool, float]]


class IcmpProbe(Probe):
    """One ICMP echo via the system ping command."""

    kind = ProbeKind.ICMP

    def __init__(self, ping: Optional[PingFunc] = None,
                 cancel_event: Optional[threading.Event] = None):
        self._ping = ping or network_utils.ping_host
        self._cancel_event = cancel_event

    def execute(self, target: str, timeout: float) -> Measurement:
        if self._cancel_event is not None and self._cancel_event.is_set():
            return Measurement.failure(self.kind, target, ErrorKind.PROBE_TIMEOUT,
                                       "cancelled before start")
        try:
            reachable, rtt = self._ping(target, timeout=timeout)
        except (OSError, subprocess.SubprocessError, ProbeError) as e:
            logger.debug(f"Ping failed for {target}: {e}")
            return Measurement.failure(self.kind, target, classify_os_error(e), str(e))

        if not reachable:
            return Measurement.failure(self.kind, target, ErrorKind.PROBE_TIMEOUT,
                                       "no echo reply")
        return Measurement(source=self.kind, target=target, value=rtt, succeeded=True)


# ── TCP / UDP ────────────────────────────────────────────────────────────────

NTP_PACKET_SIZE = 48


def build_ntp_request() -> bytes:
    """SNTP client request: LI=0, VN=3, Mode=3, rest zero."""
    return b"\x1b" + b"\x00" * (NTP_PACKET_SIZE - 1)


def is_valid_ntp_response(data: bytes) -> bool:
    """A server reply is at least 48 bytes with mode 4 (server)."""
    if len(data) < NTP_PACKET_SIZE:
        return False
    mode = struct.unpack_from("!B", data, 0)[0] & 0x07
    return mode == 4


class PortProbe(Probe):
    """
    Port reachability.

    TCP: a completed handshake. UDP: a full protocol round trip, since an
    unanswered datagram proves nothing. Supported UDP exchanges are NTP (123)
    and DNS (53); any other UDP port reports CONFIGURATION_INDETERMINATE.
    """

    UDP_EXCHANGES = (53, 123)

    def __init__(self, port: int, protocol: str = "tcp",
                 connect: Optional[Callable[..., float]] = None,
                 udp_exchange: Optional[Callable[..., bytes]] = None,
                 dns_exchange: Optional[Callable[..., bool]] = None):
        self.port = port
        self.protocol = protocol.lower()
        self.kind = ProbeKind.UDP if self.protocol == "udp" else ProbeKind.TCP
        self._connect = connect or network_utils.tcp_connect
        self._udp_exchange = udp_exchange or network_utils.udp_exchange
        self._dns_exchange = dns_exchange or network_utils.dns_udp_exchange

    @classmethod
    def supports(cls, port: int, protocol: str) -> bool:
        return protocol.lower() == "tcp" or port in cls.UDP_EXCHANGES

    def execute(self, target: str, timeout: float) -> Measurement:
        try:
            if self.protocol == "tcp":
                elapsed = self._connect(target, self.port, timeout=timeout)
                return Measurement(self.kind, target, value=elapsed, succeeded=True)
            return self._execute_udp(target, timeout)
        except (OSError, ProbeError, dns.exception.DNSException) as e:
            logger.debug(f"{self.protocol.upper()}/{self.port} to {target} failed: {e}")
            kind = (ErrorKind.PROBE_TIMEOUT if isinstance(e, dns.exception.Timeout)
                    else classify_os_error(e))
            return Measurement.failure(self.kind, target, kind, str(e))

    def _execute_udp(self, target: str, timeout: float) -> Measurement:
        start = time.perf_counter()
        if self.port == 123:
            reply = self._udp_exchange(target, self.port, build_ntp_request(), timeout=timeout)
            ok = is_valid_ntp_response(reply)
            detail = "" if ok else f"unexpected {len(reply)}-byte reply"
        elif self.port == 53:
            ok = self._dns_exchange(target, timeout=timeout)
            detail = "" if ok else "mismatched DNS response"
        else:
            return Measurement.failure(self.kind, target, ErrorKind.CONFIGURATION_INDETERMINATE,
                                       f"no UDP exchange defined for port {self.port}")
        elapsed = round((time.perf_counter() - start) * 1000, 2)
        if not ok:
            return Measurement.failure(self.kind, target, ErrorKind.PROBE_REFUSED, detail)
        return Measurement(self.kind, target, value=elapsed, succeeded=True)


# ── DNS ──────────────────────────────────────────────────────────────────────

class DnsProbe(Probe):
    """Forward resolution of a name; value holds the answers and elapsed ms."""

    kind = ProbeKind.DNS

    def __init__(self, record_type: str = "A", server: Optional[str] = None,
                 resolve: Optional[Callable[..., list]] = None):
        self.record_type = record_type
        self.server = server
        self._resolve = resolve or network_utils.dns_resolve

    def execute(self, target: str, timeout: float) -> Measurement:
        start = time.perf_counter()
        try:
            addresses = self._resolve(target, self.record_type, server=self.server,
                                      timeout=timeout)
        except dns.exception.Timeout as e:
            return Measurement.failure(self.kind, target, ErrorKind.PROBE_TIMEOUT, str(e))
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer, dns.resolver.NoNameservers) as e:
            return Measurement.failure(self.kind, target, ErrorKind.RESOLUTION_FAILURE, str(e))
        except (dns.exception.DNSException, OSError) as e:
            return Measurement.failure(self.kind, target, ErrorKind.RESOLUTION_FAILURE, str(e))

        elapsed = round((time.perf_counter() - start) * 1000, 2)
        if not addresses:
            return Measurement.failure(self.kind, target, ErrorKind.RESOLUTION_FAILURE,
                                       "empty answer")
        return Measurement(self.kind, target, succeeded=True,
                           value={"addresses": list(addresses), "elapsed_ms": elapsed})


# ── Interface Counters ───────────────────────────────────────────────────────

class CounterProbe(Probe):
    """Snapshot of per-interface receive counters. target is informational."""

    kind = ProbeKind.COUNTERS

    def __init__(self, snapshot: Optional[Callable[[], Dict[str, network_utils.InterfaceCounters]]] = None):
        self._snapshot = snapshot or network_utils.snapshot_counters

    def execute(self, target: str = "*", timeout: float = 0.0) -> Measurement:
        try:
            counters = self._snapshot()
        except (OSError, ProbeError) as e:
            return Measurement.failure(self.kind, target, classify_os_error(e), str(e))
        return Measurement(self.kind, target, value=dict(counters), succeeded=True)
