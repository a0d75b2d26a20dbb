"""
SAS Field Network Check - Network Utilities
Low-level, read-only network operations: interface detection, routes, ping,
socket connects, DNS, interface counters and DHCP lease lookups.

Uses psutil plus the operating system's own tools (ping, ip, route, netstat,
ipconfig, nmcli) so no packet-capture driver is required. Every parser is a
plain function over command output so it can be tested without the command.
"""

import glob
import ipaddress
import json
import logging
import os
import platform
import re
import socket
import subprocess
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import dns.message
import dns.query
import dns.resolver
import psutil

from fieldcheck.models import ErrorKind, ProbeError

logger = logging.getLogger(__name__)


@dataclass
class NetworkInterface:
    """Represents a local network interface with an IPv4 address."""
    name: str
    ip_address: str
    subnet_mask: str
    mac_address: str = ""
    index: int = 0
    is_up: bool = True
    speed_mbps: int = 0

    @property
    def network(self) -> ipaddress.IPv4Network:
        return ipaddress.IPv4Network(f"{self.ip_address}/{self.subnet_mask}", strict=False)

    @property
    def prefix_length(self) -> int:
        return self.network.prefixlen

    def __str__(self):
        return f"{self.name} ({self.ip_address}/{self.prefix_length})"


@dataclass(frozen=True)
class IPv4Config:
    """Address configuration of one interface."""
    address: str
    prefix_length: int
    default_gateway: Optional[str] = None

    @property
    def cidr(self) -> str:
        return f"{self.address}/{self.prefix_length}"


@dataclass(frozen=True)
class Route:
    """One IPv4 routing table entry. next_hop "0.0.0.0" means on-link."""
    destination: str
    next_hop: str
    interface: str = ""
    metric: int = 0


@dataclass(frozen=True)
class InterfaceCounters:
    """Received-packet counters for one interface."""
    multicast_in: int = 0
    broadcast_in: int = 0
    total_in: int = 0


def _is_windows() -> bool:
    return platform.system().lower() == "windows"


def _run(cmd: List[str], timeout: float = 10.0) -> str:
    """
    Run a read-only system command and return stdout.

    FileNotFoundError propagates (tool not installed); permission problems
    and timeouts become ProbeError.
    """
    is_win = _is_windows()
    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, timeout=timeout,
            creationflags=subprocess.CREATE_NO_WINDOW if is_win else 0,
        )
    except subprocess.TimeoutExpired as e:
        raise ProbeError(ErrorKind.PROBE_TIMEOUT, f"{cmd[0]} timed out") from e
    except PermissionError as e:
        raise ProbeError(ErrorKind.PERMISSION_DENIED, f"{cmd[0]}: {e}") from e

    output = (result.stdout or "") + (result.stderr or "")
    if "Operation not permitted" in output or "Access is denied" in output:
        raise ProbeError(ErrorKind.PERMISSION_DENIED, f"{cmd[0]} was not permitted")
    return result.stdout or ""


# ── Interfaces ───────────────────────────────────────────────────────────────

def get_network_interfaces() -> List[NetworkInterface]:
    """Detect all active network interfaces with IPv4 addresses."""
    interfaces = []
    stats = psutil.net_if_stats()
    addrs = psutil.net_if_addrs()

    for name, addr_list in addrs.items():
        stat = stats.get(name)
        if not stat or not stat.isup:
            continue

        for addr in addr_list:
            if addr.family == socket.AF_INET and not addr.address.startswith("127."):
                mac = ""
                for a in addr_list:
                    if a.family == psutil.AF_LINK:
                        mac = a.address
                        break

                try:
                    index = socket.if_nametoindex(name)
                except OSError:
                    index = 0

                iface = NetworkInterface(
                    name=name,
                    ip_address=addr.address,
                    subnet_mask=addr.netmask or "255.255.255.0",
                    mac_address=mac,
                    index=index,
                    is_up=stat.isup,
                    speed_mbps=stat.speed if stat.speed else 0,
                )
                interfaces.append(iface)
                logger.debug(f"Found interface: {iface}")

    return interfaces


def default_gateway_for(iface: NetworkInterface, routes: List[Route]) -> Optional[str]:
    """Pick the lowest-metric default route that leaves through iface."""
    candidates = [
        r for r in routes
        if r.destination == "0.0.0.0/0"
        and r.interface in (iface.name, iface.ip_address)
        and r.next_hop not in ("", "0.0.0.0")
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda r: r.metric).next_hop


# ── Routes ───────────────────────────────────────────────────────────────────

_LINUX_ROUTE_TYPES = {"unicast", "local", "broadcast", "multicast",
                      "blackhole", "unreachable", "prohibit", "throw", "anycast"}


def _normalize_prefix(dest: str) -> str:
    """Turn 'default', '10.1.2.3' or abbreviated '192.168.1' into CIDR."""
    if dest == "default":
        return "0.0.0.0/0"
    if "/" in dest:
        addr, prefix = dest.split("/", 1)
    else:
        addr, prefix = dest, ""
    octets = addr.split(".")
    if not prefix:
        prefix = str(8 * len(octets)) if len(octets) < 4 else "32"
    while len(octets) < 4:
        octets.append("0")
    network = ipaddress.IPv4Network(f"{'.'.join(octets)}/{prefix}", strict=False)
    return str(network)


def parse_linux_routes(text: str) -> List[Route]:
    """Parse `ip -4 route show` output."""
    routes = []
    for line in text.splitlines():
        tokens = line.split()
        if not tokens:
            continue
        route_type = "unicast"
        if tokens[0] in _LINUX_ROUTE_TYPES:
            route_type = tokens.pop(0)
            if not tokens:
                continue
        try:
            destination = _normalize_prefix(tokens[0])
        except ValueError:
            continue

        next_hop = "0.0.0.0"
        interface = ""
        metric = 0
        for key, value in zip(tokens[1:], tokens[2:]):
            if key == "via":
                next_hop = value
            elif key == "dev":
                interface = value
            elif key == "metric" and value.isdigit():
                metric = int(value)
        if route_type in ("blackhole", "unreachable", "prohibit"):
            next_hop = "0.0.0.0"

        routes.append(Route(destination, next_hop, interface, metric))
    return routes


_WIN_ROUTE_RE = re.compile(
    r"^\s*(\d+\.\d+\.\d+\.\d+)\s+(\d+\.\d+\.\d+\.\d+)\s+"
    r"(\d+\.\d+\.\d+\.\d+|On-link)\s+(\d+\.\d+\.\d+\.\d+)\s+(\d+)\s*$",
    re.IGNORECASE,
)


def parse_windows_routes(text: str) -> List[Route]:
    """Parse the 'Active Routes' block of `route print -4`."""
    routes = []
    in_active = False
    for line in text.splitlines():
        if line.strip().lower().startswith("active routes"):
            in_active = True
            continue
        if line.strip().lower().startswith("persistent routes"):
            break
        if not in_active:
            continue
        match = _WIN_ROUTE_RE.match(line)
        if not match:
            continue
        dest, mask, gateway, iface_ip, metric = match.groups()
        try:
            network = ipaddress.IPv4Network(f"{dest}/{mask}", strict=False)
        except ValueError:
            continue
        next_hop = "0.0.0.0" if gateway.lower() == "on-link" else gateway
        routes.append(Route(str(network), next_hop, iface_ip, int(metric)))
    return routes


def parse_macos_routes(text: str) -> List[Route]:
    """Parse the 'Internet:' block of `netstat -rn -f inet`."""
    routes = []
    in_table = False
    for line in text.splitlines():
        tokens = line.split()
        if not tokens:
            continue
        if tokens[0] == "Destination":
            in_table = True
            continue
        if not in_table or len(tokens) < 4:
            continue
        dest, gateway, _flags, netif = tokens[:4]
        try:
            destination = _normalize_prefix(dest.split("%")[0])
        except ValueError:
            continue
        try:
            ipaddress.IPv4Address(gateway)
            next_hop = gateway
        except ValueError:
            # link#N or a MAC address: directly attached
            next_hop = "0.0.0.0"
        routes.append(Route(destination, next_hop, netif, 0))
    return routes


def list_routes() -> List[Route]:
    """Read the IPv4 routing table from the operating system."""
    system = platform.system().lower()
    try:
        if system == "windows":
            return parse_windows_routes(_run(["route", "print", "-4"]))
        if system == "darwin":
            return parse_macos_routes(_run(["netstat", "-rn", "-f", "inet"]))
        return parse_linux_routes(_run(["ip", "-4", "route", "show"]))
    except FileNotFoundError as e:
        raise ProbeError(ErrorKind.CONFIGURATION_INDETERMINATE,
                         f"route listing tool not available: {e}") from e


def get_ipv4_config(iface: NetworkInterface,
                    routes: Optional[List[Route]] = None) -> IPv4Config:
    """Address, prefix and default gateway of one interface."""
    if routes is None:
        routes = list_routes()
    return IPv4Config(
        address=iface.ip_address,
        prefix_length=iface.prefix_length,
        default_gateway=default_gateway_for(iface, routes),
    )


# ── ICMP ─────────────────────────────────────────────────────────────────────

def ping_host(ip: str, timeout: float = 1.0) -> Tuple[bool, float]:
    """
    Ping a single host once and return (reachable, response_time_ms).
    Uses the system ping command so no raw-socket privilege is needed.

    Args:
        ip: Target IP or hostname
        timeout: Per-attempt timeout in seconds
    """
    is_win = _is_windows()
    cmd = ["ping"]
    if is_win:
        cmd += ["-n", "1", "-w", str(int(timeout * 1000))]
    elif platform.system().lower() == "darwin":
        cmd += ["-c", "1", "-W", str(int(max(timeout, 0.001) * 1000))]
    else:
        cmd += ["-c", "1", "-W", str(max(1, int(round(timeout))))]
    cmd.append(ip)

    start = time.perf_counter()
    # The child carries its own deadline, so an abandoned caller never
    # leaves a ping process behind.
    result = subprocess.run(
        cmd, capture_output=True, text=True, timeout=timeout + 2,
        creationflags=subprocess.CREATE_NO_WINDOW if is_win else 0,
    )
    elapsed = (time.perf_counter() - start) * 1000

    if result.returncode != 0:
        return False, 0.0
    # Windows reports "Destination host unreachable" with exit code 0
    if is_win and "TTL=" not in result.stdout.upper():
        return False, 0.0

    rtt = parse_ping_time(result.stdout)
    return True, round(rtt if rtt is not None else elapsed, 2)


def parse_ping_time(output: str) -> Optional[float]:
    """Extract the round-trip time in ms from one ping reply line."""
    match = re.search(r"time\s*([=<])\s*(\d+\.?\d*)\s*ms", output, re.IGNORECASE)
    if not match:
        return None
    value = float(match.group(2))
    if match.group(1) == "<":
        # "time<1ms" means somewhere below the printed bound
        value = value / 2
    return value


def resolve_hostname(ip: str) -> Optional[str]:
    """Reverse lookup for an IP address; None when nothing resolves."""
    try:
        hostname, _, _ = socket.gethostbyaddr(ip)
        return hostname
    except (socket.herror, socket.gaierror, OSError):
        return None


# ── TCP / UDP ────────────────────────────────────────────────────────────────

def tcp_connect(host: str, port: int, timeout: float = 3.0) -> float:
    """
    Complete a TCP handshake and close. Returns the connect time in ms.
    Raises OSError subclasses (ConnectionRefusedError, socket.timeout,
    socket.gaierror) on failure.
    """
    start = time.perf_counter()
    with socket.create_connection((host, port), timeout=timeout):
        return round((time.perf_counter() - start) * 1000, 2)


def udp_exchange(host: str, port: int, payload: bytes,
                 timeout: float = 3.0, bufsize: int = 2048) -> bytes:
    """Send one datagram and wait for one reply. Raises OSError on failure."""
    addr = socket.getaddrinfo(host, port, socket.AF_INET, socket.SOCK_DGRAM)[0][4]
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.settimeout(timeout)
    try:
        sock.sendto(payload, addr)
        data, _ = sock.recvfrom(bufsize)
        return data
    finally:
        sock.close()


# ── DNS ──────────────────────────────────────────────────────────────────────

def dns_resolve(name: str, record_type: str = "A", server: Optional[str] = None,
                timeout: float = 3.0) -> List[str]:
    """
    Resolve name with dnspython. Uses the system resolver configuration unless
    a server is given. Raises dns.exception.DNSException on failure.
    """
    if server:
        resolver = dns.resolver.Resolver(configure=False)
        resolver.nameservers = [server]
    else:
        resolver = dns.resolver.Resolver()
    resolver.timeout = timeout
    resolver.lifetime = timeout
    answer = resolver.resolve(name, record_type)
    return [rdata.to_text() for rdata in answer]


def dns_udp_exchange(server: str, name: str = "example.com",
                     timeout: float = 3.0) -> bool:
    """Send one A query over UDP; True when a matching response arrives."""
    query = dns.message.make_query(name, "A")
    response = dns.query.udp(query, server, timeout=timeout)
    return query.is_response(response)


# ── Interface Counters ───────────────────────────────────────────────────────

def _read_sysfs_counter(name: str, counter: str) -> int:
    path = os.path.join("/sys/class/net", name, "statistics", counter)
    try:
        with open(path, "r", encoding="ascii") as f:
            return int(f.read().strip() or 0)
    except (OSError, ValueError):
        return 0


def parse_adapter_statistics(text: str) -> Dict[str, InterfaceCounters]:
    """Parse Get-NetAdapterStatistics JSON (single object or list)."""
    if not text.strip():
        return {}
    payload = json.loads(text)
    if isinstance(payload, dict):
        payload = [payload]
    counters = {}
    for item in payload:
        unicast = int(item.get("ReceivedUnicastPackets") or 0)
        multicast = int(item.get("ReceivedMulticastPackets") or 0)
        broadcast = int(item.get("ReceivedBroadcastPackets") or 0)
        counters[str(item.get("Name", ""))] = InterfaceCounters(
            multicast_in=multicast,
            broadcast_in=broadcast,
            total_in=unicast + multicast + broadcast,
        )
    return counters


def snapshot_counters() -> Dict[str, InterfaceCounters]:
    """Per up-interface received multicast/broadcast/total packet counters."""
    stats = psutil.net_if_stats()
    up = {name for name, s in stats.items() if s.isup}

    if _is_windows():
        cmd = [
            "powershell", "-NoProfile", "-Command",
            "Get-NetAdapterStatistics | Select-Object Name,ReceivedUnicastPackets,"
            "ReceivedMulticastPackets,ReceivedBroadcastPackets | ConvertTo-Json",
        ]
        try:
            counters = parse_adapter_statistics(_run(cmd, timeout=15))
        except FileNotFoundError as e:
            raise ProbeError(ErrorKind.CONFIGURATION_INDETERMINATE,
                             f"powershell not available: {e}") from e
        except ValueError as e:
            raise ProbeError(ErrorKind.CONFIGURATION_INDETERMINATE,
                             f"unreadable adapter statistics: {e}") from e
        return {name: c for name, c in counters.items() if name in up}

    counters = {}
    for name, io in psutil.net_io_counters(pernic=True).items():
        if name not in up or name.startswith("lo"):
            continue
        counters[name] = InterfaceCounters(
            multicast_in=_read_sysfs_counter(name, "multicast"),
            # Linux does not expose a receive-broadcast counter
            broadcast_in=0,
            total_in=io.packets_recv,
        )
    return counters


# ── DHCP Server Identity ─────────────────────────────────────────────────────

_IPV4_RE = r"(\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})"


def parse_ipconfig_dhcp_servers(text: str) -> Dict[str, str]:
    """Map adapter alias -> 'DHCP Server' value from `ipconfig /all`."""
    servers = {}
    current = None
    for line in text.splitlines():
        header = re.match(r"^\S.*adapter (.+):\s*$", line)
        if header:
            current = header.group(1).strip()
            continue
        match = re.match(r"^\s+DHCP Server[ .]*:\s*" + _IPV4_RE, line)
        if match and current:
            servers[current] = match.group(1)
    return servers


def parse_dhclient_leases(text: str, interface: str) -> Optional[str]:
    """Server identifier of the last dhclient lease block for interface."""
    server = None
    for block in re.findall(r"lease\s*\{(.*?)\}", text, re.DOTALL):
        iface = re.search(r'interface\s+"([^"]+)"', block)
        if iface and iface.group(1) != interface:
            continue
        match = re.search(r"option\s+dhcp-server-identifier\s+" + _IPV4_RE, block)
        if match:
            server = match.group(1)
    return server


def parse_key_value_lease(text: str) -> Optional[str]:
    """SERVER_ADDRESS from a systemd-networkd / NetworkManager lease file."""
    match = re.search(r"^SERVER_ADDRESS=" + _IPV4_RE, text, re.MULTILINE)
    return match.group(1) if match else None


def parse_nmcli_dhcp(text: str) -> Optional[str]:
    """dhcp_server_identifier from `nmcli -t -f DHCP4 device show`."""
    match = re.search(r"dhcp_server_identifier\s*=\s*" + _IPV4_RE, text)
    return match.group(1) if match else None


def parse_macos_packet(text: str) -> Optional[str]:
    """server_identifier from `ipconfig getpacket <if>`."""
    match = re.search(r"server_identifier\s*\(ip\):\s*" + _IPV4_RE, text)
    return match.group(1) if match else None


def parse_wmi_dhcp(text: str, ip_address: str) -> Optional[str]:
    """DHCPServer of the Win32_NetworkAdapterConfiguration entry owning ip."""
    if not text.strip():
        return None
    payload = json.loads(text)
    if isinstance(payload, dict):
        payload = [payload]
    for item in payload:
        addresses = item.get("IPAddress") or []
        if isinstance(addresses, str):
            addresses = [addresses]
        if ip_address in addresses and item.get("DHCPEnabled", True):
            server = item.get("DHCPServer")
            return str(server) if server else None
    return None


def _read_text(path: str) -> str:
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return f.read()
    except PermissionError as e:
        raise ProbeError(ErrorKind.PERMISSION_DENIED, f"cannot read {path}") from e


_DHCLIENT_LEASE_GLOBS = (
    "/var/lib/dhcp/dhclient*.leases",
    "/var/lib/dhclient/*.lease*",
    "/var/lib/NetworkManager/dhclient-*.lease",
)


def dhcp_lease_server(iface: NetworkInterface) -> Optional[str]:
    """DHCP server recorded with the interface's current lease, if any."""
    system = platform.system().lower()
    try:
        if system == "windows":
            return parse_ipconfig_dhcp_servers(_run(["ipconfig", "/all"])).get(iface.name)
        if system == "darwin":
            output = _run(["ipconfig", "getoption", iface.name, "server_identifier"])
            return output.strip() or None
    except FileNotFoundError:
        logger.debug("ipconfig not available for DHCP lease lookup")
        return None

    if iface.index:
        networkd = f"/run/systemd/netif/leases/{iface.index}"
        if os.path.exists(networkd):
            server = parse_key_value_lease(_read_text(networkd))
            if server:
                return server

    for path in glob.glob(f"/var/lib/NetworkManager/internal-*-{iface.name}.lease"):
        server = parse_key_value_lease(_read_text(path))
        if server:
            return server

    for pattern in _DHCLIENT_LEASE_GLOBS:
        for path in sorted(glob.glob(pattern)):
            server = parse_dhclient_leases(_read_text(path), iface.name)
            if server:
                return server
    return None


def dhcp_system_query(iface: NetworkInterface) -> Optional[str]:
    """DHCP server reported by the system's network manager."""
    system = platform.system().lower()
    try:
        if system == "windows":
            cmd = [
                "powershell", "-NoProfile", "-Command",
                "Get-CimInstance Win32_NetworkAdapterConfiguration -Filter 'IPEnabled=True' | "
                "Select-Object IPAddress,DHCPEnabled,DHCPServer | ConvertTo-Json",
            ]
            try:
                return parse_wmi_dhcp(_run(cmd, timeout=15), iface.ip_address)
            except ValueError as e:
                raise ProbeError(ErrorKind.CONFIGURATION_INDETERMINATE,
                                 f"unreadable adapter configuration: {e}") from e
        if system == "darwin":
            return parse_macos_packet(_run(["ipconfig", "getpacket", iface.name]))
        return parse_nmcli_dhcp(_run(["nmcli", "-t", "-f", "DHCP4", "device", "show", iface.name]))
    except FileNotFoundError:
        logger.debug("No system DHCP query tool available")
        return None


class NetworkInventory:
    """
    Bundles the operating-system collaborators used by the engine.
    Tests substitute a fake with the same methods.
    """

    def list_up_interfaces(self) -> List[NetworkInterface]:
        return get_network_interfaces()

    def list_routes(self) -> List[Route]:
        return list_routes()

    def get_ipv4_config(self, iface: NetworkInterface,
                        routes: Optional[List[Route]] = None) -> IPv4Config:
        return get_ipv4_config(iface, routes)

    def snapshot_counters(self) -> Dict[str, InterfaceCounters]:
        return snapshot_counters()

    def dhcp_lease_server(self, iface: NetworkInterface) -> Optional[str]:
        return dhcp_lease_server(iface)

    def dhcp_system_query(self, iface: NetworkInterface) -> Optional[str]:
        return dhcp_system_query(iface)
