"""
SAS Field Network Check - Settings Manager
Builds the immutable run configuration.

Defaults live in this module. A JSON settings file in the user's settings folder
(or an explicit --config path) may override any of them, and command-line flags
override the file. The result is a frozen DiagnosticConfig that is passed to
every component; nothing reads settings from anywhere else.

Handles:
  - Host discovery timeouts and worker count
  - Latency / storm thresholds
  - Reference targets, DNS test names, service port table
  - Report file location
"""

import json
import logging
import os
import platform
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


# ── Configuration Structures ─────────────────────────────────────────────────

@dataclass(frozen=True)
class ServiceSpec:
    """One row of the port connectivity table."""
    name: str
    port: int
    protocol: str = "tcp"            # "tcp" or "udp"
    hosts: Tuple[str, ...] = ()
    scope: str = "public"            # "public" or "local" (tested against the gateway)


@dataclass(frozen=True)
class LatencyThresholds:
    """Per-target latency policy in milliseconds / percent."""
    latency_warn_ms: float = 100.0
    latency_error_ms: float = 200.0
    jitter_warn_ms: float = 10.0
    loss_warn_pct: float = 0.0
    loss_error_pct: float = 5.0
    variation_warn_ms: float = 50.0


@dataclass(frozen=True)
class StormThresholds:
    """Counter-delta policy for one sampling window."""
    window_seconds: int = 10
    multicast_delta: int = 1000
    broadcast_delta: int = 500
    multicast_pct: float = 20.0
    broadcast_pct: float = 10.0


DEFAULT_SERVICES: Tuple[ServiceSpec, ...] = (
    ServiceSpec("HTTP", 80, "tcp", ("www.google.com", "www.microsoft.com", "www.cloudflare.com")),
    ServiceSpec("HTTPS", 443, "tcp", ("www.google.com", "www.microsoft.com", "www.cloudflare.com")),
    ServiceSpec("DNS (TCP)", 53, "tcp", ("8.8.8.8", "1.1.1.1", "9.9.9.9")),
    ServiceSpec("DNS (UDP)", 53, "udp", ("8.8.8.8", "1.1.1.1", "9.9.9.9")),
    ServiceSpec("NTP", 123, "udp", ("time.google.com", "time.windows.com", "pool.ntp.org", "time.cloudflare.com")),
    ServiceSpec("SSH", 22, "tcp", ("github.com", "gitlab.com")),
    ServiceSpec("SMTP Submission", 587, "tcp", ("smtp.gmail.com", "smtp.office365.com")),
    ServiceSpec("IMAPS", 993, "tcp", ("imap.gmail.com", "outlook.office365.com")),
    ServiceSpec("Gateway DNS", 53, "tcp", scope="local"),
    ServiceSpec("Gateway Web Admin", 443, "tcp", scope="local"),
    ServiceSpec("RDP", 3389, "tcp"),
    ServiceSpec("SMB", 445, "tcp"),
)


@dataclass(frozen=True)
class DiagnosticConfig:
    """Everything a run needs, built once at startup."""

    # Host discovery
    subnet: Optional[str] = None
    discovery_timeout: float = 60.0
    discovery_probe_timeout: float = 1.0
    discovery_workers: int = 50
    deep_scan: bool = False

    # Latency
    latency_samples: int = 4
    latency_probe_timeout: float = 2.0
    reference_targets: Tuple[str, ...] = ("8.8.8.8", "1.1.1.1", "208.67.222.222", "9.9.9.9")
    wan_thresholds: LatencyThresholds = field(default_factory=LatencyThresholds)
    gateway_thresholds: LatencyThresholds = field(default_factory=lambda: LatencyThresholds(
        latency_warn_ms=10.0, latency_error_ms=50.0))

    # Storms
    storm_thresholds: StormThresholds = field(default_factory=StormThresholds)

    # DNS
    dns_test_names: Tuple[str, ...] = ("google.com", "microsoft.com", "cloudflare.com")
    dns_servers: Tuple[str, ...] = ("8.8.8.8", "1.1.1.1")
    dns_timeout: float = 3.0
    dns_slow_ms: float = 200.0

    # Ports
    services: Tuple[ServiceSpec, ...] = DEFAULT_SERVICES
    port_timeout: float = 3.0
    port_sample_size: int = 3

    # Routing
    custom_route_limit: int = 10

    # Output
    report_path: Optional[str] = None


_NESTED = {
    "wan_thresholds": LatencyThresholds,
    "gateway_thresholds": LatencyThresholds,
    "storm_thresholds": StormThresholds,
}

_TUPLE_KEYS = ("reference_targets", "dns_test_names", "dns_servers")


def _settings_dir() -> str:
    """Get the platform-appropriate settings directory."""
    if platform.system() == "Windows":
        base = os.environ.get("APPDATA", os.path.expanduser("~"))
        return os.path.join(base, "SAS FieldCheck")
    elif platform.system() == "Darwin":
        return os.path.expanduser("~/Library/Application Support/SAS FieldCheck")
    else:
        return os.path.expanduser("~/.config/sas-fieldcheck")


def _settings_path() -> str:
    return os.path.join(_settings_dir(), "settings.json")


def _parse_service(raw: Dict[str, Any]) -> ServiceSpec:
    protocol = str(raw.get("protocol", "tcp")).lower()
    if protocol not in ("tcp", "udp"):
        raise ValueError(f"unsupported protocol '{protocol}'")
    scope = str(raw.get("scope", "public")).lower()
    if scope not in ("public", "local"):
        raise ValueError(f"unsupported scope '{scope}'")
    return ServiceSpec(
        name=str(raw["name"]),
        port=int(raw["port"]),
        protocol=protocol,
        hosts=tuple(str(h) for h in raw.get("hosts", [])),
        scope=scope,
    )


def _coerce(current: Any, value: Any) -> Any:
    """Convert a settings value to the type of the field it replaces."""
    if isinstance(current, bool):
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "yes", "1"):
                return True
            if lowered in ("false", "no", "0"):
                return False
            raise ValueError(f"not a boolean: {value!r}")
        return bool(value)
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return str(value)


def apply_overrides(config: DiagnosticConfig, values: Dict[str, Any]) -> DiagnosticConfig:
    """
    Return a copy of config with values applied.

    Nested threshold groups accept partial dicts. Unknown keys and values that
    fail to convert are logged and skipped.
    """
    known = {f.name for f in fields(DiagnosticConfig)}
    changes: Dict[str, Any] = {}

    for key, value in values.items():
        if value is None:
            continue
        if key not in known:
            logger.warning(f"Ignoring unknown setting '{key}'")
            continue
        try:
            if key in _NESTED:
                current = getattr(config, key)
                nested_known = {f.name for f in fields(_NESTED[key])}
                nested = {k: _coerce(getattr(current, k), v)
                          for k, v in dict(value).items() if k in nested_known}
                for k in set(dict(value)) - nested_known:
                    logger.warning(f"Ignoring unknown setting '{key}.{k}'")
                changes[key] = replace(current, **nested)
            elif key == "services":
                changes[key] = tuple(_parse_service(s) for s in value)
            elif key in _TUPLE_KEYS:
                changes[key] = tuple(str(v) for v in value)
            else:
                changes[key] = _coerce(getattr(config, key), value)
        except (TypeError, ValueError, KeyError) as e:
            logger.warning(f"Ignoring invalid setting '{key}': {e}")

    return replace(config, **changes)


class SettingsManager:
    """Loads the JSON settings file and builds DiagnosticConfig from it."""

    def __init__(self, path: Optional[str] = None):
        self._path = path or _settings_path()
        self._data: Dict[str, Any] = {}
        self._load()

    @property
    def path(self) -> str:
        return self._path

    def _load(self):
        """Load settings from disk; a missing or broken file means defaults."""
        try:
            if os.path.exists(self._path):
                with open(self._path, "r", encoding="utf-8") as f:
                    stored = json.load(f)
                if isinstance(stored, dict):
                    self._data = stored
                    logger.info(f"Settings loaded from {self._path}")
                else:
                    logger.warning(f"Settings file {self._path} is not a JSON object - using defaults")
            else:
                logger.info("No settings file found - using defaults")
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load settings: {e}")

    def build_config(self, **overrides: Any) -> DiagnosticConfig:
        """Defaults, then the settings file, then explicit overrides."""
        config = apply_overrides(DiagnosticConfig(), self._data)
        return apply_overrides(config, overrides)
