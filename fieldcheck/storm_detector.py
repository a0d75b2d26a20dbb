"""
SAS Field Network Check - Storm Detector
Samples interface receive counters twice, a fixed window apart, and flags
multicast/broadcast storms from the deltas.

Absolute thresholds raise errors; the multicast/broadcast share of all traffic
raises a separate warning. Both can fire for the same interface.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from fieldcheck.network_utils import InterfaceCounters
from fieldcheck.probes import CounterProbe, Probe
from fieldcheck.settings_manager import StormThresholds
from fieldcheck.store import MeasurementStore, Severity

logger = logging.getLogger(__name__)


@dataclass
class StormReport:
    """Counter deltas and findings for one interface over one window."""
    interface: str
    multicast_delta: int
    broadcast_delta: int
    total_delta: int
    multicast_pct: Optional[float] = None
    broadcast_pct: Optional[float] = None
    findings: List[str] = field(default_factory=list)

    @property
    def is_storm(self) -> bool:
        return any("storm" in f for f in self.findings)


def _delta(after: int, before: int) -> int:
    # A counter reset or wrap between snapshots reads as no traffic
    return max(0, after - before)


def classify_window(interface: str, before: InterfaceCounters, after: InterfaceCounters,
                    thresholds: StormThresholds) -> StormReport:
    """Compute deltas and findings for one interface. Pure function."""
    report = StormReport(
        interface=interface,
        multicast_delta=_delta(after.multicast_in, before.multicast_in),
        broadcast_delta=_delta(after.broadcast_in, before.broadcast_in),
        total_delta=_delta(after.total_in, before.total_in),
    )

    if report.multicast_delta > thresholds.multicast_delta:
        report.findings.append("multicast storm")
    if report.broadcast_delta > thresholds.broadcast_delta:
        report.findings.append("broadcast storm")

    if report.total_delta > 0:
        report.multicast_pct = report.multicast_delta / report.total_delta * 100
        report.broadcast_pct = report.broadcast_delta / report.total_delta * 100
        if (report.multicast_pct > thresholds.multicast_pct
                or report.broadcast_pct > thresholds.broadcast_pct):
            report.findings.append("high ratio")

    return report


class StormDetector:
    """Before/after counter sampler over a fixed window."""

    def __init__(self, store: MeasurementStore, thresholds: StormThresholds,
                 probe: Optional[Probe] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.store = store
        self.thresholds = thresholds
        self._probe = probe or CounterProbe()
        self._sleep = sleep

    def detect_storms(self, window_seconds: Optional[int] = None) -> List[StormReport]:
        window = self.thresholds.window_seconds if window_seconds is None else window_seconds
        self.store.info(f"Sampling interface counters over {window}s for broadcast/multicast storms")

        before = self._snapshot()
        if before is None:
            return []
        self._sleep(window)
        after = self._snapshot()
        if after is None:
            return []

        reports = []
        for name in sorted(after):
            if name not in before:
                logger.debug(f"Interface {name} appeared during the window - skipped")
                continue
            report = classify_window(name, before[name], after[name], self.thresholds)
            self._log(report, window)
            reports.append(report)

        if not reports:
            self.store.warn("Storm detection: no interface counters available")
        return reports

    def _snapshot(self) -> Optional[Dict[str, InterfaceCounters]]:
        measurement = self._probe.execute("*", 0.0)
        if not measurement.succeeded:
            self.store.warn(f"Storm detection: could not read interface counters ({measurement.detail})")
            return None
        return measurement.value

    def _log(self, report: StormReport, window: int):
        name = report.interface
        t = self.thresholds
        if "multicast storm" in report.findings:
            self.store.append(Severity.ERROR,
                              f"{name}: multicast storm - {report.multicast_delta} multicast packets "
                              f"in {window}s (threshold {t.multicast_delta})")
        if "broadcast storm" in report.findings:
            self.store.append(Severity.ERROR,
                              f"{name}: broadcast storm - {report.broadcast_delta} broadcast packets "
                              f"in {window}s (threshold {t.broadcast_delta})")
        if "high ratio" in report.findings:
            self.store.append(Severity.WARN,
                              f"{name}: high ratio of non-unicast traffic - multicast "
                              f"{report.multicast_pct:.1f}%, broadcast {report.broadcast_pct:.1f}%")
        if not report.findings:
            self.store.success(f"{name}: no storm detected ({report.multicast_delta} multicast, "
                               f"{report.broadcast_delta} broadcast of {report.total_delta} packets)")


def detect_storms(window_seconds: int, store: MeasurementStore,
                  thresholds: Optional[StormThresholds] = None, **kwargs) -> List[StormReport]:
    """Module-level entry point for one storm sampling window."""
    detector = StormDetector(store, thresholds or StormThresholds(), **kwargs)
    return detector.detect_storms(window_seconds)
