"""
SAS Field Network Check - Performance Analyzer
Latency, packet loss and jitter against reference hosts and the local gateway.

Each target gets a fixed series of echo requests. Statistics come from the
successful replies only; loss accounts for the rest. The per-target samples
are then combined into a cross-target profile and an overall rating.

Rating (first match wins):
  loss > 5%                                  Poor
  avg latency > 200ms                        Poor
  jitter > 20ms                              Poor
  avg > 100ms or loss > 1% or jitter > 10ms  Fair
  avg > 50ms or jitter > 5ms                 Good
  otherwise                                  Excellent
"""

import logging
import statistics
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from fieldcheck.probes import IcmpProbe, Probe
from fieldcheck.settings_manager import LatencyThresholds
from fieldcheck.store import MeasurementStore, Severity

logger = logging.getLogger(__name__)

SAMPLES_PER_TARGET = 4


class PerformanceRating(Enum):
    EXCELLENT = "Excellent"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"


_RATING_SEVERITY = {
    PerformanceRating.EXCELLENT: Severity.SUCCESS,
    PerformanceRating.GOOD: Severity.SUCCESS,
    PerformanceRating.FAIR: Severity.WARN,
    PerformanceRating.POOR: Severity.ERROR,
}


# ── Data Structures ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PerformanceSample:
    """Latency statistics for one target."""
    target: str
    avg_latency: float = 0.0
    min_latency: float = 0.0
    max_latency: float = 0.0
    packet_loss_pct: float = 0.0
    jitter: float = 0.0
    attempts: int = 0
    successes: int = 0

    @property
    def reachable(self) -> bool:
        return self.successes > 0


@dataclass
class PerformanceProfile:
    """Aggregate over all reference targets of one run."""
    avg_latency_overall: float = 0.0
    avg_packet_loss_overall: float = 0.0
    avg_jitter_overall: float = 0.0
    max_latency_variation: float = 0.0
    rating: Optional[PerformanceRating] = None
    samples: List[PerformanceSample] = field(default_factory=list)


# ── Statistics ───────────────────────────────────────────────────────────────

def jitter_of(rtts: Sequence[float]) -> float:
    """Sample standard deviation of round-trip times; 0 below two samples."""
    if len(rtts) < 2:
        return 0.0
    return statistics.stdev(rtts)


def compute_sample(target: str, results: Sequence[Optional[float]]) -> PerformanceSample:
    """
    Build a PerformanceSample from one series of probe results.
    None entries are failed attempts.
    """
    attempts = len(results)
    rtts = [r for r in results if r is not None]
    loss = (attempts - len(rtts)) / attempts * 100 if attempts else 0.0

    if not rtts:
        return PerformanceSample(target=target, packet_loss_pct=loss,
                                 attempts=attempts, successes=0)

    return PerformanceSample(
        target=target,
        avg_latency=statistics.mean(rtts),
        min_latency=min(rtts),
        max_latency=max(rtts),
        packet_loss_pct=loss,
        jitter=jitter_of(rtts),
        attempts=attempts,
        successes=len(rtts),
    )


def rate_performance(avg_latency: float, packet_loss: float, jitter: float) -> PerformanceRating:
    """Overall rating; total over all non-negative inputs."""
    if packet_loss > 5:
        return PerformanceRating.POOR
    if avg_latency > 200:
        return PerformanceRating.POOR
    if jitter > 20:
        return PerformanceRating.POOR
    if avg_latency > 100 or packet_loss > 1 or jitter > 10:
        return PerformanceRating.FAIR
    if avg_latency > 50 or jitter > 5:
        return PerformanceRating.GOOD
    return PerformanceRating.EXCELLENT


def build_profile(samples: Sequence[PerformanceSample]) -> PerformanceProfile:
    """
    Cross-target aggregate. Latency and jitter come from reachable targets;
    loss is averaged over every target, unreachable ones included.
    """
    profile = PerformanceProfile(samples=list(samples))
    if not samples:
        return profile

    reachable = [s for s in samples if s.reachable]
    profile.avg_packet_loss_overall = statistics.mean(s.packet_loss_pct for s in samples)
    if reachable:
        latencies = [s.avg_latency for s in reachable]
        profile.avg_latency_overall = statistics.mean(latencies)
        profile.avg_jitter_overall = statistics.mean(s.jitter for s in reachable)
        profile.max_latency_variation = max(latencies) - min(latencies)

    profile.rating = rate_performance(profile.avg_latency_overall,
                                      profile.avg_packet_loss_overall,
                                      profile.avg_jitter_overall)
    return profile


# ── Analyzer ─────────────────────────────────────────────────────────────────

class PerformanceAnalyzer:
    """Runs latency series and logs per-target and overall findings."""

    def __init__(
        self,
        store: MeasurementStore,
        probe: Optional[Probe] = None,
        thresholds: Optional[LatencyThresholds] = None,
        gateway_thresholds: Optional[LatencyThresholds] = None,
        sample_count: int = SAMPLES_PER_TARGET,
        probe_timeout: float = 2.0,
    ):
        self.store = store
        self._probe = probe or IcmpProbe()
        self.thresholds = thresholds or LatencyThresholds()
        self.gateway_thresholds = gateway_thresholds or LatencyThresholds(
            latency_warn_ms=10.0, latency_error_ms=50.0)
        self.sample_count = sample_count
        self.probe_timeout = probe_timeout

    def measure(self, target: str) -> PerformanceSample:
        """Fixed-count echo series; each attempt is made exactly once."""
        results: List[Optional[float]] = []
        for _ in range(self.sample_count):
            m = self._probe.execute(target, self.probe_timeout)
            results.append(float(m.value) if m.succeeded else None)
        return compute_sample(target, results)

    def analyze_performance(self, targets: Sequence[str]) -> PerformanceProfile:
        if not targets:
            self.store.warn("Performance test skipped: no reference targets configured")
            return PerformanceProfile()

        self.store.info(f"Testing latency to {len(targets)} reference hosts "
                        f"({self.sample_count} samples each)")
        samples = []
        for target in targets:
            sample = self.measure(target)
            self._log_sample(sample, self.thresholds, "Reference host")
            samples.append(sample)

        profile = build_profile(samples)
        self.store.info(
            f"Overall: avg latency {profile.avg_latency_overall:.1f}ms, "
            f"avg loss {profile.avg_packet_loss_overall:.1f}%, "
            f"avg jitter {profile.avg_jitter_overall:.1f}ms, "
            f"latency spread {profile.max_latency_variation:.1f}ms")

        if profile.max_latency_variation > self.thresholds.variation_warn_ms:
            self.store.warn(
                f"Latency varies by {profile.max_latency_variation:.1f}ms between reference "
                f"hosts - possible routing inconsistency")

        if profile.rating is not None:
            self.store.append(_RATING_SEVERITY[profile.rating],
                              f"Overall network performance: {profile.rating.value}")
        return profile

    def analyze_gateway(self, gateway: str) -> PerformanceSample:
        """Local-segment health: same series, tighter thresholds."""
        self.store.info(f"Testing default gateway {gateway}")
        sample = self.measure(gateway)
        if not sample.reachable:
            self.store.error(f"Gateway {gateway} not responding ({sample.attempts} requests, no replies)")
            return sample
        self._log_sample(sample, self.gateway_thresholds, "Gateway")
        return sample

    def _log_sample(self, sample: PerformanceSample, t: LatencyThresholds, label: str):
        target = sample.target
        if not sample.reachable:
            self.store.error(f"{label} {target} unreachable ({sample.attempts} requests, no replies)")
            return

        issues = []
        if sample.avg_latency > t.latency_warn_ms:
            issues.append((Severity.WARN, f"{label} {target}: high latency "
                                          f"{sample.avg_latency:.1f}ms (> {t.latency_warn_ms:g}ms)"))
        if sample.avg_latency > t.latency_error_ms:
            issues.append((Severity.ERROR, f"{label} {target}: very high latency "
                                           f"{sample.avg_latency:.1f}ms (> {t.latency_error_ms:g}ms)"))
        if sample.jitter > t.jitter_warn_ms:
            issues.append((Severity.WARN, f"{label} {target}: high jitter "
                                          f"{sample.jitter:.1f}ms (> {t.jitter_warn_ms:g}ms)"))
        if sample.packet_loss_pct > t.loss_warn_pct:
            issues.append((Severity.WARN, f"{label} {target}: packet loss "
                                          f"{sample.packet_loss_pct:.0f}%"))
        if sample.packet_loss_pct > t.loss_error_pct:
            issues.append((Severity.ERROR, f"{label} {target}: severe packet loss "
                                           f"{sample.packet_loss_pct:.0f}% (> {t.loss_error_pct:g}%)"))

        summary = (f"{label} {target}: avg {sample.avg_latency:.1f}ms "
                   f"(min {sample.min_latency:.1f}, max {sample.max_latency:.1f}), "
                   f"loss {sample.packet_loss_pct:.0f}%, jitter {sample.jitter:.1f}ms")
        self.store.append(Severity.INFO if issues else Severity.SUCCESS, summary)
        for severity, message in issues:
            self.store.append(severity, message)


def analyze_performance(targets: Sequence[str], store: MeasurementStore,
                        **analyzer_kwargs) -> PerformanceProfile:
    """Module-level entry point."""
    return PerformanceAnalyzer(store, **analyzer_kwargs).analyze_performance(targets)
