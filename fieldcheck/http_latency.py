"""
SAS Field Network Check - HTTP Latency Sampler
Standalone utility: issue timed GET requests against a URL and summarize the
durations. Results are returned to the caller; nothing is cached globally.
"""

import logging
import math
import statistics
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

USER_AGENT = "SAS-FieldCheck/1.0"


@dataclass(frozen=True)
class HttpSample:
    """One timed request."""
    url: str
    status_code: int = 0
    body_length: int = 0
    elapsed_ms: float = 0.0
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error and 200 <= self.status_code < 400


@dataclass(frozen=True)
class HttpStats:
    count: int = 0
    successes: int = 0
    success_rate: float = 0.0
    min_ms: float = 0.0
    max_ms: float = 0.0
    avg_ms: float = 0.0
    median_ms: float = 0.0
    p95_ms: float = 0.0
    stdev_ms: float = 0.0


def fetch(url: str, timeout: float = 10.0,
          headers: Optional[Dict[str, str]] = None) -> HttpSample:
    """One GET, timed from request to fully-read body."""
    request_headers = {"User-Agent": USER_AGENT}
    request_headers.update(headers or {})
    req = urllib.request.Request(url, headers=request_headers)

    start = time.perf_counter()
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            body = resp.read()
            elapsed = (time.perf_counter() - start) * 1000
            return HttpSample(url, resp.status, len(body), round(elapsed, 2))
    except urllib.error.HTTPError as e:
        # Server answered; the status still tells us the path works
        elapsed = (time.perf_counter() - start) * 1000
        return HttpSample(url, e.code, 0, round(elapsed, 2))
    except (urllib.error.URLError, OSError) as e:
        elapsed = (time.perf_counter() - start) * 1000
        reason = getattr(e, "reason", e)
        logger.debug(f"HTTP request to {url} failed: {reason}")
        return HttpSample(url, 0, 0, round(elapsed, 2), error=str(reason))


def sample_url(url: str, count: int = 5, timeout: float = 10.0,
               headers: Optional[Dict[str, str]] = None,
               interval: float = 0.0,
               fetcher: Callable[..., HttpSample] = fetch) -> List[HttpSample]:
    """Issue count sequential requests and return every sample."""
    samples = []
    for i in range(count):
        sample = fetcher(url, timeout=timeout, headers=headers)
        samples.append(sample)
        logger.info(f"[{i + 1}/{count}] {url}: "
                    f"{sample.status_code or sample.error} in {sample.elapsed_ms:.0f}ms")
        if interval and i < count - 1:
            time.sleep(interval)
    return samples


def _percentile(sorted_values: List[float], pct: float) -> float:
    """Nearest-rank percentile."""
    rank = max(1, math.ceil(pct / 100 * len(sorted_values)))
    return sorted_values[min(rank, len(sorted_values)) - 1]


def summarize_samples(samples: List[HttpSample]) -> HttpStats:
    """Statistics over successful samples; success rate over all of them."""
    if not samples:
        return HttpStats()
    times = sorted(s.elapsed_ms for s in samples if s.ok)
    successes = len(times)
    rate = round(successes / len(samples) * 100, 2)
    if not times:
        return HttpStats(count=len(samples), successes=0, success_rate=rate)

    return HttpStats(
        count=len(samples),
        successes=successes,
        success_rate=rate,
        min_ms=times[0],
        max_ms=times[-1],
        avg_ms=round(statistics.mean(times), 2),
        median_ms=round(statistics.median(times), 2),
        p95_ms=_percentile(times, 95),
        stdev_ms=round(statistics.stdev(times), 2) if successes > 1 else 0.0,
    )
