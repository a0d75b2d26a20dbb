"""
SAS Field Network Check
Entry point - configures logging, builds the run configuration, and runs the
diagnostic against the local network.

Copyright 2026 Southern Automation Solutions
"""

import argparse
import logging
import os
import sys
import traceback
from datetime import datetime

from fieldcheck.engine import DiagnosticEngine
from fieldcheck.http_latency import sample_url, summarize_samples
from fieldcheck.settings_manager import SettingsManager
from fieldcheck.store import MeasurementStore, ReportFileSink, ReportSinkError


def setup_logging(verbose: bool = False):
    """Configure logging with file and console handlers."""
    log_dir = os.path.join(os.path.expanduser("~"), ".sas-fieldcheck")
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, "fieldcheck.log")

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.DEBUG if verbose else logging.INFO)

    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s  %(levelname)-8s  %(name)-25s  %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.FileHandler(log_file, encoding="utf-8"),
            console,
        ],
    )
    # Suppress noisy third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("reportlab").setLevel(logging.WARNING)

    return log_file


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fieldcheck",
        description="Field network diagnostic: hosts, DHCP, storms, latency, ports and routing.",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--deep", dest="deep", action="store_true", default=None,
                      help="Reverse-resolve discovered hosts")
    mode.add_argument("--quick", dest="deep", action="store_false",
                      help="Skip reverse lookups (default)")
    parser.add_argument("--subnet", help="Subnet to sweep, e.g. 192.168.1.0/24")
    parser.add_argument("--discovery-timeout", type=float,
                        help="Wall-clock limit for host discovery in seconds")
    parser.add_argument("--log", dest="report_path",
                        help="Report file to append findings to")
    parser.add_argument("--config", help="Settings file (JSON)")
    parser.add_argument("--parallel", action="store_true",
                        help="Run the probe families concurrently")
    parser.add_argument("--pdf", nargs="?", const="", default=None, metavar="PATH",
                        help="Also write a PDF report (default path under ~/Documents)")
    parser.add_argument("--http-url", help="Only sample HTTP latency against this URL")
    parser.add_argument("--http-count", type=int, default=5,
                        help="Number of HTTP requests to sample (default 5)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug output on the console")
    return parser


def default_report_path() -> str:
    report_dir = os.path.join(os.path.expanduser("~"), ".sas-fieldcheck", "reports")
    os.makedirs(report_dir, exist_ok=True)
    return os.path.join(report_dir, f"fieldcheck_{datetime.now():%Y-%m-%d_%H%M%S}.log")


def run_http(args, logger) -> int:
    samples = sample_url(args.http_url, count=args.http_count)
    stats = summarize_samples(samples)
    logger.info(f"{args.http_url}: {stats.successes}/{stats.count} succeeded "
                f"({stats.success_rate:.0f}%)")
    if stats.successes:
        logger.info(f"min {stats.min_ms:.1f}ms  avg {stats.avg_ms:.1f}ms  "
                    f"median {stats.median_ms:.1f}ms  p95 {stats.p95_ms:.1f}ms  "
                    f"max {stats.max_ms:.1f}ms  stdev {stats.stdev_ms:.1f}ms")
    return 0


def run_diagnostic(args, logger) -> int:
    settings = SettingsManager(args.config)
    config = settings.build_config(
        subnet=args.subnet,
        discovery_timeout=args.discovery_timeout,
        deep_scan=args.deep,
        report_path=args.report_path,
    )

    report_path = config.report_path or default_report_path()
    try:
        sink = ReportFileSink(report_path)
    except ReportSinkError as e:
        logger.critical(str(e))
        return 1
    logger.info(f"Report file: {report_path}")

    store = MeasurementStore(sink)
    try:
        engine = DiagnosticEngine(config, store)
        result = engine.run(parallel=args.parallel)
    finally:
        store.close()

    if args.pdf is not None:
        from fieldcheck.pdf_report import generate_run_report
        try:
            path = generate_run_report(store.entries(), result.summary, result.hosts,
                                       output_path=args.pdf)
            logger.info(f"PDF report: {path}")
        except (ImportError, OSError) as e:
            logger.error(f"PDF report failed: {e}")

    logger.info(f"Verdict: {result.summary.verdict.value} "
                f"({result.summary.errors} errors, {result.summary.warnings} warnings)")
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    log_file = setup_logging(args.verbose)
    logger = logging.getLogger("main")
    logger.info("=" * 60)
    logger.info("SAS Field Network Check starting")
    logger.info(f"Log file: {log_file}")
    logger.info(f"Python: {sys.version}")

    try:
        if args.http_url:
            return run_http(args, logger)
        return run_diagnostic(args, logger)
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    except Exception:
        logger.critical("Fatal error:\n" + traceback.format_exc())
        return 1


if __name__ == "__main__":
    sys.exit(main())
