"""Tests for the measurement store and the report file format."""

import re
import threading
from datetime import datetime

import pytest

from fieldcheck.store import (
    LogEntry, MeasurementStore, ReportFileSink, ReportSinkError, Severity,
)

LINE_RE = re.compile(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] \[(INFO|SUCCESS|WARN|ERROR)\] .*$")


class TestLogEntry:

    def test_format_line(self):
        entry = LogEntry(Severity.WARN, "Gateway slow", datetime(2026, 3, 4, 5, 6, 7))
        assert entry.format_line() == "[2026-03-04 05:06:07] [WARN] Gateway slow"

    def test_embedded_newlines_are_escaped(self):
        """A multi-line message must stay on one report line."""
        entry = LogEntry(Severity.ERROR, "first\nsecond\r\nthird", datetime(2026, 1, 1))
        line = entry.format_line()
        assert "\n" not in line and "\r" not in line
        assert line.endswith("first\\nsecond\\r\\nthird")


class TestMeasurementStore:

    def test_preserves_insertion_order(self, store):
        store.info("one")
        store.warn("two")
        store.success("three")
        store.error("four")
        assert store.messages() == ["one", "two", "three", "four"]
        assert [e.severity for e in store] == [
            Severity.INFO, Severity.WARN, Severity.SUCCESS, Severity.ERROR]

    def test_entries_returns_a_copy(self, store):
        store.info("one")
        snapshot = store.entries()
        snapshot.clear()
        assert len(store) == 1

    def test_messages_filtered_by_severity(self, store):
        store.warn("a")
        store.info("b")
        store.warn("c")
        assert store.messages(Severity.WARN) == ["a", "c"]

    def test_concurrent_appends_are_not_lost(self, store):
        def writer(n):
            for i in range(200):
                store.info(f"{n}-{i}")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(store) == 1600
        assert len(set(store.messages())) == 1600

    def test_mirrors_to_logging(self, caplog):
        store = MeasurementStore()
        with caplog.at_level("INFO", logger="fieldcheck.report"):
            store.warn("storm on eth0")
        assert any(r.levelname == "WARNING" and r.message == "storm on eth0"
                   for r in caplog.records)


class TestReportFileSink:

    def test_lines_appended_as_entries_arrive(self, tmp_path):
        path = tmp_path / "run.log"
        store = MeasurementStore(ReportFileSink(str(path)), mirror_to_logging=False)
        store.info("started")
        # Flushed per entry, readable before close
        assert "started" in path.read_text(encoding="utf-8")
        store.error("multi\nline")
        store.close()

        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert all(LINE_RE.match(line) for line in lines)
        assert lines[1].endswith("[ERROR] multi\\nline")

    def test_appends_to_existing_file(self, tmp_path):
        path = tmp_path / "run.log"
        path.write_text("previous run\n", encoding="utf-8")
        sink = ReportFileSink(str(path))
        sink.write(LogEntry(Severity.INFO, "näive ünïcode"))
        sink.close()
        text = path.read_text(encoding="utf-8")
        assert text.startswith("previous run\n")
        assert "näive ünïcode" in text

    def test_unopenable_path_raises(self, tmp_path):
        with pytest.raises(ReportSinkError):
            ReportFileSink(str(tmp_path / "missing-dir" / "run.log"))

    def test_in_memory_message_is_unescaped(self, tmp_path):
        store = MeasurementStore(ReportFileSink(str(tmp_path / "r.log")), mirror_to_logging=False)
        store.info("a\nb")
        store.close()
        assert store.messages() == ["a\nb"]
