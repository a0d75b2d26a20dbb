"""Tests for the DNS probe and the DNS resolution check."""

import dns.exception
import dns.resolver
from conftest import messages_with

from fieldcheck.dns_check import DnsChecker
from fieldcheck.models import ErrorKind
from fieldcheck.probes import DnsProbe
from fieldcheck.store import Severity


def resolver_with(answers, failures=()):
    """Fake dns_resolve: answers by (name, server), raising for listed servers."""
    def resolve(name, record_type="A", server=None, timeout=3.0):
        if server in failures:
            raise dns.exception.Timeout()
        if name not in answers:
            raise dns.resolver.NXDOMAIN()
        return answers[name]
    return resolve


class TestDnsProbe:

    def test_success_value(self):
        probe = DnsProbe(resolve=resolver_with({"google.com": ["142.250.80.46"]}))
        m = probe.execute("google.com", 2.0)
        assert m.succeeded
        assert m.value["addresses"] == ["142.250.80.46"]
        assert m.value["elapsed_ms"] >= 0

    def test_nxdomain(self):
        m = DnsProbe(resolve=resolver_with({})).execute("nope.invalid", 2.0)
        assert m.error == ErrorKind.RESOLUTION_FAILURE

    def test_timeout(self):
        probe = DnsProbe(server="8.8.8.8", resolve=resolver_with({}, failures=("8.8.8.8",)))
        assert probe.execute("google.com", 2.0).error == ErrorKind.PROBE_TIMEOUT

    def test_empty_answer(self):
        m = DnsProbe(resolve=resolver_with({"google.com": []})).execute("google.com", 2.0)
        assert not m.succeeded
        assert m.error == ErrorKind.RESOLUTION_FAILURE


class TestDnsChecker:

    def checker(self, store, answers, failures=(), slow_ms=200.0):
        resolve = resolver_with(answers, failures)
        return DnsChecker(store, probe_factory=lambda server: DnsProbe(server=server, resolve=resolve),
                          slow_ms=slow_ms)

    def test_all_names_resolve(self, store):
        answers = {"google.com": ["142.250.80.46"], "cloudflare.com": ["104.16.132.229"]}
        results = self.checker(store, answers).check_dns(["google.com", "cloudflare.com"],
                                                         ["8.8.8.8"])
        assert len(results) == 3
        assert len(store.messages(Severity.SUCCESS)) == 2
        assert messages_with(store, Severity.INFO, "Public resolver 8.8.8.8 answered for google.com")

    def test_failed_name_is_an_error(self, store):
        self.checker(store, {"google.com": ["1.2.3.4"]}).check_dns(["google.com", "broken.example"])
        assert messages_with(store, Severity.ERROR, "DNS resolution failed for broken.example")

    def test_slow_resolution_warns(self, store):
        self.checker(store, {"google.com": ["1.2.3.4"]}, slow_ms=-1).check_dns(["google.com"])
        assert messages_with(store, Severity.WARN, "is slow")

    def test_filtered_public_resolver_warns(self, store):
        self.checker(store, {"google.com": ["1.2.3.4"]}, failures=("1.1.1.1",)).check_dns(
            ["google.com"], ["1.1.1.1"])
        assert messages_with(store, Severity.WARN, "Public resolver 1.1.1.1 did not answer")
        assert store.messages(Severity.ERROR) == []

    def test_no_names(self, store):
        assert self.checker(store, {}).check_dns([]) == []
        assert messages_with(store, Severity.INFO, "skipped")
