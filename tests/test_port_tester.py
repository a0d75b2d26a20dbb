"""Tests for port connectivity and the UDP protocol exchanges."""

import socket

from conftest import ScriptedProbe, messages_with

from fieldcheck.models import ErrorKind
from fieldcheck.port_tester import PortConnectivityTester
from fieldcheck.probes import PortProbe, build_ntp_request, is_valid_ntp_response
from fieldcheck.report import count_entries
from fieldcheck.settings_manager import ServiceSpec
from fieldcheck.store import Severity


def tester_with(store, probe):
    return PortConnectivityTester(store, probe_factory=lambda port, protocol: probe)


class TestPortConnectivityTester:

    def test_at_most_three_hosts_per_service(self, store):
        probe = ScriptedProbe()
        service = ServiceSpec("HTTPS", 443, "tcp", ("a", "b", "c", "d", "e"))
        results = tester_with(store, probe).test_ports([service])
        assert probe.calls == ["a", "b", "c"]
        assert len(results[0].hosts_tested) == 3

    def test_reachable_when_any_host_answers(self, store):
        probe = ScriptedProbe({"b": [12.0]})
        service = ServiceSpec("HTTPS", 443, "tcp", ("a", "b", "c"))
        result = tester_with(store, probe).test_ports([service])[0]
        assert result.reachable
        assert messages_with(store, Severity.SUCCESS, "HTTPS (TCP/443): reachable (1/3 hosts: b)")
        assert store.messages(Severity.ERROR) == []

    def test_blocked_service_is_an_error(self, store):
        service = ServiceSpec("SSH", 22, "tcp", ("github.com",))
        result = tester_with(store, ScriptedProbe()).test_ports([service])[0]
        assert not result.reachable
        assert messages_with(store, Severity.ERROR, "SSH (TCP/22): blocked or unreachable")

    def test_service_without_candidates_is_info_and_never_scored(self, store):
        probe = ScriptedProbe()
        services = [ServiceSpec("RDP", 3389, "tcp"), ServiceSpec("SMB", 445, "tcp")]
        results = tester_with(store, probe).test_ports(services)

        assert probe.calls == []
        assert [r.hosts_tested for r in results] == [(), ()]
        assert len(messages_with(store, Severity.INFO, "requires local testing")) == 2
        summary = count_entries(store.entries())
        assert (summary.errors, summary.warnings) == (0, 0)

    def test_local_service_closed_on_gateway_is_info(self, store):
        service = ServiceSpec("Gateway Web Admin", 443, "tcp", scope="local")
        result = tester_with(store, ScriptedProbe()).test_ports([service], gateway="192.168.1.1")[0]
        assert result.hosts_tested == (("192.168.1.1", False),)
        assert messages_with(store, Severity.INFO, "not answering on gateway 192.168.1.1")
        assert store.messages(Severity.ERROR) == []

    def test_local_service_open_on_gateway(self, store):
        probe = ScriptedProbe({"192.168.1.1": [1.0]})
        service = ServiceSpec("Gateway DNS", 53, "tcp", scope="local")
        tester_with(store, probe).test_ports([service], gateway="192.168.1.1")
        assert messages_with(store, Severity.SUCCESS, "open on gateway 192.168.1.1")

    def test_local_service_without_gateway_is_skipped(self, store):
        probe = ScriptedProbe()
        service = ServiceSpec("Gateway DNS", 53, "tcp", scope="local")
        tester_with(store, probe).test_ports([service], gateway=None)
        assert probe.calls == []
        assert messages_with(store, Severity.INFO, "skipped")

    def test_udp_port_without_exchange_is_info(self, store):
        probe = ScriptedProbe()
        service = ServiceSpec("Syslog", 514, "udp", ("10.0.0.5",))
        tester_with(store, probe).test_ports([service])
        assert probe.calls == []
        assert messages_with(store, Severity.INFO, "no UDP exchange defined")

    def test_sample_size_is_capped(self, store):
        tester = PortConnectivityTester(store, sample_size=10)
        assert tester.sample_size == 3


class TestPortProbe:

    def test_tcp_success(self):
        probe = PortProbe(443, "tcp", connect=lambda host, port, timeout: 14.2)
        m = probe.execute("example.com", 1.0)
        assert m.succeeded and m.value == 14.2

    def test_tcp_refused(self):
        def refuse(host, port, timeout):
            raise ConnectionRefusedError()

        m = PortProbe(22, "tcp", connect=refuse).execute("10.0.0.1", 1.0)
        assert not m.succeeded
        assert m.error == ErrorKind.PROBE_REFUSED

    def test_tcp_timeout(self):
        def hang(host, port, timeout):
            raise socket.timeout("timed out")

        m = PortProbe(22, "tcp", connect=hang).execute("10.0.0.1", 1.0)
        assert m.error == ErrorKind.PROBE_TIMEOUT

    def test_unresolvable_host(self):
        def unknown(host, port, timeout):
            raise socket.gaierror(-2, "Name or service not known")

        m = PortProbe(443, "tcp", connect=unknown).execute("no.such.host", 1.0)
        assert m.error == ErrorKind.RESOLUTION_FAILURE

    def test_ntp_requires_server_mode_reply(self):
        sent = []

        def exchange(host, port, payload, timeout):
            sent.append(payload)
            return b"\x1c" + b"\x00" * 47

        m = PortProbe(123, "udp", udp_exchange=exchange).execute("pool.ntp.org", 1.0)
        assert m.succeeded
        assert sent == [build_ntp_request()]
        assert len(sent[0]) == 48

    def test_ntp_short_or_wrong_mode_reply_fails(self):
        assert not is_valid_ntp_response(b"\x1c" * 20)
        assert not is_valid_ntp_response(b"\x1b" + b"\x00" * 47)
        m = PortProbe(123, "udp", udp_exchange=lambda *a, **k: b"\x00" * 10).execute("x", 1.0)
        assert not m.succeeded
        assert m.error == ErrorKind.PROBE_REFUSED

    def test_dns_exchange(self):
        ok = PortProbe(53, "udp", dns_exchange=lambda server, timeout: True).execute("8.8.8.8", 1.0)
        bad = PortProbe(53, "udp", dns_exchange=lambda server, timeout: False).execute("8.8.8.8", 1.0)
        assert ok.succeeded
        assert not bad.succeeded

    def test_unsupported_udp_port(self):
        m = PortProbe(514, "udp").execute("10.0.0.5", 1.0)
        assert m.error == ErrorKind.CONFIGURATION_INDETERMINATE
        assert not PortProbe.supports(514, "udp")
        assert PortProbe.supports(514, "tcp")
