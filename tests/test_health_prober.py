"""Tests for TCP upstream probes and the health monitor."""

import asyncio
import socket

import pytest

from edgeagent.models.entities import NLBUpstream
from edgeagent.services.health_prober import HealthCheckResult, HealthMonitor, probe, probe_many


def _closed_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


async def _start_server():
    async def handle(reader, writer):
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    return server, server.sockets[0].getsockname()[1]


class TestProbe:
    @pytest.mark.asyncio
    async def test_open_port_is_up(self):
        server, port = await _start_server()
        try:
            result = await probe("127.0.0.1", port, timeout=2)
        finally:
            server.close()
            await server.wait_closed()

        assert result.status == "up"
        assert result.response_time_ms is not None and result.response_time_ms >= 0
        assert result.error is None

    @pytest.mark.asyncio
    async def test_closed_port_is_down(self):
        result = await probe("127.0.0.1", _closed_port(), timeout=2)
        assert result.status == "down"
        assert result.response_time_ms is None
        assert result.error

    @pytest.mark.asyncio
    async def test_timeout(self, monkeypatch):
        async def never_connects(host, port):
            await asyncio.sleep(10)

        monkeypatch.setattr(asyncio, "open_connection", never_connects)
        result = await probe("10.255.255.1", 9, timeout=0.05)
        assert result.status == "down"
        assert result.error == "Connection timeout"

    @pytest.mark.asyncio
    async def test_probe_many_keeps_order(self):
        server, port = await _start_server()
        closed = _closed_port()
        try:
            results = await probe_many([("127.0.0.1", closed), ("127.0.0.1", port)], timeout=2)
        finally:
            server.close()
            await server.wait_closed()

        assert [r.upstream_port for r in results] == [closed, port]
        assert [r.status for r in results] == ["down", "up"]


def _fake_prober(statuses):
    async def fake(host, port, timeout):
        return HealthCheckResult(host, port, statuses.get(port, "up"), response_time_ms=1)
    return fake


class TestHealthMonitor:
    @pytest.mark.asyncio
    async def test_check_records_history_and_latest(self, nlb):
        nlb.upstreams = [NLBUpstream(host="10.0.0.1", port=7000), NLBUpstream(host="10.0.0.2", port=7001)]
        monitor = HealthMonitor(history_size=3, prober=_fake_prober({7001: "down"}))

        results = await monitor.check(nlb)
        await monitor.check(nlb)

        assert [r.status for r in results] == ["up", "down"]
        assert len(monitor.history("game-tcp")) == 3
        assert len(monitor.history("game-tcp", limit=1)) == 1
        assert {(r.upstream_port, r.status) for r in monitor.latest("game-tcp")} == {(7000, "up"), (7001, "down")}

    @pytest.mark.asyncio
    async def test_disabled_checks_probe_nothing(self, nlb):
        nlb.health_check_enabled = False
        monitor = HealthMonitor(prober=_fake_prober({}))
        assert await monitor.check(nlb) == []
        assert monitor.history("game-tcp") == []

    def test_register_with_checks_disabled_unregisters(self, nlb):
        monitor = HealthMonitor(prober=_fake_prober({}))
        monitor.register(nlb)
        assert monitor.registered == ["game-tcp"]

        nlb.health_check_enabled = False
        monitor.register(nlb)
        assert monitor.registered == []

    @pytest.mark.asyncio
    async def test_forget_drops_results(self, nlb):
        monitor = HealthMonitor(prober=_fake_prober({}))
        monitor.register(nlb)
        await monitor.check(nlb)

        monitor.forget("game-tcp")

        assert monitor.registered == []
        assert monitor.history("game-tcp") == []
        assert monitor.latest("game-tcp") == []

    @pytest.mark.asyncio
    async def test_background_loop_probes_registered(self, nlb):
        monitor = HealthMonitor(prober=_fake_prober({}))
        monitor.register(nlb)

        await monitor.start()
        for _ in range(50):
            if monitor.history("game-tcp"):
                break
            await asyncio.sleep(0.01)
        await monitor.stop()

        assert monitor.history("game-tcp")[0].status == "up"
