"""Tests for the tunnel discovery state machine.

The control API is an httpx MockTransport and time is a fake clock, so
the timeout path runs instantly.
"""

import pytest

from zenith.core.errors import TunnelTimeout
from zenith.deliver.tunnel import TunnelManager, TunnelState, select_tunnel

PUBLIC_URL = "https://widget-1234.ngrok-free.app"


def tunnel_entry(port: int, public_url: str = PUBLIC_URL, proto: str = "https") -> dict:
    return {"public_url": public_url, "proto": proto, "config": {"addr": f"http://localhost:{port}"}}


class TestSelectTunnel:
    def test_prefers_https(self):
        tunnels = [
            tunnel_entry(8181, "http://abc.ngrok.app", "http"),
            tunnel_entry(8181, "https://abc.ngrok.app", "https"),
        ]
        assert select_tunnel(tunnels, 8181).public_url == "https://abc.ngrok.app"

    def test_falls_back_to_first(self):
        tunnels = [tunnel_entry(8181, "http://abc.ngrok.app", "http")]
        assert select_tunnel(tunnels, 8181).public_url == "http://abc.ngrok.app"

    def test_ignores_other_ports(self):
        tunnels = [tunnel_entry(3000)]
        assert select_tunnel(tunnels, 8181) is None

    def test_matches_bare_port_addr(self):
        tunnels = [{"public_url": "https://x", "proto": "https", "config": {"addr": "8181"}}]
        assert select_tunnel(tunnels, 8181).public_url == "https://x"


class TestEnsureTunnel:
    def test_reuses_existing_tunnel(self, tunnels, tunnel_api, runner):
        tunnel_api.tunnels = [tunnel_entry(8181)]

        descriptor = tunnels.ensure(8181)

        assert descriptor.public_url == PUBLIC_URL
        assert tunnels.state is TunnelState.REGISTERED
        assert runner.spawned == []

    def test_spawns_and_polls_until_registered(self, tunnels, tunnel_api, runner, clock):
        tunnel_api.reachable = True
        tunnel_api.pending = [tunnel_entry(8181)]
        tunnel_api.register_after = 3

        descriptor = tunnels.ensure(8181)

        assert descriptor.public_url == PUBLIC_URL
        assert tunnels.state is TunnelState.REGISTERED
        assert runner.calls[0].args == ["ngrok", "http", "8181"]
        assert len(runner.spawned) == 1
        assert runner.spawned[0].alive
        assert clock.sleeps and all(s == 0.5 for s in clock.sleeps)

    def test_authtoken_passed_through_env(self, runner, tunnel_api, clock):
        tunnel_api.pending = [tunnel_entry(8181)]
        tunnel_api.register_after = 1
        manager = TunnelManager(
            runner, authtoken="ngrok-tok", http=tunnel_api.client(), clock=clock, sleep=clock.sleep,
        )
        manager.ensure(8181)

        call = runner.calls[0]
        assert call.env["NGROK_AUTHTOKEN"] == "ngrok-tok"
        assert "ngrok-tok" not in call.args

    def test_timeout_terminates_agent(self, tunnels, tunnel_api, runner, clock):
        tunnel_api.reachable = False

        with pytest.raises(TunnelTimeout) as exc_info:
            tunnels.ensure(8181)

        proc = runner.spawned[0]
        assert proc.terminated
        assert not proc.alive
        assert tunnels.state is TunnelState.TIMED_OUT
        assert tunnels.process is None
        assert exc_info.value.detail == {"port": 8181}
        assert clock.now - 1000.0 >= 5.0

    def test_agent_exiting_early(self, tunnels, tunnel_api, runner, make_process):
        tunnel_api.reachable = False
        runner.next_process = make_process(exit_code=1)

        with pytest.raises(TunnelTimeout, match="exited with code 1"):
            tunnels.ensure(8181)
        assert tunnels.state is TunnelState.TIMED_OUT

    def test_missing_binary(self, tunnels, tunnel_api, runner):
        tunnel_api.reachable = False
        runner.spawn_error = FileNotFoundError("ngrok")

        with pytest.raises(TunnelTimeout, match="failed to start ngrok"):
            tunnels.ensure(8181)

    def test_close_stops_agent(self, tunnels, tunnel_api, runner):
        tunnel_api.pending = [tunnel_entry(8181)]
        tunnel_api.register_after = 2
        tunnels.ensure(8181)

        tunnels.close()

        assert runner.spawned[0].terminated


class TestListTunnels:
    def test_unreachable_is_none(self, tunnels, tunnel_api):
        tunnel_api.reachable = False
        assert tunnels.list_tunnels() is None

    def test_returns_listing(self, tunnels, tunnel_api):
        tunnel_api.tunnels = [tunnel_entry(8181)]
        assert tunnels.list_tunnels() == [tunnel_entry(8181)]
