"""Public tunnel discovery through the ngrok agent's local control API.

State machine:

    Starting ──spawn agent──▶ Polling ──tunnel for port listed──▶ Registered
                                 │
                                 └──deadline passed / agent exited──▶ TimedOut

A tunnel already listed for the port is reused without spawning anything.
On TimedOut the spawned agent is terminated before ``TunnelTimeout`` is
raised, so a failed attempt never leaves a stray process behind.

Clock, sleep, HTTP client and process runner are injected so the timeout
path is testable without waiting on a real clock.
"""

import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import httpx

from zenith.core.errors import TunnelTimeout
from zenith.runner.process import ProcessRunner, RunningProcess, stop_process

logger = logging.getLogger(__name__)


class TunnelState(str, Enum):
    STARTING = "starting"
    POLLING = "polling"
    REGISTERED = "registered"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class TunnelDescriptor:
    port: int
    public_url: str
    proto: str

    def to_dict(self) -> dict:
        return {"port": self.port, "public_url": self.public_url, "proto": self.proto}


def _targets_port(tunnel: dict, port: int) -> bool:
    config = tunnel.get("config") or {}
    addr = str(config.get("addr", "")).rstrip("/")
    return addr == str(port) or addr.endswith(f":{port}")


def select_tunnel(tunnels: list[dict], port: int) -> Optional[TunnelDescriptor]:
    """Pick the tunnel for ``port``, preferring an https public URL."""
    matching = [
        t for t in tunnels
        if isinstance(t, dict) and t.get("public_url") and _targets_port(t, port)
    ]
    if not matching:
        return None

    chosen = next(
        (t for t in matching if str(t["public_url"]).startswith("https://")),
        matching[0],
    )
    return TunnelDescriptor(
        port=port,
        public_url=str(chosen["public_url"]),
        proto=str(chosen.get("proto", "")),
    )


class TunnelManager:
    def __init__(
        self,
        runner: ProcessRunner,
        api_url: str = "http://localhost:4040/api/tunnels",
        ngrok_bin: str = "ngrok",
        authtoken: str = "",
        timeout: float = 30.0,
        poll_interval: float = 0.5,
        http: Optional[httpx.Client] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self._runner = runner
        self._api_url = api_url
        self._ngrok_bin = ngrok_bin
        self._authtoken = authtoken
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._http = http or httpx.Client(timeout=2.0)
        self._clock = clock or time.monotonic
        self._sleep = sleep or time.sleep
        self.state: Optional[TunnelState] = None
        self.process: Optional[RunningProcess] = None

    def list_tunnels(self) -> Optional[list[dict]]:
        """Tunnels reported by the control API, or None if it is unreachable."""
        try:
            response = self._http.get(self._api_url)
        except httpx.HTTPError:
            return None
        if response.status_code != 200:
            return None
        try:
            data = response.json()
        except ValueError:
            logger.warning("Tunnel control API returned a non-JSON body")
            return None
        tunnels = data.get("tunnels", []) if isinstance(data, dict) else []
        return tunnels if isinstance(tunnels, list) else []

    def ensure(self, port: int) -> TunnelDescriptor:
        """Return a public tunnel for ``port``, starting one if needed.

        Raises:
            TunnelTimeout: no registration within the deadline.
        """
        existing = self.list_tunnels()
        if existing:
            descriptor = select_tunnel(existing, port)
            if descriptor is not None:
                logger.info("Reusing tunnel %s for port %d", descriptor.public_url, port)
                self.state = TunnelState.REGISTERED
                return descriptor
        return self._start(port)

    def _start(self, port: int) -> TunnelDescriptor:
        self.state = TunnelState.STARTING
        env = dict(os.environ)
        if self._authtoken:
            env["NGROK_AUTHTOKEN"] = self._authtoken

        try:
            proc = self._runner.spawn("ngrok", [self._ngrok_bin, "http", str(port)], env=env)
        except OSError as exc:
            self.state = TunnelState.TIMED_OUT
            raise TunnelTimeout(f"failed to start ngrok: {exc}") from exc
        self.process = proc

        self.state = TunnelState.POLLING
        logger.info("Waiting for ngrok to register a tunnel for port %d...", port)
        deadline = self._clock() + self._timeout

        while True:
            exit_code = proc.poll()
            if exit_code is not None:
                self._give_up(proc)
                raise TunnelTimeout(f"ngrok exited with code {exit_code} before registering a tunnel")

            descriptor = select_tunnel(self.list_tunnels() or [], port)
            if descriptor is not None:
                self.state = TunnelState.REGISTERED
                logger.info("Tunnel registered: %s -> localhost:%d", descriptor.public_url, port)
                return descriptor

            if self._clock() >= deadline:
                break
            self._sleep(self._poll_interval)

        self._give_up(proc)
        raise TunnelTimeout(
            f"timed out after {self._timeout:.0f}s waiting for ngrok to register a tunnel",
            detail={"port": port},
        )

    def _give_up(self, proc: RunningProcess) -> None:
        self.state = TunnelState.TIMED_OUT
        stop_process(proc)
        self.process = None

    def close(self) -> None:
        """Stop the agent this manager spawned, if any."""
        if self.process is not None:
            stop_process(self.process)
            self.process = None
