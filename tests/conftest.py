"""Shared fixtures for the Zenith test suite.

No git, npm or ngrok binary is ever executed: every external command goes
through ``FakeRunner``, which records the call and simulates its effect on
disk. Artifacts live in a ``LocalArtifactStore`` under ``tmp_path``.
"""

import threading
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from zenith.build.service import BuildService
from zenith.core.config import Settings
from zenith.deliver.service import DeliveryService
from zenith.deliver.static_site import SiteRoot, SpaStaticApp
from zenith.deliver.tunnel import TunnelManager
from zenith.main import create_app
from zenith.runner.process import StepResult
from zenith.runner.toolchain import Toolchain
from zenith.services import build_services
from zenith.storage.store import LocalArtifactStore

PUBLIC_URL = "https://widget-1234.ngrok-free.app"


# ---------------------------------------------------------------------------
# Process fakes
# ---------------------------------------------------------------------------


@dataclass
class RecordedCall:
    name: str
    args: list[str]
    cwd: Optional[Path]
    env: Optional[dict]


class FakeProcess:
    """Stands in for a spawned ngrok agent."""

    def __init__(self, pid: int = 4242, exit_code: Optional[int] = None):
        self.pid = pid
        self.returncode = exit_code
        self.terminated = False
        self.killed = False

    def poll(self) -> Optional[int]:
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self.returncode = -15

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9

    def wait(self, timeout: Optional[float] = None) -> int:
        return self.returncode if self.returncode is not None else 0

    @property
    def alive(self) -> bool:
        return self.returncode is None


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


def _simulate_clone(args: list[str], cwd: Optional[Path]) -> int:
    dest = Path(args[-1])
    _write(dest / "package.json", '{"name": "widget", "scripts": {"build": "react-scripts build"}}')
    _write(dest / "src" / "App.js", "export default function App() { return null; }\n")
    _write(dest / "public" / "index.html", "<html><body>source</body></html>")
    _write(dest / ".git" / "HEAD", "ref: refs/heads/main\n")
    return 0


def _simulate_scaffold(args: list[str], cwd: Optional[Path]) -> int:
    project = cwd if "vite@latest" in args else cwd / args[3]
    _write(project / "package.json", '{"name": "scaffolded", "scripts": {"build": "build"}}')
    _write(project / "src" / "index.js", "console.log('hi');\n")
    _write(project / "public" / "index.html", "<html><body>template</body></html>")
    _write(project / "node_modules" / "react" / "index.js", "module.exports = {};\n")
    return 0


def _simulate_build(args: list[str], cwd: Optional[Path]) -> int:
    _write(cwd / "build" / "index.html", "<html><body>built widget</body></html>")
    _write(cwd / "build" / "static" / "js" / "main.js", "console.log('widget');\n")
    return 0


class FakeRunner:
    """Scripted ProcessRunner.

    Each step name maps to a handler ``(args, cwd) -> exit_code``. Handlers
    default to simulating a successful clone, scaffold, install and build.
    """

    def __init__(self):
        self.calls: list[RecordedCall] = []
        self.spawned: list[FakeProcess] = []
        self.spawn_error: Optional[OSError] = None
        self.next_process: Optional[FakeProcess] = None
        self.handlers: dict[str, Callable[[list[str], Optional[Path]], int]] = {
            "clone": _simulate_clone,
            "scaffold": _simulate_scaffold,
            "install": lambda args, cwd: 0,
            "build": _simulate_build,
        }
        self._lock = threading.Lock()

    def on(self, name: str, handler: Callable[[list[str], Optional[Path]], int]) -> None:
        self.handlers[name] = handler

    def fail(self, name: str, exit_code: int = 1) -> None:
        self.handlers[name] = lambda args, cwd: exit_code

    def steps(self) -> list[str]:
        return [c.name for c in self.calls]

    def run(self, name, args, cwd=None, timeout=300, env=None, redact=()):
        args = [str(a) for a in args]
        cwd = Path(cwd) if cwd else None
        with self._lock:
            self.calls.append(RecordedCall(name=name, args=args, cwd=cwd, env=env))
        handler = self.handlers.get(name)
        exit_code = handler(args, cwd) if handler else 0
        return StepResult(
            name=name,
            command=args,
            exit_code=exit_code,
            duration_seconds=0.01,
            stderr="" if exit_code == 0 else f"{name} exploded",
        )

    def spawn(self, name, args, cwd=None, env=None):
        self.calls.append(RecordedCall(name=name, args=[str(a) for a in args], cwd=cwd, env=env))
        if self.spawn_error is not None:
            raise self.spawn_error
        proc = self.next_process or FakeProcess()
        self.next_process = None
        self.spawned.append(proc)
        return proc


# ---------------------------------------------------------------------------
# Tunnel and server fakes
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeTunnelApi:
    """The ngrok control API as an httpx MockTransport.

    ``tunnels`` is what GET /api/tunnels returns. ``register_after`` makes
    the listing appear only after that many polls, and ``reachable=False``
    simulates an agent that is not running yet.
    """

    def __init__(self):
        self.tunnels: list[dict] = []
        self.pending: list[dict] = []
        self.register_after: Optional[int] = None
        self.reachable = True
        self.requests = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests += 1
        if self.register_after is not None and self.requests > self.register_after:
            self.tunnels, self.pending = self.tunnels + self.pending, []
        if not self.reachable:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"tunnels": self.tunnels})

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


def tunnel_entry(port: int, public_url: str = PUBLIC_URL, proto: str = "https") -> dict:
    return {
        "name": "command_line",
        "public_url": public_url,
        "proto": proto,
        "config": {"addr": f"http://localhost:{port}", "inspect": True},
    }


class FakeStaticServer:
    """Records what would be served; requests go through ``app`` in-process."""

    def __init__(self, port: int = 8181):
        self.host = "127.0.0.1"
        self.port = port
        self.app = SpaStaticApp()
        self.served: list[SiteRoot] = []
        self.stopped = False

    @property
    def running(self) -> bool:
        return bool(self.served) and not self.stopped

    def serve(self, site: SiteRoot) -> None:
        self.app.set_site(site)
        self.served.append(site)

    def stop(self) -> None:
        self.stopped = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        storage_backend="local",
        local_storage_dir=str(tmp_path / "storage"),
        work_dir=str(tmp_path / "work"),
        deploy_dir=str(tmp_path / "deployed"),
        b2_bucket="zenith123",
        github_token="ghp_secret",
        source_hosts=["github.com"],
        ingest_service_url="",
        build_service_url="",
        sentry_dsn="",
        debug=False,
    )


@pytest.fixture
def store(tmp_path) -> LocalArtifactStore:
    return LocalArtifactStore(tmp_path / "storage")


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def toolchain(runner) -> Toolchain:
    return Toolchain(runner)


@pytest.fixture
def make_process():
    return FakeProcess


@pytest.fixture
def tunnel_listing():
    return tunnel_entry


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tunnel_api() -> FakeTunnelApi:
    return FakeTunnelApi()


@pytest.fixture
def static_server() -> FakeStaticServer:
    return FakeStaticServer()


@pytest.fixture
def tunnels(runner, tunnel_api, clock) -> TunnelManager:
    return TunnelManager(
        runner,
        api_url="http://localhost:4040/api/tunnels",
        timeout=5.0,
        poll_interval=0.5,
        http=tunnel_api.client(),
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def build_service(store, toolchain, tmp_path) -> BuildService:
    return BuildService(store, toolchain, bucket="zenith123", work_dir=tmp_path / "work")


@pytest.fixture
def delivery(store, toolchain, static_server, tunnels, tmp_path) -> DeliveryService:
    return DeliveryService(
        store=store,
        toolchain=toolchain,
        bucket="zenith123",
        deploy_dir=tmp_path / "deployed",
        server=static_server,
        tunnels=tunnels,
    )


@pytest.fixture
def services(settings, store, runner, delivery):
    return build_services(settings, store=store, runner=runner, delivery=delivery)


@pytest.fixture
def app(settings, services):
    """FastAPI app wired to the fakes.

    The SlowAPI limiter keeps in-memory counters on a module-level
    singleton; reset them so rate-limit tests start from zero.
    """
    from zenith.core.limiter import limiter

    limiter.reset()
    return create_app(settings=settings, services=services)


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
