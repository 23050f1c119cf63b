"""Static site serving with single-page-application fallback.

Routing policy for a request path P under serving root R with entry
document E (``index.html``):

  P == "/" or P ends with "/"          -> E
  P does not name a file under R       -> E
  otherwise                            -> the file, verbatim

Paths that resolve outside R are treated as missing. Without an entry
document, missing paths are a plain 404.

The server is one uvicorn instance on a fixed port running in a daemon
thread. It outlives the request that started it; later deliveries swap
the site it serves instead of starting a second server.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import FileResponse, PlainTextResponse, Response
from starlette.routing import Route

from zenith.core.errors import PipelineError, ValidationError
from zenith.core.names import safe_join

logger = logging.getLogger(__name__)

ENTRY_DOCUMENT = "index.html"

# Never pick an entry document out of installed dependencies.
_SKIP_DIRS = frozenset({"node_modules", ".git"})


def find_entry_document(tree: Path) -> Optional[Path]:
    """Return the shallowest ``index.html`` under ``tree``.

    Breadth-first, siblings in lexicographic order, so ``build/index.html``
    wins over ``public/index.html`` and over anything nested deeper.
    """
    queue = deque([Path(tree)])
    while queue:
        current = queue.popleft()
        try:
            entries = sorted(current.iterdir(), key=lambda p: p.name)
        except OSError:
            continue
        for entry in entries:
            if entry.name == ENTRY_DOCUMENT and entry.is_file():
                return entry
        queue.extend(
            e for e in entries
            if e.is_dir() and not e.is_symlink() and e.name not in _SKIP_DIRS
        )
    return None


@dataclass(frozen=True)
class SiteRoot:
    root: Path
    index: Optional[Path] = None

    @classmethod
    def resolve(cls, tree: Path) -> "SiteRoot":
        """Serve from the entry document's directory, else the tree itself."""
        tree = Path(tree).resolve()
        index = find_entry_document(tree)
        if index is None:
            logger.info("No %s found, serving entire folder: %s", ENTRY_DOCUMENT, tree)
            return cls(root=tree)
        logger.info("Found %s at %s, serving from %s", ENTRY_DOCUMENT, index, index.parent)
        return cls(root=index.parent, index=index)


class SpaStaticApp:
    """ASGI app serving the current ``SiteRoot``; the site can be swapped live."""

    def __init__(self, site: Optional[SiteRoot] = None):
        self._site = site
        self._app = Starlette(
            routes=[Route("/{path:path}", self._serve, methods=["GET", "HEAD"])],
        )

    @property
    def site(self) -> Optional[SiteRoot]:
        return self._site

    def set_site(self, site: SiteRoot) -> None:
        self._site = site

    async def __call__(self, scope, receive, send) -> None:
        await self._app(scope, receive, send)

    async def _serve(self, request: Request) -> Response:
        site = self._site
        if site is None:
            return PlainTextResponse("No site deployed", status_code=503)

        raw_path = request.url.path
        if raw_path == "/" or raw_path.endswith("/"):
            return self._entry(site)

        try:
            candidate = safe_join(site.root, request.path_params["path"])
        except ValidationError:
            candidate = None

        if candidate is not None and candidate.is_file():
            return FileResponse(candidate)
        return self._entry(site)

    @staticmethod
    def _entry(site: SiteRoot) -> Response:
        if site.index is None:
            return PlainTextResponse("Not Found", status_code=404)
        return FileResponse(site.index, media_type="text/html")


class StaticSiteServer:
    """A single long-lived uvicorn server on a fixed local port."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8181,
        startup_timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.app = SpaStaticApp()
        self._startup_timeout = startup_timeout
        self._lock = threading.Lock()
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def serve(self, site: SiteRoot) -> None:
        """Point the server at ``site``, starting it on first use.

        Raises:
            PipelineError: the server could not bind its port.
        """
        with self._lock:
            self.app.set_site(site)
            if not self.running:
                self._start()

    def _start(self) -> None:
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
            access_log=False,
            lifespan="off",
        )
        server = uvicorn.Server(config)
        thread = threading.Thread(target=server.run, name="static-site", daemon=True)
        thread.start()

        deadline = time.monotonic() + self._startup_timeout
        while not server.started:
            if not thread.is_alive() or time.monotonic() > deadline:
                server.should_exit = True
                raise PipelineError(
                    f"static file server failed to start on {self.host}:{self.port}"
                )
            time.sleep(0.05)

        self._server = server
        self._thread = thread
        logger.info("Static file server listening on %s:%d", self.host, self.port)

    def stop(self) -> None:
        with self._lock:
            if self._server is not None:
                self._server.should_exit = True
            if self._thread is not None:
                self._thread.join(timeout=5)
            self._server = None
            self._thread = None
