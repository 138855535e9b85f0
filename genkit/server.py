"""Development server for genkit sites.

The site is built into a temporary directory and kept up to date by
watch_build. Two transports sit on top of it:

- an HTTP server serving the build directory, injecting a live reload
  script into HTML pages and answering 404 for missing paths and for
  directories without an index page;
- a WebSocket server on the next port sending ``{"type": "reload"}`` to
  every client after each successful rebuild.

Key classes:
- DevServer: Runs the build loop and both transports.
- _ReloadHandler: HTTP request handler injecting the reload script.
"""

from __future__ import annotations

import asyncio
import errno
import functools
import json
import logging
import shutil
import tempfile
import threading
import webbrowser
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import TYPE_CHECKING, Any

import questionary
import websockets
from websockets.exceptions import ConnectionClosed

from .build import BuildSignals, watch_build

if TYPE_CHECKING:
    from .entity import Generator
    from .markdown.visitor import MarkdownVisitor

logger = logging.getLogger(__name__)

RELOAD_MESSAGE = json.dumps({"type": "reload"})

RELOAD_SCRIPT_TEMPLATE = """
<script>
(() => {{
  const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
  ws.onmessage = (event) => {{
    const data = JSON.parse(event.data || '{{}}');
    if (data.type === 'reload') location.reload();
  }};
}})();
</script>
"""


def build_dir_for(name: str) -> Path:
    """Temporary build directory of the dev server of ``name``."""
    return Path(tempfile.gettempdir()) / f"__{name}_build"


class _ReloadHandler(SimpleHTTPRequestHandler):
    """Serves the build directory with the reload script injected into HTML."""

    reload_script = RELOAD_SCRIPT_TEMPLATE.format(ws_port=3001)

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        return self._serve_404()

    def _inject(self, content: str) -> str:
        if "</body>" in content:
            return content.replace("</body>", f"{self.reload_script}</body>")
        return content + self.reload_script

    def _send_html(self, status: int, content: str) -> None:
        encoded = self._inject(content).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        self.wfile.write(encoded)

    def _serve_404(self):
        error_page = Path(self.directory) / "404.html"
        if error_page.exists():
            self._send_html(404, error_page.read_text(encoding="utf-8"))
        else:
            self.send_error(404, "File not found")
        return None

    def send_head(self):
        path = Path(self.translate_path(self.path))
        if path.is_dir():
            path = path / "index.html"
        if not path.is_file():
            return self._serve_404()
        if path.suffix == ".html":
            self._send_html(200, path.read_text(encoding="utf-8"))
            return None
        return super().send_head()


class DevServer:
    """Live reloading development server.

    Attributes:
        generator: Site-specific entity factory.
        source: Source directory of the site.
        name: Application name, used for the temporary build directory.
        http_port: Port of the HTTP server.
        ws_port: Port of the WebSocket server, always ``http_port + 1``.
        build_dir: Temporary directory the site is built into.
        signals: Build notifications shared with watch_build.
    """

    def __init__(
        self,
        generator: Generator,
        source: Path,
        http_port: int = 3000,
        *,
        name: str = "genkit",
        open_browser: bool = False,
        banner: str | None = None,
        visitor: MarkdownVisitor | None = None,
        config: dict[str, Any] | None = None,
    ):
        self.generator = generator
        self.source = Path(source)
        self.name = name
        self.open_browser = open_browser
        self.banner = banner
        self.visitor = visitor
        self.config = config
        self.build_dir = build_dir_for(name)
        self.signals = BuildSignals()
        self._open_task: asyncio.Task | None = None
        self.set_port(http_port)

    def set_port(self, http_port: int) -> None:
        self.http_port = http_port
        self.ws_port = http_port + 1
        self._reload_script = RELOAD_SCRIPT_TEMPLATE.format(ws_port=self.ws_port)

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.http_port}"

    def start(self) -> None:  # pragma: no cover - integration path
        self._prepare_build_dir()
        httpd = self._bind()
        if self.banner:
            print(self.banner)
        print(f"listening on {self.url}")
        threading.Thread(target=httpd.serve_forever, daemon=True).start()
        try:
            asyncio.run(self._run())
        except KeyboardInterrupt:
            pass
        finally:
            httpd.shutdown()

    def _prepare_build_dir(self) -> None:
        # A stale build from a previous session would be served until the first build ends.
        if self.build_dir.exists():
            shutil.rmtree(self.build_dir)
        self.build_dir.mkdir(parents=True, exist_ok=True)

    def _handler(self):
        handler_cls = type(
            "_ReloadHandlerWithPort",
            (_ReloadHandler,),
            {"reload_script": self._reload_script},
        )
        return functools.partial(handler_cls, directory=str(self.build_dir))

    def _bind(self) -> ThreadingHTTPServer:
        """Bind the HTTP server, asking for another port while the port is taken."""
        while True:
            try:
                return ThreadingHTTPServer(("127.0.0.1", self.http_port), self._handler())
            except OSError as exc:
                if exc.errno != errno.EADDRINUSE:
                    raise
                port = self._prompt_port()
                if port is None:
                    raise
                self.set_port(port)

    def _prompt_port(self) -> int | None:
        answer = questionary.text(
            "Address already in use, try another port?",
            default=str(self.http_port + 1),
            validate=lambda x: x.strip().isdigit() or "Port must be a number",
        ).ask()
        if answer is None:
            return None
        return int(answer.strip())

    async def _run(self) -> None:  # pragma: no cover - integration path
        async with websockets.serve(self._ws_handler, "127.0.0.1", self.ws_port):
            if self.open_browser:
                self._open_task = asyncio.create_task(self._open_when_ready())
            await watch_build(
                self.generator,
                self.source,
                self.build_dir,
                watch=True,
                signals=self.signals,
                visitor=self.visitor,
                config=self.config,
            )

    async def _open_when_ready(self) -> None:
        while not self.signals.first_build.is_set():
            await asyncio.sleep(0.1)
        webbrowser.open(self.url)

    async def _ws_handler(self, websocket):
        queue = self.signals.subscribe()
        try:
            while True:
                await queue.get()
                await websocket.send(RELOAD_MESSAGE)
        except ConnectionClosed:
            logger.debug("Live reload client disconnected")
        finally:
            self.signals.unsubscribe(queue)
