"""Development server for Strata.

Serves the output directory with live reload:
- Injects a reload script into HTML responses.
- Rejects directory listings and missing paths with a 404 (serving 404.html when present).
- Watches the site and rebuilds incrementally, then tells browsers to reload.

Key classes:
- DevServer: Runs the HTTP server, the reload socket and the watcher.
- _ReloadHandler: HTTP request handler that injects the reload script and enforces 404s.
"""

from __future__ import annotations

import asyncio
import functools
import json
import threading
import time
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import websockets

from . import console
from .build import Builder, BuildResult
from .context import BuildContext
from .errors import BuildError
from .watcher import IncrementalRebuilder, Watcher


class _ReloadHandler(SimpleHTTPRequestHandler):
    """HTTP request handler that injects a live reload script into HTML pages."""

    reload_script_template = """
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
    reload_script = reload_script_template.format(ws_port=4001)

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        return self._serve_404()

    def log_message(self, format, *args):
        console.debug(f"{self.address_string()} {format % args}")

    def _inject(self, content: str) -> bytes:
        if "</body>" in content:
            content = content.replace("</body>", f"{self.reload_script}</body>")
        else:
            content += self.reload_script
        return content.encode("utf-8")

    def _send_html(self, code: int, encoded: bytes) -> None:
        self.send_response(code)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        self.wfile.write(encoded)

    def _serve_404(self):
        """Serve 404.html (when present) with the reload script and a 404 status."""
        error_page = Path(self.directory) / "404.html"
        if error_page.exists():
            self._send_html(404, self._inject(error_page.read_text(encoding="utf-8")))
            return None
        self.send_error(404, "File not found")
        return None

    def send_head(self):
        path_obj = Path(self.translate_path(self.path))
        if path_obj.is_dir():
            index_path = path_obj / "index.html"
            if not index_path.exists():
                return self._serve_404()
            path_obj = index_path
        elif not path_obj.exists():
            return self._serve_404()

        if path_obj.suffix == ".html":
            self._send_html(200, self._inject(path_obj.read_text(encoding="utf-8")))
            return None
        return super().send_head()


class DevServer:
    """Development server with live reload.

    Attributes:
        context: Build context of the site being served.
        output_dir: Directory served over HTTP.
        http_port: Port for HTTP server.
        ws_port: Port for WebSocket connections.
    """

    def __init__(self, context: BuildContext, http_port: int | None = None, ws_port: int | None = None):
        self.context = context
        self.output_dir = context.config.output_dir
        self.http_port = int(http_port or context.config.get("port", 4000))
        self.ws_port = ws_port if ws_port is not None else self.http_port + 1
        self._reload_script = _ReloadHandler.reload_script_template.format(ws_port=self.ws_port)
        self._watcher: Watcher | None = None
        self._ws_clients: set = set()
        self._loop = asyncio.new_event_loop()

    def start(self) -> None:  # pragma: no cover - integration path
        self.initial_build()
        threading.Thread(target=self._start_http, daemon=True).start()
        threading.Thread(target=self._start_ws, daemon=True).start()
        self._start_watcher()
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def initial_build(self) -> BuildResult | None:
        """Build once before serving; fatal errors are printed so serving can go on."""
        try:
            return asyncio.run(Builder(self.context).run())
        except BuildError as exc:
            console.error(f"Build failed: {exc.message}", exc.source_path)
            return None

    def stop(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
        self._loop.call_soon_threadsafe(self._loop.stop)

    def _start_http(self) -> None:  # pragma: no cover - integration path
        handler_cls = type(
            "_ReloadHandlerWithPort",
            (_ReloadHandler,),
            {"reload_script": self._reload_script},
        )
        handler = functools.partial(handler_cls, directory=str(self.output_dir))
        httpd = ThreadingHTTPServer(("", self.http_port), handler)
        console.info(f"Serving {self.output_dir} at http://localhost:{self.http_port}")
        httpd.serve_forever()

    def _start_ws(self) -> None:
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._run_ws_server())
        except OSError as exc:
            console.error(f"WebSocket server failed to start (port {self.ws_port}): {exc}")

    async def _run_ws_server(self) -> None:  # pragma: no cover - integration path
        async with websockets.serve(self._ws_handler, "0.0.0.0", self.ws_port):
            await asyncio.Future()

    async def _ws_handler(self, websocket):
        self._ws_clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def _broadcast_reload(self, result: BuildResult | None = None) -> None:
        message = json.dumps({"type": "reload"})
        asyncio.run_coroutine_threadsafe(self._async_broadcast(message), self._loop)

    async def _async_broadcast(self, message: str):
        stale = set()
        for ws in self._ws_clients:
            try:
                await ws.send(message)
            except (OSError, websockets.ConnectionClosed):
                stale.add(ws)
        for ws in stale:
            self._ws_clients.discard(ws)

    def _start_watcher(self) -> None:
        rebuilder = IncrementalRebuilder(self.context, on_rebuilt=self._broadcast_reload)
        watcher = Watcher(self.context.config.root, rebuilder)
        watcher.start()
        self._watcher = watcher
