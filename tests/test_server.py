import asyncio
import os

from strata.context import BuildContext
from strata.server import DevServer, _ReloadHandler

from conftest import write


def make_handler(directory, path, out_file):
    handler = _ReloadHandler.__new__(_ReloadHandler)
    handler.path = path
    handler.directory = str(directory)
    handler.command = "GET"
    handler.request_version = "HTTP/1.1"
    handler.server_version = ""
    handler.sys_version = ""
    handler.headers = {}
    handler._headers_buffer = []
    handler.wfile = out_file.open("wb")
    handler.sent = []

    def send_response(code, message=None):
        handler.sent.append(code)

    def send_error(code, message=None, explain=None):
        handler.sent.append(code)

    handler.send_response = send_response
    handler.send_error = send_error
    handler.send_header = lambda key, value: handler._headers_buffer.append(
        f"{key}: {value}\r\n".encode()
    )
    return handler


def test_reload_script_injected_before_body(tmp_path):
    write(tmp_path / "index.html", "<html><body>Hello</body></html>")
    handler = make_handler(tmp_path, "/index.html", tmp_path / "out.bin")

    assert handler.send_head() is None
    handler.wfile.close()

    output = (tmp_path / "out.bin").read_bytes()
    assert b"WebSocket" in output
    assert output.index(b"WebSocket") < output.index(b"</body>")
    assert b"Cache-Control: no-cache" in output
    assert handler.sent == [200]


def test_directory_serves_index(tmp_path):
    write(tmp_path / "hello" / "index.html", "<p>No body</p>")
    handler = make_handler(tmp_path, "/hello/", tmp_path / "out.bin")

    handler.send_head()
    handler.wfile.close()

    output = (tmp_path / "out.bin").read_bytes()
    assert b"<p>No body</p>" in output
    assert b"location.reload" in output


def test_directory_without_index_is_404(tmp_path):
    (tmp_path / "empty").mkdir()
    handler = make_handler(tmp_path, "/empty/", tmp_path / "out.bin")

    handler.send_head()
    handler.wfile.close()

    assert handler.sent == [404]


def test_missing_path_serves_custom_404(tmp_path):
    write(tmp_path / "404.html", "<body>Not here</body>")
    handler = make_handler(tmp_path, "/nope", tmp_path / "out.bin")

    handler.send_head()
    handler.wfile.close()

    assert handler.sent == [404]
    assert b"Not here" in (tmp_path / "out.bin").read_bytes()


def test_ports_default_from_config(blog_site):
    write(blog_site / "strata.yaml", "port: 8100\n")
    context = BuildContext(blog_site)

    server = DevServer(context)
    assert (server.http_port, server.ws_port) == (8100, 8101)
    assert server.output_dir == context.config.output_dir

    explicit = DevServer(context, http_port=5055, ws_port=6000)
    assert explicit.ws_port == 6000
    assert ":6000" in explicit._reload_script


def test_initial_build_reports_failure(blog_site, capsys):
    write(blog_site / "lost.md", "---\nlayout: gone\npermalink: /lost/\n---\nx")
    server = DevServer(BuildContext(blog_site))

    assert server.initial_build() is None
    assert "Build failed" in capsys.readouterr().err


def test_initial_build_renders_site(blog_site):
    server = DevServer(BuildContext(blog_site))

    result = server.initial_build()

    assert len(result.rendered) == 4
    assert (blog_site / "_site" / "about" / "index.html").exists()


def test_async_broadcast_drops_stale_clients(blog_site):
    server = DevServer(BuildContext(blog_site))

    class GoodWS:
        def __init__(self):
            self.messages = []

        async def send(self, msg):
            self.messages.append(msg)

    class BadWS:
        async def send(self, msg):
            raise ConnectionResetError("gone")

    good, bad = GoodWS(), BadWS()
    server._ws_clients = {good, bad}

    asyncio.run(server._async_broadcast('{"type": "reload"}'))

    assert good.messages == ['{"type": "reload"}']
    assert server._ws_clients == {good}


def test_ws_handler_tracks_clients(blog_site):
    server = DevServer(BuildContext(blog_site))
    seen = []

    class DummyWS:
        async def wait_closed(self):
            seen.append(len(server._ws_clients))

    asyncio.run(server._ws_handler(DummyWS()))

    assert seen == [1]
    assert server._ws_clients == set()


def test_watcher_rebuild_broadcasts(blog_site, monkeypatch):
    server = DevServer(BuildContext(blog_site))
    started = []
    monkeypatch.setattr("strata.server.Watcher.start", lambda self: started.append(self.root))
    reloads = []
    monkeypatch.setattr(server, "_broadcast_reload", lambda result=None: reloads.append(result))

    server.initial_build()
    server._start_watcher()
    about = blog_site / "about.md"
    about.write_text("---\nlayout: base\npermalink: /about/\n---\nNew", encoding="utf-8")
    stat = about.stat()
    os.utime(about, (stat.st_atime, stat.st_mtime + 5))
    server._watcher.on_batch([str(about)])

    assert started == [blog_site.resolve()]
    assert len(reloads) == 1
    assert reloads[0].rendered == ["about.md"]
    server._watcher.stop()
