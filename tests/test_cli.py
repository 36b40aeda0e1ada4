from click.testing import CliRunner

from strata.cli import cli

from conftest import write


def test_cli_build(blog_site):
    runner = CliRunner()

    result = runner.invoke(cli, ["build", "--input", str(blog_site)], catch_exceptions=False)

    assert result.exit_code == 0
    assert "Rendered 4 page(s)" in result.output
    assert (blog_site / "_site" / "posts" / "first" / "index.html").exists()


def test_cli_build_output_override_and_flags(blog_site, tmp_path_factory):
    out = tmp_path_factory.mktemp("public")
    runner = CliRunner()

    result = runner.invoke(
        cli,
        [
            "build",
            "--input",
            str(blog_site),
            "--output",
            str(out),
            "--no-incremental",
            "--clear-output",
            "--level",
            "error",
        ],
        catch_exceptions=False,
    )

    assert result.exit_code == 0
    assert result.output == ""
    assert (out / "about" / "index.html").exists()
    assert not (blog_site / "_site" / "about").exists()


def test_cli_build_failure_exits_non_zero(blog_site):
    write(blog_site / "lost.md", "---\nlayout: gone\npermalink: /lost/\n---\nx")
    runner = CliRunner()

    result = runner.invoke(cli, ["build", "--input", str(blog_site)])

    assert result.exit_code == 1
    assert "Build failed:" in result.output
    assert "File: lost.md" in result.output
    assert "Layout 'gone' not found" in result.output


def test_cli_build_with_unit_errors_exits_non_zero(blog_site):
    write(blog_site / "broken.jinja", "---\npermalink: /broken/\n---\n{{ 1 // 0 }}")

    result = CliRunner().invoke(cli, ["build", "--input", str(blog_site)])

    assert result.exit_code == 1
    assert (blog_site / "_site" / "about" / "index.html").exists()


def test_cli_build_watch_stops_on_interrupt(blog_site, monkeypatch):
    events = []

    class DummyWatcher:
        def __init__(self, root, on_batch):
            events.append(("init", root))

        def start(self):
            events.append("start")

        def stop(self):
            events.append("stop")

    def interrupt(seconds):
        raise KeyboardInterrupt

    monkeypatch.setattr("strata.watcher.Watcher", DummyWatcher)
    monkeypatch.setattr("strata.cli.time.sleep", interrupt)

    result = CliRunner().invoke(cli, ["build", "--input", str(blog_site), "--watch"], catch_exceptions=False)

    assert result.exit_code == 0
    assert events == [("init", blog_site.resolve()), "start", "stop"]


def test_cli_serve(blog_site, monkeypatch):
    called = {}

    class DummyServer:
        def __init__(self, context, http_port=None, ws_port=None):
            called["root"] = context.root
            called["port"] = http_port
            called["ws_port"] = ws_port

        def start(self):
            called["started"] = True

    monkeypatch.setattr("strata.server.DevServer", DummyServer)

    result = CliRunner().invoke(
        cli,
        ["serve", "--input", str(blog_site), "--port", "5050", "--ws-port", "5051"],
        catch_exceptions=False,
    )

    assert result.exit_code == 0
    assert called == {"root": blog_site.resolve(), "port": 5050, "ws_port": 5051, "started": True}


def test_cli_version():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "strata" in result.output


def test_module_main_entrypoint():
    from strata.__main__ import main

    assert callable(main)


def test_main_invokes_cli(monkeypatch):
    import strata.cli as cli_mod

    called = {}
    monkeypatch.setattr(cli_mod, "cli", lambda: called.setdefault("ran", True))

    cli_mod.main()

    assert called == {"ran": True}
