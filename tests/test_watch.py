import os

from strata.build import build_site
from strata.config import resolve_config
from strata.context import BuildContext
from strata.graph import DependencyGraph
from strata.watcher import IncrementalRebuilder, RebuildPlan, Watcher, WatchPlanner, _ChangeHandler

from conftest import write

POSTS = [
    "posts/2024-01-01-first.md",
    "posts/2024-01-02-second.md",
    "posts/2024-01-03-third.md",
]


def bump(path, seconds=5):
    stat = path.stat()
    os.utime(path, (stat.st_atime, stat.st_mtime + seconds))


def make_planner(root, **overrides):
    graph = DependencyGraph()
    for post in POSTS:
        graph.set_dependencies(post, ["_layouts/post.jinja", "_layouts/base.jinja"])
    graph.set_dependencies("about.md", ["_layouts/base.jinja", "_data/nav.yaml"])
    return WatchPlanner(resolve_config(root, overrides=overrides), graph)


def test_control_file_means_full_rebuild(tmp_path):
    plan = make_planner(tmp_path).plan([tmp_path / "about.md", tmp_path / "strata.yaml"])
    assert plan.full
    assert not plan.templates


def test_layout_change_targets_dependants(tmp_path):
    plan = make_planner(tmp_path).plan([tmp_path / "_layouts" / "post.jinja"])
    assert plan.templates == set(POSTS)


def test_data_change_targets_dependants(tmp_path):
    plan = make_planner(tmp_path).plan(["_data/nav.yaml"])
    assert plan.templates == {"about.md"}


def test_new_directory_data_falls_back_to_templates_below(tmp_path):
    plan = make_planner(tmp_path).plan([tmp_path / "posts" / ".strata.dir.yaml"])
    assert plan.templates == set(POSTS)


def test_generated_files_are_ignored(tmp_path):
    planner = make_planner(tmp_path)
    plan = planner.plan(
        [
            tmp_path / "_site" / "index.html",
            tmp_path / "_cache" / "graph.json",
            tmp_path / "_tmp" / "tags" / "news.jinja",
            tmp_path / "node_modules" / "x" / "index.js",
        ]
    )
    assert plan.empty


def test_style_sources_and_plain_files(tmp_path):
    planner = make_planner(tmp_path, styles=["css/site.scss"])
    plan = planner.plan(
        [
            tmp_path / "css" / "_vars.scss",
            tmp_path / "js" / "app.js",
            tmp_path / "_copy" / "robots.txt",
            tmp_path / "contact.md",
        ]
    )
    assert plan.styles == {"css/site.scss"}
    assert plan.assets == {"js/app.js"}
    assert plan.copies == {"_copy/robots.txt"}
    assert plan.templates == {"contact.md"}


def test_style_entry_point_includes_itself(tmp_path):
    plan = make_planner(tmp_path).plan([tmp_path / "css" / "print.scss"])
    assert plan.styles == {"css/print.scss"}


def test_rebuild_plan_empty():
    assert RebuildPlan().empty
    assert not RebuildPlan(full=True).empty


def test_layout_change_renders_exactly_its_dependants(blog_site):
    context = BuildContext(blog_site)
    build_site(blog_site, context=context)
    layout = blog_site / "_layouts" / "post.jinja"
    bump(layout)
    rebuilt = []

    result = IncrementalRebuilder(context, on_rebuilt=rebuilt.append).handle([str(layout)])

    assert sorted(result.rendered) == POSTS
    assert rebuilt == [result]


def test_content_change_renders_only_that_file(blog_site):
    context = BuildContext(blog_site)
    build_site(blog_site, context=context)
    about = blog_site / "about.md"
    about.write_text("---\nlayout: base\ntitle: About\npermalink: /about/\n---\nUpdated\n", encoding="utf-8")
    bump(about)

    result = IncrementalRebuilder(context).handle([str(about)])

    assert result.rendered == ["about.md"]
    assert "Updated" in (blog_site / "_site" / "about" / "index.html").read_text(encoding="utf-8")


def test_control_file_change_rebuilds_everything(blog_site):
    context = BuildContext(blog_site)
    build_site(blog_site, context=context)
    write(blog_site / "strata.yaml", "data:\n  author: Someone\n")

    result = IncrementalRebuilder(context).handle([str(blog_site / "strata.yaml")])

    assert len(result.rendered) == 4
    assert context.config["data"]["author"] == "Someone"


def test_ignored_batch_does_nothing(blog_site):
    context = BuildContext(blog_site)
    assert IncrementalRebuilder(context).handle([str(blog_site / "_site" / "x.html")]) is None


def test_fatal_error_is_printed_and_watch_continues(blog_site, capsys):
    context = BuildContext(blog_site)
    build_site(blog_site, context=context)
    lost = write(blog_site / "lost.md", "---\nlayout: gone\npermalink: /lost/\n---\nx")

    result = IncrementalRebuilder(context).handle([str(lost)])

    assert result is None
    assert "Build failed" in capsys.readouterr().err


def test_watcher_batches_and_sorts(tmp_path):
    batches = []
    watcher = Watcher(tmp_path, batches.append, debounce_seconds=60)
    watcher.queue(str(tmp_path / "b.md"))
    watcher.queue(str(tmp_path / "a.md"))
    watcher.queue(str(tmp_path / "b.md"))
    watcher.stop()

    watcher.flush()
    watcher.flush()

    assert batches == [[str(tmp_path / "a.md"), str(tmp_path / "b.md")]]


def test_change_handler_queues_moves_and_skips_directories(tmp_path):
    queued = []

    class FakeWatcher:
        def queue(self, path):
            queued.append(path)

    class Event:
        def __init__(self, src, dest=None, is_directory=False):
            self.src_path = src
            self.dest_path = dest
            self.is_directory = is_directory

    handler = _ChangeHandler(FakeWatcher())
    handler.on_any_event(Event("dir", is_directory=True))
    handler.on_any_event(Event("old.md", dest="new.md"))

    assert queued == ["old.md", "new.md"]
