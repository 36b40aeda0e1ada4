"""Strata static site generator.

This package builds a website from a tree of content files (Markdown and Jinja
templates with YAML front matter) using an incremental, staged pipeline.

The main pieces are:
- A data cascade that resolves each file's effective data from global data,
  layouts, directory data files, front matter and computed fields.
- A build cache and dependency graph that decide what must be re-rendered.
- A collection store that groups, orders and paginates content.
- A staged builder that renders in ordered phases so that index pages see
  every member of the collections they list.
- A watch re-planner that turns file changes into the smallest rebuild.

The main entry point is the CLI module, which provides the ``build`` and
``serve`` commands.
"""

__all__ = ["__version__"]
__version__ = "0.3.0"
