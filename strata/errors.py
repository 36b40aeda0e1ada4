"""Error types for Strata builds.

Every error raised by the pipeline derives from BuildError, which carries the
offending file so the CLI can point at it.

Classes:
    BuildError: Base class with file context.
    ConfigurationError: Fatal; aborts the whole run.
    DataError: Fatal to one file only (malformed front matter or data file).
    RenderError: Recoverable; the renderer failed for one unit.
    CacheIOError: Persisted cache or graph could not be read; never fatal.
"""

from __future__ import annotations

from pathlib import Path


class BuildError(Exception):
    """Error during site build with file context.

    Attributes:
        source_path: Path to the source file that caused the error, if any.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    fatal = False

    def __init__(
        self,
        message: str,
        source_path: Path | str | None = None,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        if source_path is not None:
            super().__init__(f"{source_path}: {message}")
        else:
            super().__init__(message)


class ConfigurationError(BuildError):
    """Site configuration is broken: cyclic or missing layout, missing permalink,
    missing pagination template, unreadable control file or plugin."""

    fatal = True


class DataError(BuildError):
    """A single file's data could not be read or parsed."""


class RenderError(BuildError):
    """The renderer raised while producing one unit's output."""


class CacheIOError(BuildError):
    """A persisted cache or graph file is unreadable or corrupt."""


def format_error_message(exc: Exception) -> str:
    """Format an exception into a user-friendly error message.

    Args:
        exc: The exception to format.

    Returns:
        A human-readable error message.
    """
    if isinstance(exc, BuildError):
        return exc.message
    error_type = type(exc).__name__
    error_msg = str(exc)

    # Handle common Jinja2/template errors
    if error_type == "UndefinedError":
        return f"Undefined variable: {error_msg}"
    if error_type == "TemplateSyntaxError":
        lineno = getattr(exc, "lineno", None)
        return f"Template syntax error on line {lineno}: {getattr(exc, 'message', error_msg)}"
    if error_type == "TypeError":
        return f"Type error: {error_msg}"
    if error_type == "AttributeError":
        return f"Attribute error: {error_msg}"

    return f"{error_type}: {error_msg}"
