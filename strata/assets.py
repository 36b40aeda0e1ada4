"""Asset pipeline for Strata.

Assets are processed independently of templates and before any of them are
loaded. Each asset is checked against the ``asset`` cache group; unchanged
assets whose output already exists are skipped. Copy-through files from the
copy directory land at the output root unchanged.

Style sources are special: an entry point's output depends on its partials,
so a change to any style source recompiles every entry point.
"""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from . import console
from .cache import ASSET_GROUP
from .errors import BuildError, format_error_message
from .utils import gather_bounded

if TYPE_CHECKING:
    from .context import BuildContext


@dataclass
class AssetReport:
    processed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class AssetPipeline:
    """Processes assets and copy-through files for one build context.

    Attributes:
        context: Build context holding config, cache and processor registry.
    """

    def __init__(self, context: BuildContext):
        self.context = context
        self.config = context.config

    async def run(self, assets: Iterable[str], force: Iterable[str] = ()) -> AssetReport:
        """Process site-relative asset paths.

        Args:
            assets: Asset paths to consider.
            force: Paths processed even when the cache says unchanged.

        Returns:
            AssetReport listing what happened to each path.
        """
        report = AssetReport()
        assets = list(assets)
        forced = set(force)
        cache = self.context.cache

        styles = [rel for rel in assets if self.config.is_style_source(rel)]
        changed_styles = {rel for rel in styles if cache.check(rel, ASSET_GROUP)}
        if changed_styles:
            declared = set(self.config.get("styles") or [])
            forced.update(rel for rel in styles if not declared or rel in declared)
            forced.update(changed_styles)

        jobs = []
        for rel in assets:
            source = self.config.root / rel
            processor = self.context.assets.get_processor(source)
            if processor is None:
                continue
            dest = self.config.output_dir / processor.output_name(rel)
            changed = rel in forced or (
                rel not in styles and cache.check(rel, ASSET_GROUP)
            )
            if not changed and dest.exists():
                report.skipped.append(rel)
                continue
            jobs.append((rel, processor, source, dest))

        async def process(job):
            rel, processor, source, dest = job
            return await asyncio.to_thread(processor.process, source, dest)

        results = await gather_bounded(
            [lambda job=job: process(job) for job in jobs], self.config.get("concurrency", 0)
        )
        for (rel, _processor, _source, _dest), result in zip(jobs, results):
            if isinstance(result, BaseException):
                self._record_failure(rel, result)
                report.failed.append(rel)
            elif result:
                report.processed.append(rel)
            else:
                report.skipped.append(rel)
        if report.processed:
            console.info(f"Processed {len(report.processed)} asset(s)")
        return report

    async def copy_through(self, copies: Iterable[str]) -> AssetReport:
        """Copy files from the copy directory to the output root."""
        report = AssetReport()
        cache = self.context.cache
        jobs = []
        for rel in copies:
            source = self.config.root / rel
            dest = self.config.output_dir / source.relative_to(self.config.copy_dir)
            if not cache.check(rel, ASSET_GROUP) and dest.exists():
                report.skipped.append(rel)
                continue
            jobs.append((rel, source, dest))

        async def copy(job):
            _rel, source, dest = job
            dest.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.copy2, source, dest)

        results = await gather_bounded(
            [lambda job=job: copy(job) for job in jobs], self.config.get("concurrency", 0)
        )
        for (rel, _source, _dest), result in zip(jobs, results):
            if isinstance(result, BaseException):
                self._record_failure(rel, result)
                report.failed.append(rel)
            else:
                report.processed.append(rel)
        return report

    def _record_failure(self, rel: str, exc: BaseException) -> None:
        if not isinstance(exc, Exception):
            raise exc
        error = BuildError(format_error_message(exc), rel, exc)
        console.error(error.message, rel)
        self.context.errors.append(error)
        # forget the fingerprint so the next run retries
        self.context.cache.group(ASSET_GROUP).set(rel, None)
