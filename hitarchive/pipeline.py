"""
Pipeline orchestrator.

Runs the steps strictly in order. A step that completes (even with
per-record failures) counts as a success; any exception that escapes a step
aborts the remaining steps, closes the store and propagates to the caller.
"""

import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Optional

from .config import Settings
from .context import RunContext, build_context
from .logger import get_logger
from .steps import content, embed, enrich, export, fetch, importer, notify, score

STEPS = ("import", "fetch", "content", "score", "enrich", "embed", "export", "notify")
SOURCES = ("github", "reddit")

STEP_FUNCTIONS: Dict[str, Callable[..., Dict[str, Any]]] = {
    "import": importer.run,
    "fetch": fetch.run,
    "content": content.run,
    "score": score.run,
    "enrich": enrich.run,
    "embed": embed.run,
    "export": export.run,
    "notify": notify.run,
}


@dataclass(frozen=True)
class RunOptions:
    """
    Run flags.

    Attributes:
        lookback_days: Days of history for the GitHub backfill
        skip: Step names not to run
        only_step: 1-based index of the single step to run
        sources: Active sources (None means all configured ones)
        skip_notify: Do not send notifications
        skip_llm: Skip scoring and enrichment (and embedding, which needs summaries)
        skip_embed: Skip embeddings
    """

    lookback_days: int = 365
    skip: FrozenSet[str] = field(default_factory=frozenset)
    only_step: Optional[int] = None
    sources: Optional[FrozenSet[str]] = None
    skip_notify: bool = False
    skip_llm: bool = False
    skip_embed: bool = False

    def __post_init__(self):
        unknown = set(self.skip) - set(STEPS)
        if unknown:
            raise ValueError(f"Unknown step(s) to skip: {sorted(unknown)}; steps are {', '.join(STEPS)}")
        if self.only_step is not None and not 1 <= self.only_step <= len(STEPS):
            raise ValueError(f"--step must be between 1 and {len(STEPS)}")
        if self.sources is not None:
            bad = set(self.sources) - set(SOURCES)
            if bad:
                raise ValueError(f"Unknown source(s): {sorted(bad)}; sources are {', '.join(SOURCES)}")
        if self.lookback_days < 1:
            raise ValueError("lookback_days must be >= 1")

    def skip_reason(self, step: str) -> Optional[str]:
        if step in self.skip:
            return "--skip"
        if self.skip_llm and step in ("score", "enrich", "embed"):
            return "--skip-llm"
        if self.skip_embed and step == "embed":
            return "--skip-embed"
        if self.skip_notify and step == "notify":
            return "--skip-notify"
        if step == "content" and self.sources is not None and "github" not in self.sources:
            return "github source inactive"
        return None

    def selected_steps(self):
        """(index, name) pairs this run considers, in order."""
        for index, name in enumerate(STEPS, 1):
            if self.only_step is None or index == self.only_step:
                yield index, name


def run_steps(ctx: RunContext, options: RunOptions) -> Dict[str, Any]:
    logger = get_logger()
    summary: Dict[str, Any] = {}

    for index, name in options.selected_steps():
        reason = options.skip_reason(name)
        if reason:
            logger.info(f"[{index}/{len(STEPS)}] {name} SKIPPED ({reason})")
            summary[name] = {"skipped": True}
            continue

        logger.info(f"[{index}/{len(STEPS)}] {name}")
        started = time.monotonic()
        result = STEP_FUNCTIONS[name](ctx, options)
        logger.info(f"[{index}/{len(STEPS)}] {name} done in {time.monotonic() - started:.1f}s", result=result)
        summary[name] = result

    return summary


def run_pipeline(
    options: RunOptions,
    settings: Settings,
    sleep: Callable[[float], None] = time.sleep,
    context_factory: Callable[..., RunContext] = build_context,
) -> Dict[str, Any]:
    """
    Run the selected steps against the store at ``settings.pipeline.db_path``.

    Returns:
        Summary dict keyed by step name

    Raises:
        Whatever a step lets escape (StorageError, ConfigError, ...); the
        store and vector index are closed first.
    """
    logger = get_logger()
    started = time.monotonic()

    with ExitStack() as stack:
        ctx = context_factory(settings, stack, sleep)
        try:
            summary = run_steps(ctx, options)
        except Exception as e:
            logger.error(f"Pipeline aborted: {e}")
            raise
        stats = ctx.store.stats()

    logger.info(f"Pipeline complete in {time.monotonic() - started:.1f}s", stats=stats)
    logger.log_metrics_summary()
    return summary
