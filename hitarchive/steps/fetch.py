"""
Bulk fetch: windowed GitHub backfill plus the Reddit weekly listings.

GitHub windows already recorded in the checkpoint file are skipped, so an
interrupted backfill resumes at the window it was working on.
"""

from typing import Any, Dict

from ..checkpoint import CheckpointTracker, generate_windows
from ..fetchers.github import fetch_window
from ..fetchers.reddit import fetch_reddit
from ..logger import get_logger
from ..retry import ConfigError, StorageError


def _source_active(options, name: str) -> bool:
    sources = getattr(options, "sources", None)
    return not sources or name in sources


def fetch_github(ctx, lookback_days: int) -> Dict[str, Any]:
    logger = get_logger()
    github = ctx.settings.github
    tracker = CheckpointTracker(ctx.settings.checkpoint_path)
    windows = generate_windows(lookback_days, ctx.settings.pipeline.chunk_days)

    logger.info(
        f"GitHub: {len(windows)} windows x {len(github.languages)} language(s)",
        min_stars=github.min_stars,
        languages=list(github.languages),
    )

    summary = {"fetched": 0, "saved": 0, "windows": 0, "skipped": 0, "errors": 0, "hit_limit": 0}
    for window in windows:
        for language in github.languages:
            if tracker.is_complete(window, language):
                summary["skipped"] += 1
                continue

            try:
                result = fetch_window(
                    window,
                    language,
                    github.min_stars,
                    ctx.github_executor,
                    token=github.token,
                    page_delay=github.page_delay,
                    sleep=ctx.sleep,
                )
            except (StorageError, ConfigError):
                raise
            except Exception as e:
                summary["errors"] += 1
                logger.error(f"GitHub window {window} ({language}) failed", error=str(e))
                continue

            summary["fetched"] += len(result.records)
            if result.hit_limit:
                summary["hit_limit"] += 1
                logger.warning(
                    f"GitHub window {window} ({language}) hit the 1000 result cap; results may be incomplete",
                    fetched=len(result.records),
                    total_count=result.total_count,
                )
            if result.records:
                summary["saved"] += ctx.store.upsert_batch(result.records)

            tracker.mark_complete(window, language, len(result.records))
            summary["windows"] += 1
            logger.info(f"GitHub window {window} ({language}): {len(result.records)}")

            if github.window_delay > 0:
                ctx.sleep(github.window_delay)

    if summary["hit_limit"]:
        logger.warning(f"{summary['hit_limit']} GitHub windows hit the result cap")
    return summary


def fetch_reddit_posts(ctx) -> Dict[str, Any]:
    reddit = ctx.settings.reddit
    result = fetch_reddit(
        reddit.subreddits,
        reddit.min_score,
        ctx.http_executor,
        flair_filters=reddit.flair_filters,
        sleep=ctx.sleep,
    )
    saved = ctx.store.upsert_batch(result["records"]) if result["records"] else 0
    return {"fetched": len(result["records"]), "saved": saved, "failed": result["failed"]}


def run(ctx, options=None) -> Dict[str, Any]:
    lookback_days = getattr(options, "lookback_days", None) or ctx.settings.pipeline.lookback_days
    summary: Dict[str, Any] = {}

    if ctx.settings.github.enabled and _source_active(options, "github"):
        summary["github"] = fetch_github(ctx, lookback_days)
    if ctx.settings.reddit.enabled and ctx.settings.reddit.subreddits and _source_active(options, "reddit"):
        summary["reddit"] = fetch_reddit_posts(ctx)

    return summary
