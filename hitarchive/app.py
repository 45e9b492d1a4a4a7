import argparse
import json
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import DEFAULT_CONFIG_PATH, load_settings
from .llm import classify_llm_error
from .logger import get_logger
from .pipeline import STEPS, RunOptions, run_pipeline
from .retry import ConfigError, PipelineError, RetryExecutor
from .storage import RecordStore
from .vectors import OpenAIEmbedder, VectorIndex


def _settings(args: argparse.Namespace):
    try:
        return load_settings(Path(args.config))
    except ConfigError as e:
        print(f"Config error: {e}")
        raise SystemExit(1)


def _csv_set(value: Optional[str]):
    if not value:
        return None
    return frozenset(v.strip() for v in value.split(",") if v.strip())


def options_from_args(args: argparse.Namespace) -> RunOptions:
    skip = set()
    for item in args.skip or []:
        skip |= _csv_set(item) or set()
    return RunOptions(
        lookback_days=args.days,
        skip=frozenset(skip),
        only_step=args.step,
        sources=_csv_set(args.sources),
        skip_notify=args.skip_notify,
        skip_llm=args.skip_llm,
        skip_embed=args.skip_embed,
    )


def cmd_run(args: argparse.Namespace) -> None:
    settings = _settings(args)
    if args.days is None:
        args.days = settings.pipeline.lookback_days
    try:
        options = options_from_args(args)
    except ValueError as e:
        raise SystemExit(f"Invalid options: {e}")

    try:
        summary = run_pipeline(options, settings)
    except Exception as e:
        get_logger().critical(f"Pipeline failed: {e}")
        print(f"Pipeline failed: {e}")
        raise SystemExit(1)

    print(json.dumps(summary, indent=2, default=str))


def cmd_search(args: argparse.Namespace) -> None:
    settings = _settings(args)
    if not settings.vectors_path.exists():
        raise SystemExit(f"Vector index not found: {settings.vectors_path}. Run 'hitarchive run' first.")

    try:
        embedder = OpenAIEmbedder(
            settings.llm.openai_api_key,
            model=settings.llm.embedding_model,
            timeout=settings.llm.timeout,
        )
        executor = RetryExecutor(name="embeddings", rate_limit_cooldown=settings.llm.rate_limit_cooldown)
        vector = executor.execute(lambda: embedder.embed([args.query])[0], classify=classify_llm_error)
        with VectorIndex(settings.vectors_path) as index:
            results = index.search(vector, limit=args.limit, min_score=args.min_score)
    except Exception as e:
        print(f"Search failed: {e}")
        raise SystemExit(1)

    if not results:
        print("No results.")
        return

    print(f'Results for "{args.query}":\n')
    for i, r in enumerate(results, 1):
        score = f"{r['relevance_score'] * 100:.0f}%" if r["relevance_score"] is not None else "-"
        print(f"{i}. {r['title']} ({r['source']}, similarity {r['similarity']:.3f}, score {score})")
        print(f"   {r['url']}")
        if r["summary"]:
            print(f"   {r['summary']}")
        print()


def cmd_stats(args: argparse.Namespace) -> None:
    settings = _settings(args)
    try:
        with RecordStore(settings.pipeline.db_path) as store:
            stats = store.stats()
    except PipelineError as e:
        print(f"Stats failed: {e}")
        raise SystemExit(1)
    print(json.dumps(stats, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hitarchive", description="hitarchive - resumable record enrichment pipeline")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")

    def add_config(sub):
        sub.add_argument("--config", default=str(DEFAULT_CONFIG_PATH), help=f"Path to config YAML (default: {DEFAULT_CONFIG_PATH})")

    run = subparsers.add_parser("run", help="Run the pipeline")
    run.add_argument("--days", type=int, help="Lookback window in days for the GitHub backfill (default: 365)")
    run.add_argument("--step", type=int, help=f"Run only step N (1-{len(STEPS)}: {', '.join(STEPS)})")
    run.add_argument("--skip", action="append", help="Step name(s) to skip; repeatable or comma-separated")
    run.add_argument("--sources", help="Comma-separated active sources (github,reddit)")
    run.add_argument("--skip-notify", action="store_true", help="Do not send notifications")
    run.add_argument("--skip-llm", action="store_true", help="Skip scoring, enrichment and embeddings")
    run.add_argument("--skip-embed", action="store_true", help="Skip embeddings")
    add_config(run)
    run.set_defaults(func=cmd_run)

    search = subparsers.add_parser("search", help="Semantic search over embedded records")
    search.add_argument("query", help="Search text")
    search.add_argument("--limit", type=int, default=10, help="Maximum results (default 10)")
    search.add_argument("--min-score", type=float, help="Only records with relevance score >= this (0-1)")
    add_config(search)
    search.set_defaults(func=cmd_search)

    stats = subparsers.add_parser("stats", help="Show record counts")
    add_config(stats)
    stats.set_defaults(func=cmd_stats)

    return parser


def main(argv: Optional[List[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
