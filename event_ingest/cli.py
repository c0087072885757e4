#!/usr/bin/env python3
"""Command-line interface for the event ingestion core.

Commands:
  - event-ingest extract   : Run the extraction waterfall on a URL or saved HTML file
  - event-ingest analyze   : Recommend a fetcher for a URL or saved HTML file
  - event-ingest pipeline  : Run the pipeline orchestrator against configured sources

Typical usage:
  event-ingest extract https://www.paradiso.nl/en/program
  event-ingest extract page.html --base-url https://example.com/agenda --prefer dom
  event-ingest analyze page.html --current-fetcher puppeteer
  event-ingest pipeline auto_process --max-cycles 5 --heal
  event-ingest pipeline run_stage --stage extract
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

import yaml

from event_ingest.schemas.pipeline import ExtractionStrategy, FetcherType


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="event-ingest", description="Event ingestion CLI")
    p.add_argument("--version", action="store_true", help="Print version and exit")
    p.add_argument("--config", "-c", default=None, help="Path to pipeline YAML (default: settings)")
    p.add_argument("--json-logs", action="store_true", help="Emit JSON logs")
    p.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = p.add_subparsers(dest="cmd")

    # extract
    pe = sub.add_parser("extract", help="Run the extraction waterfall")
    pe.add_argument("target", help="URL to fetch or path to a saved HTML file")
    pe.add_argument("--base-url", default=None, help="Base URL for resolving links (files only)")
    pe.add_argument(
        "--prefer",
        default=None,
        choices=[s.value for s in ExtractionStrategy],
        help="Try this strategy first",
    )
    pe.add_argument("--no-feed-discovery", action="store_true", help="Do not try well-known feed paths")
    pe.add_argument("--events", action="store_true", help="Include extracted events in the output")

    # analyze
    pa = sub.add_parser("analyze", help="Recommend a fetcher")
    pa.add_argument("target", help="URL to fetch or path to a saved HTML file")
    pa.add_argument(
        "--current-fetcher",
        default=FetcherType.STATIC.value,
        choices=[f.value for f in FetcherType],
        help="Fetcher currently used for the source",
    )

    # pipeline
    pp = sub.add_parser("pipeline", help="Run the pipeline orchestrator")
    pp.add_argument(
        "mode",
        choices=["status", "discovery_only", "run_stage", "run_all", "auto_process"],
        help="Orchestrator mode",
    )
    pp.add_argument("--stage", default=None, help="Stage for run_stage (e.g. analyze, extract, persist)")
    pp.add_argument("--max-cycles", type=int, default=None, help="Override MAX_CYCLES")
    pp.add_argument("--throttle-pct", type=float, default=None, help="Override THROTTLE_PCT")
    pp.add_argument("--heal", action="store_true", help="Force a repair pass")

    return p.parse_args(argv)


def _load_target(target: str) -> tuple[str, str]:
    """Return (html, base_url) for a URL or a local file."""
    path = Path(target)
    if path.exists():
        return path.read_text(encoding="utf-8", errors="replace"), ""

    from event_ingest.errors import FetchFailedError, HttpClientError

    engine = _static_engine()
    try:
        result = engine.get(target)
    finally:
        engine.close()
    if result.ok:
        return result.text, result.final_url or target
    if result.is_client_error:
        raise HttpClientError(target, f"HTTP {result.status_code}", status_code=result.status_code)
    raise FetchFailedError(target, result.short_error(), status_code=result.status_code)


def _static_engine():
    from event_ingest.configs.settings import get_settings
    from event_ingest.engines.router import EngineRouter

    return EngineRouter.from_settings(get_settings()).static


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _cmd_extract(args: argparse.Namespace) -> int:
    from event_ingest.engines.base import engine_fetcher
    from event_ingest.extraction import ExtractionContext, run_waterfall

    html, fetched_url = _load_target(args.target)
    engine = _static_engine()
    try:
        ctx = ExtractionContext(
            base_url=args.base_url or fetched_url or args.target,
            preferred_strategy=ExtractionStrategy(args.prefer) if args.prefer else None,
            feed_discovery=not args.no_feed_discovery,
            fetcher=engine_fetcher(engine),
        )
        outcome = run_waterfall(html, ctx)
    finally:
        engine.close()
    _print_json(outcome.to_dict(include_events=args.events))
    return 0 if outcome.total_events else 2


def _cmd_analyze(args: argparse.Namespace) -> int:
    from event_ingest.diagnostics import analyze
    from event_ingest.schemas.pipeline import SourceHistory

    html, _ = _load_target(args.target)
    history = SourceHistory(fetcher_type=FetcherType(args.current_fetcher))
    _print_json(analyze(html, history).to_dict())
    return 0


def build_context(settings, sources):
    """Wire collaborators for a local pipeline run."""
    from event_ingest.engines.router import EngineRouter
    from event_ingest.ingestion.collaborators import (
        InMemoryEventStore,
        InMemorySourceRegistry,
        LoggingRunLog,
        NominatimVenueLookup,
    )
    from event_ingest.ingestion.queue import InMemoryQueueStore
    from event_ingest.ingestion.workers import PipelineContext

    if settings.DATABASE_URL:
        from event_ingest.ingestion.persist import PostgresEventStore, PostgresRunLog, connect

        conn = connect(settings)
        store, run_log = PostgresEventStore(conn), PostgresRunLog(conn)
    else:
        store, run_log = InMemoryEventStore(), LoggingRunLog()

    return PipelineContext(
        queue=InMemoryQueueStore(max_attempts=settings.MAX_ATTEMPTS),
        sources=InMemorySourceRegistry(sources),
        router=EngineRouter.from_settings(settings),
        store=store,
        venues=NominatimVenueLookup(user_agent=settings.GEOCODER_USER_AGENT),
        run_log=run_log,
        fetch_concurrency=settings.FETCH_CONCURRENCY,
        politeness_delay_s=settings.POLITENESS_DELAY_S or None,
    )


def _cmd_pipeline(args: argparse.Namespace, settings) -> int:
    from event_ingest.configs.config import Config, load_sources
    from event_ingest.ingestion.orchestrator import OrchestratorOptions, PipelineOrchestrator

    config = Config.load_pipeline_config(args.config, settings=settings)
    sources = load_sources(config)
    ctx = build_context(settings, sources)

    options = OrchestratorOptions.from_settings(settings)
    if args.throttle_pct is not None:
        options.throttle_pct = args.throttle_pct

    orchestrator = PipelineOrchestrator(ctx, options)
    try:
        report = orchestrator.run(args.mode, stage=args.stage, max_cycles=args.max_cycles, heal=args.heal)
    finally:
        ctx.router.close()
    _print_json(report.to_dict())
    return 0 if report.success else 1


def main(argv: list[str] | None = None) -> int:
    """Run the CLI with the given arguments."""
    try:
        return _main_impl(argv)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except yaml.YAMLError as e:
        print(f"Error: Invalid YAML in config: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _main_impl(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    if args.version:
        from event_ingest import __version__

        print(f"event-ingest version {__version__}")
        return 0

    if not args.cmd:
        print("Error: Command required. Use --help for usage info.", file=sys.stderr)
        return 1

    from event_ingest.configs.settings import get_settings
    from event_ingest.monitoring.logging import LoggingOptions, configure_logging

    settings = get_settings()
    configure_logging(
        LoggingOptions(
            level=args.log_level or settings.LOG_LEVEL,
            json_logs=args.json_logs or settings.LOG_JSON,
        )
    )

    if args.cmd == "extract":
        return _cmd_extract(args)
    if args.cmd == "analyze":
        return _cmd_analyze(args)
    if args.cmd == "pipeline":
        return _cmd_pipeline(args, settings)

    print(f"Error: Unknown command {args.cmd}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
